from chathub.codec import decode, encode


def test_codec_round_trip() -> None:
    data = encode("MESSAGE alice: héllo")
    assert data == "MESSAGE alice: héllo\n".encode("utf-8")
    assert decode(data) == "MESSAGE alice: héllo"


def test_decode_accepts_crlf() -> None:
    assert decode(b"BROADCAST hi\r\n") == "BROADCAST hi"


def test_decode_keeps_line_without_terminator() -> None:
    assert decode(b"alice") == "alice"


def test_decode_replaces_invalid_utf8() -> None:
    assert decode(b"BROADCAST \xff\n") == "BROADCAST �"
