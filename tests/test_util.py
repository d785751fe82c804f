import pytest

from chathub.util import normalize_name


def test_accepts_plain_name() -> None:
    assert normalize_name("alice") == "alice"


def test_names_are_case_sensitive_and_verbatim() -> None:
    assert normalize_name("Alice") == "Alice"
    assert normalize_name("ALICE") != normalize_name("alice")


@pytest.mark.parametrize(
    "value",
    ["", " ", "al ice", " alice", "alice\t", "a,b", "bell\x07", None, 42],
)
def test_rejects_invalid_names(value) -> None:
    assert normalize_name(value) is None


def test_length_limit() -> None:
    assert normalize_name("a" * 32, max_chars=32) == "a" * 32
    assert normalize_name("a" * 33, max_chars=32) is None
    assert normalize_name("a" * 100, max_chars=0) == "a" * 100
