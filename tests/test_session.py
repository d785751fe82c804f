import socket
import threading

import pytest

from chathub.config import HubRuntimeConfig
from chathub.registry import Registry
from chathub.router import MessageRouter
from chathub.session import Session, SessionState


@pytest.fixture
def pair():
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    for s in (server_side, client_side):
        s.close()


def _session(sock: socket.socket, **cfg) -> tuple[Session, Registry]:
    registry = Registry()
    router = MessageRouter(registry, config=HubRuntimeConfig(**cfg))
    return Session(sock, "test-peer", registry=registry, router=router), registry


def test_close_before_run_releases_socket(pair) -> None:
    server_side, _ = pair
    sess, _ = _session(server_side)

    sess.close()
    assert sess.state is SessionState.CLOSED
    assert sess.wait_closed(1.0)
    assert not sess.send("late")


def test_close_is_idempotent_and_evicts_once(pair) -> None:
    server_side, _ = pair
    sess, registry = _session(server_side)
    sess.name = "alice"
    sess.state = SessionState.ACTIVE
    assert registry.try_admit("alice", sess)

    sess.close()
    sess.close()
    assert "alice" not in registry
    assert sess.router.stats.get("parts") == 1


def test_close_does_not_evict_new_holder(pair) -> None:
    server_side, _ = pair
    sess, registry = _session(server_side)
    sess.name = "alice"
    sess.state = SessionState.ACTIVE

    newcomer = object()
    registry.try_admit("alice", newcomer)

    sess.close()
    assert registry.lookup("alice") is newcomer
    assert sess.router.stats.get("parts") == 0


def test_rate_limit_disabled_by_default(pair) -> None:
    server_side, _ = pair
    sess, _ = _session(server_side)
    assert all(sess._refill_and_take(1.0) for _ in range(1000))


def test_rate_limit_token_bucket(pair) -> None:
    server_side, _ = pair
    sess, _ = _session(server_side, rate_limit_msgs_per_minute=2)
    assert sess._refill_and_take(1.0)
    assert sess._refill_and_take(1.0)
    assert not sess._refill_and_take(1.0)


def test_run_negotiates_and_serves_over_socketpair(pair) -> None:
    server_side, client_side = pair
    sess, registry = _session(server_side)
    worker = threading.Thread(target=sess.run, daemon=True)
    worker.start()

    client_side.settimeout(5)
    rfile = client_side.makefile("rb")
    assert rfile.readline() == b"SUBMITNAME\n"
    client_side.sendall(b"alice\r\n")
    assert rfile.readline() == b"NAMEACCEPTED\n"
    assert rfile.readline() == b"USERLIST alice\n"
    assert sess.is_active

    client_side.sendall(b"BROADCAST hi\n")
    assert rfile.readline() == b"MESSAGE alice: hi\n"

    client_side.shutdown(socket.SHUT_WR)
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert sess.state is SessionState.CLOSED
    assert "alice" not in registry
    assert rfile.readline() == b""
    rfile.close()
