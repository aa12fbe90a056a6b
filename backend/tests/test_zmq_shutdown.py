"""Tests for graceful ZMQ server shutdown + auth token validation."""

import time
from contextlib import contextmanager

import pytest
import zmq


@contextmanager
def _socket(server, port=None):
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.connect(f"tcp://127.0.0.1:{port or server.port}")
    try:
        yield sock
    finally:
        sock.close()
        ctx.term()


def _send(sock, msg: dict, token: str | None) -> dict:
    if token is not None:
        msg["_token"] = token
    sock.send_json(msg)
    return sock.recv_json()


@pytest.mark.parametrize("msg_id", ["bye", None])
def test_shutdown_acknowledged(zmq_server_disposable, msg_id):
    srv = zmq_server_disposable
    with _socket(srv) as sock:
        msg = {"cmd": "shutdown"}
        if msg_id is not None:
            msg["id"] = msg_id
        resp = _send(sock, msg, srv.token)
    assert resp == {"id": msg_id, "ok": True}
    assert srv.running is False


def test_shutdown_releases_media(zmq_server_disposable, synthetic_video_path):
    """Shutdown with a playing video stops the loop and closes the scheduler."""
    srv = zmq_server_disposable
    with _socket(srv) as sock:
        resp = _send(sock, {"cmd": "load", "path": synthetic_video_path}, srv.token)
        assert resp["playing"] is True
        _send(sock, {"cmd": "shutdown", "id": "exit"}, srv.token)
    # Server stops within the poller timeout
    time.sleep(0.7)
    assert srv.session.source is None
    assert not srv.session.playback.is_playing
    with pytest.raises(RuntimeError, match="closed"):
        srv.scheduler.request(lambda ts: None)


@pytest.mark.parametrize("token", [None, "wrong-token-value"])
def test_bad_token_rejected(zmq_server_disposable, token):
    srv = zmq_server_disposable
    with _socket(srv) as sock:
        resp = _send(sock, {"cmd": "shutdown", "id": "intruder"}, token)
    assert resp["ok"] is False
    assert "token" in resp["error"]
    assert srv.running is True


def test_ping_socket_checks_token(zmq_server_disposable):
    srv = zmq_server_disposable
    with _socket(srv, srv.ping_port) as sock:
        resp = _send(sock, {"cmd": "ping", "id": "p"}, "nope")
    assert resp["ok"] is False
    assert "token" in resp["error"]
