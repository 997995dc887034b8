import os
import socket

import pytest
from fastapi.testclient import TestClient

from testdaemon.apps.server import bind_listener, create_app, serve
from testdaemon.core.outcome import OutcomeKind, StartupError


@pytest.fixture
def client(recorder):
    return TestClient(create_app(recorder))


def test_root_returns_identity_document(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text.splitlines()[0] == f"pid={os.getpid()}"


def test_root_serves_non_utf8_environment(client, monkeypatch):
    monkeypatch.setitem(os.environb, b"TESTDAEMON_LATIN1", b"caf\xe9")
    resp = client.get("/")
    assert resp.status_code == 200
    assert b"TESTDAEMON_LATIN1=caf\xe9" in resp.content.split(b"\n")


def test_root_accepts_post(client):
    resp = client.post("/")
    assert resp.status_code == 200
    assert resp.text.startswith("pid=")


@pytest.mark.parametrize("path", ["/anything", "/docs", "/crash/extra", "/a/b/c"])
def test_unmatched_paths_fall_back_to_identity(client, recorder, path):
    resp = client.get(path)
    assert resp.status_code == 200
    assert resp.text.startswith("pid=")
    assert recorder.outcomes == []


def test_crash_with_status(client, recorder):
    client.get("/crash", params={"status": "17"})
    assert recorder.last.kind is OutcomeKind.CRASHED
    assert recorder.last.status == 17


@pytest.mark.parametrize("query", ["", "?status=", "?status=abc", "?other=5"])
def test_crash_defaults_to_two(client, recorder, query):
    client.get("/crash" + query)
    assert recorder.last.status == 2


def test_crash_reads_form_body(client, recorder):
    client.post("/crash", data={"status": "42"})
    assert recorder.last.status == 42


def test_form_body_wins_over_query(client, recorder):
    client.post("/crash?status=5", data={"status": "6"})
    assert recorder.last.status == 6


def test_crash_query_on_post_without_form(client, recorder):
    client.post("/crash?status=9")
    assert recorder.last.status == 9


def test_crash_is_triggered_once_per_request(client, recorder):
    client.get("/crash?status=3")
    assert len(recorder.outcomes) == 1


def test_bind_listener_ephemeral_port():
    sock = bind_listener(0)
    try:
        assert sock.getsockname()[1] > 0
    finally:
        sock.close()


def test_bind_listener_port_in_use():
    taken = bind_listener(0)
    try:
        with pytest.raises(StartupError, match="error listening on port"):
            bind_listener(taken.getsockname()[1])
    finally:
        taken.close()


def test_serve_returning_is_a_transport_failure(recorder, monkeypatch):
    import uvicorn

    monkeypatch.setattr(uvicorn.Server, "run", lambda self, sockets=None: None)
    sock = socket.socket()
    try:
        outcome = serve(create_app(recorder), sock)
    finally:
        sock.close()
    assert outcome.kind is OutcomeKind.TRANSPORT_FAILED
    assert outcome.status == 1


def test_serve_exception_is_a_transport_failure(recorder, monkeypatch):
    import uvicorn

    def broken(self, sockets=None):
        raise OSError("listener closed")
    monkeypatch.setattr(uvicorn.Server, "run", broken)
    sock = socket.socket()
    try:
        outcome = serve(create_app(recorder), sock)
    finally:
        sock.close()
    assert outcome.kind is OutcomeKind.TRANSPORT_FAILED
    assert "listener closed" in outcome.reason
