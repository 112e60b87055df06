import socket
import threading

import httpx

from tgdispatch.core.models import parse_update
from tgdispatch.delivery.webhook_server import SECRET_HEADER, WebhookReceiver, start_webhook_server, stop_webhook_server


class _Recorder:
    def __init__(self, accept=True):
        self.accept = accept
        self.updates = []
        self.lock = threading.Lock()

    def __call__(self, update):
        with self.lock:
            self.updates.append(update)
        return self.accept


def _serve(recorder, ready=True, request_timeout_s=10.0, **kwargs):
    receiver = WebhookReceiver(recorder, secret_path="/telegraf/abc123", **kwargs)
    server, _ = start_webhook_server(receiver, host="127.0.0.1", port=0, request_timeout_s=request_timeout_s)
    if ready:
        receiver.mark_ready()
    return receiver, server, f"http://127.0.0.1:{server.server_address[1]}"


def test_post_to_secret_path_dispatches_exactly_once():
    rec = _Recorder()
    _, server, base = _serve(rec)
    body = {"update_id": 100, "message": {"message_id": 1, "chat": {"id": 9}, "from": {"id": 2}, "text": "hi"}}
    try:
        with httpx.Client(trust_env=False, timeout=5.0) as client:
            r = client.post(f"{base}/telegraf/abc123", json=body)
        assert r.status_code == 200
        assert rec.updates == [parse_update(body)]
    finally:
        stop_webhook_server(server)


def test_other_paths_never_reach_dispatch():
    rec = _Recorder()
    _, server, base = _serve(rec)
    body = {"update_id": 1, "message": {"chat": {"id": 9}, "text": "hi"}}
    try:
        with httpx.Client(trust_env=False, timeout=5.0) as client:
            for path in ("/", "/telegraf", "/telegraf/abc1234", "/health", "/metrics", "/TELEGRAF/ABC123"):
                assert client.post(f"{base}{path}", json=body).status_code == 404, path
            assert client.put(f"{base}/elsewhere", json=body).status_code == 404
            assert client.get(f"{base}/telegraf/abc123").status_code == 405
        assert rec.updates == []
    finally:
        stop_webhook_server(server)


def test_health_and_bad_bodies():
    rec = _Recorder()
    receiver, server, base = _serve(rec, ready=False, secret_token="t0k", max_body_bytes=512)
    try:
        with httpx.Client(trust_env=False, timeout=5.0) as client:
            assert client.get(f"{base}/health").status_code == 503
            receiver.mark_ready()
            for _ in range(3):
                r = client.get(f"{base}/health")
                assert r.status_code == 200 and r.text == "ok"

            url = f"{base}/telegraf/abc123"
            ok_headers = {SECRET_HEADER: "t0k"}
            assert client.post(url, json={"update_id": 1}).status_code == 403
            assert client.post(url, content=b"{not json", headers=ok_headers).status_code == 400
            assert client.post(url, content=b"x" * 1024, headers=ok_headers).status_code == 413
            assert client.post(url, json={"update_id": 2}, headers=ok_headers).status_code == 200
        assert [u.update_id for u in rec.updates] == [2]
    finally:
        stop_webhook_server(server)


def test_saturated_receiver_answers_503():
    rec = _Recorder(accept=False)
    _, server, base = _serve(rec)
    try:
        with httpx.Client(trust_env=False, timeout=5.0) as client:
            r = client.post(f"{base}/telegraf/abc123", json={"update_id": 5})
        assert r.status_code == 503
    finally:
        stop_webhook_server(server)


def _read_all(sock) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def test_stalled_body_times_out_with_408():
    rec = _Recorder()
    _, server, _ = _serve(rec, request_timeout_s=0.2)
    head = b"POST /telegraf/abc123 HTTP/1.1\r\nHost: x\r\nContent-Type: application/json\r\nContent-Length: 100\r\n\r\n{"
    try:
        with socket.create_connection(server.server_address[:2], timeout=5.0) as sock:
            sock.sendall(head)
            resp = _read_all(sock)
        assert resp.startswith(b"HTTP/1.1 408")
        assert b"Connection: close" in resp
        assert rec.updates == []
    finally:
        stop_webhook_server(server)


def test_idle_connection_is_closed_by_server():
    rec = _Recorder()
    _, server, _ = _serve(rec, request_timeout_s=0.2)
    try:
        with socket.create_connection(server.server_address[:2], timeout=5.0) as sock:
            # server hangs up without a request; recv returns EOF well before the client timeout
            assert _read_all(sock) == b""
    finally:
        stop_webhook_server(server)
