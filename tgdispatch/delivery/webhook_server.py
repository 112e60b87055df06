from __future__ import annotations

import hmac
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from threading import Thread
from typing import Callable, Optional, Tuple

from tgdispatch.core.errors import UpdateParseError
from tgdispatch.core.models import Update, parse_update_json
from tgdispatch.observability.metrics import inc_labelled
from tgdispatch.observability.prometheus import CONTENT_TYPE as METRICS_CONTENT_TYPE, export_text

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
HEALTH_PATH = "/health"
METRICS_PATH = "/metrics"
DEFAULT_REQUEST_TIMEOUT_S = 10.0

Response = Tuple[int, bytes, str]


def _text(status: int, body: str = "") -> Response:
    return status, body.encode("utf-8"), "text/plain; charset=utf-8"


class WebhookReceiver:
    """Request routing for the webhook endpoint, independent of the HTTP server.

    ``submit`` receives each parsed update and returns False when it cannot
    take more work; the receiver then answers 503 so the platform retries.
    A successful submit is acknowledged with 200 before handlers run.
    """

    def __init__(
        self,
        submit: Callable[[Update], bool],
        secret_path: str,
        secret_token: str = "",
        max_body_bytes: int = 1 << 20,
    ):
        self.submit = submit
        self.secret_path = secret_path
        self.secret_token = secret_token
        self.max_body_bytes = max_body_bytes
        self._ready = threading.Event()

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def mark_ready(self) -> None:
        self._ready.set()

    def reject(self, reason: str, status: int) -> Response:
        inc_labelled("webhook_rejected", {"reason": reason}, 1)
        return _text(status)

    def handle_get(self, path: str) -> Response:
        if path == HEALTH_PATH:
            return _text(200, "ok") if self.ready else _text(503, "starting")
        if path == METRICS_PATH:
            return 200, export_text().encode("utf-8"), METRICS_CONTENT_TYPE
        return self.handle_other(path)

    def handle_other(self, path: str) -> Response:
        if path == self.secret_path:
            return self.reject("method", 405)
        return self.reject("not_found", 404)

    def check_post(self, path: str, content_length: int, secret_header: Optional[str]) -> Optional[Response]:
        """Validate a POST before its body is read; None means proceed."""
        if path != self.secret_path:
            return self.reject("not_found", 404)
        if self.secret_token and not hmac.compare_digest((secret_header or "").encode(), self.secret_token.encode()):
            return self.reject("secret_token", 403)
        if content_length < 0 or content_length > self.max_body_bytes:
            return self.reject("too_large", 413)
        return None

    def handle_body(self, body: bytes) -> Response:
        try:
            update = parse_update_json(body)
        except UpdateParseError as e:
            logger.warning("rejecting webhook body: %s", e)
            return self.reject("parse", 400)
        inc_labelled("updates_received", {"mode": "webhook"}, 1)
        if not self.submit(update):
            logger.warning("dispatch pool saturated; refusing update %d", update.update_id)
            return self.reject("saturated", 503)
        return _text(200)


# rejected request bodies up to this size are read and discarded to keep the connection usable
_DISCARD_LIMIT = 1 << 20


class _WebhookHandler(BaseHTTPRequestHandler):
    receiver: WebhookReceiver
    protocol_version = "HTTP/1.1"

    def _send(self, resp: Response) -> None:
        status, body, ctype = resp
        self.send_response(status)
        self.send_header("Content-Type", ctype)
        if self.close_connection:
            self.send_header("Connection", "close")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def _content_length(self) -> int:
        try:
            return int(self.headers.get("Content-Length", "0"))
        except ValueError:
            return -1

    def _read_body(self, length: int) -> Optional[bytes]:
        """Read exactly the declared body; None when the client stalls past ``timeout``."""
        try:
            return self.rfile.read(length)
        except TimeoutError:
            self.close_connection = True
            return None

    def _discard_body(self, length: int) -> None:
        if 0 <= length <= _DISCARD_LIMIT:
            self._read_body(length)
        else:
            self.close_connection = True

    def _path(self) -> str:
        return self.path.split("?", 1)[0]

    def do_GET(self):  # noqa: N802
        self._send(self.receiver.handle_get(self._path()))

    def do_POST(self):  # noqa: N802
        length = self._content_length()
        early = self.receiver.check_post(self._path(), length, self.headers.get(SECRET_HEADER))
        if early is not None:
            self._discard_body(length)
            self._send(early)
            return
        body = self._read_body(length)
        if body is None:
            self._send(self.receiver.reject("timeout", 408))
            return
        self._send(self.receiver.handle_body(body))

    def _other_method(self) -> None:
        self._discard_body(self._content_length())
        self._send(self.receiver.handle_other(self._path()))

    do_PUT = do_DELETE = do_PATCH = do_HEAD = _other_method  # noqa: N815

    def log_message(self, format, *args):  # noqa: A003
        # the request line contains the secret path
        return


def start_webhook_server(
    receiver: WebhookReceiver,
    host: str = "127.0.0.1",
    port: int = 0,
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
) -> Tuple[ThreadingHTTPServer, Thread]:
    # socket timeout for every read: idle keep-alive connections and stalled bodies release their thread
    handler_cls = type("BoundWebhookHandler", (_WebhookHandler,), {"receiver": receiver, "timeout": request_timeout_s})
    server = ThreadingHTTPServer((host, port), handler_cls)
    th = Thread(target=server.serve_forever, name="webhook-server", daemon=True)
    th.start()
    return server, th


def stop_webhook_server(server: ThreadingHTTPServer) -> None:
    server.shutdown()
    server.server_close()
