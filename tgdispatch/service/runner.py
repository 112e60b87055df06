from __future__ import annotations

import logging
import signal
import threading
from dataclasses import dataclass
from typing import Any, Optional

from tgdispatch.adapters.telegram.bot_api import BotApiClient
from tgdispatch.bot.handlers import build_default_dispatcher
from tgdispatch.config import Config
from tgdispatch.delivery.polling import PollingSource
from tgdispatch.delivery.selector import DeliveryMode, register_webhook, select_delivery_mode, webhook_url
from tgdispatch.delivery.webhook_server import WebhookReceiver, start_webhook_server, stop_webhook_server
from tgdispatch.dispatch.dispatcher import Dispatcher
from tgdispatch.dispatch.pool import DispatchPool
from tgdispatch.observability.recording import JsonlRecorder

logger = logging.getLogger(__name__)


@dataclass
class BotContext:
    """Everything a running bot shares, built once at startup and passed explicitly."""

    config: Config
    api: Any
    dispatcher: Dispatcher
    mode: DeliveryMode


def build_context(config: Config, api: Any = None, dispatcher: Optional[Dispatcher] = None) -> BotContext:
    api = api if api is not None else BotApiClient(config.bot_token, base_url=config.api_base_url)
    if dispatcher is None:
        # getMe also fails fast on a bad token
        me = api.get_me() or {}
        dispatcher = build_default_dispatcher(api, handler_timeout_s=config.handler_timeout_s, bot_username=me.get("username"))
    return BotContext(config=config, api=api, dispatcher=dispatcher, mode=select_delivery_mode(config.public_url))


def install_signal_handlers(stop: threading.Event) -> None:
    """SIGINT/SIGTERM set ``stop``; only possible from the main thread."""
    if threading.current_thread() is not threading.main_thread():
        return

    def _handler(signum, frame):
        logger.info("received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


class ServiceRunner:
    def __init__(self, ctx: BotContext):
        self.ctx = ctx
        self.receiver: Optional[WebhookReceiver] = None
        self.server = None

    def run(self, stop: threading.Event) -> None:
        self.ctx.dispatcher.seal()
        logger.info("starting in %s mode with %d handlers", self.ctx.mode.value, len(self.ctx.dispatcher.registrations))
        if self.ctx.mode is DeliveryMode.WEBHOOK:
            self.run_webhook(stop)
        else:
            self.run_polling(stop)

    def run_polling(self, stop: threading.Event, max_batches: Optional[int] = None) -> int:
        cfg = self.ctx.config
        # a leftover webhook registration makes getUpdates fail with 409
        self.ctx.api.delete_webhook(drop_pending_updates=False)
        recorder = JsonlRecorder(cfg.record_path) if cfg.record_path else None
        source = PollingSource(
            self.ctx.api,
            self.ctx.dispatcher,
            timeout_s=cfg.polling_timeout_s,
            backoff_ms=cfg.polling_backoff_ms,
            max_backoff_ms=cfg.polling_max_backoff_ms,
            allowed_updates=cfg.allowed_updates,
            on_raw=recorder.append if recorder is not None else None,
        )
        return source.run(stop, max_batches=max_batches)

    def start_webhook(self) -> DispatchPool:
        """Bind the HTTP server, register the URL, then report ready."""
        cfg = self.ctx.config
        pool = DispatchPool(self.ctx.dispatcher, max_workers=cfg.max_workers, max_inflight=cfg.max_inflight)
        self.receiver = WebhookReceiver(
            pool.submit,
            secret_path=cfg.secret_path,
            secret_token=cfg.secret_token,
            max_body_bytes=cfg.max_body_bytes,
        )
        self.server, _ = start_webhook_server(
            self.receiver, host=cfg.host, port=cfg.port, request_timeout_s=cfg.request_timeout_s
        )
        logger.info("webhook server listening on %s:%d", cfg.host, self.server.server_address[1])
        try:
            register_webhook(
                self.ctx.api,
                webhook_url(cfg.public_url, cfg.secret_path),
                secret_token=cfg.secret_token,
                allowed_updates=cfg.allowed_updates,
            )
        except Exception:
            stop_webhook_server(self.server)
            self.server = None
            pool.drain(0.0)
            raise
        self.receiver.mark_ready()
        return pool

    def stop_webhook(self, pool: DispatchPool) -> int:
        if self.server is not None:
            stop_webhook_server(self.server)
            self.server = None
        abandoned = pool.drain(self.ctx.config.shutdown_grace_s)
        logger.info("webhook stopped (%d dispatches abandoned)", abandoned)
        return abandoned

    def run_webhook(self, stop: threading.Event) -> None:
        pool = self.start_webhook()
        try:
            # short waits keep the main thread responsive to signals
            while not stop.wait(1.0):
                pass
        finally:
            self.stop_webhook(pool)
