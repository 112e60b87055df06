from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

from tgdispatch.core.errors import BotApiError, UpdateParseError
from tgdispatch.core.models import parse_update
from tgdispatch.dispatch.dispatcher import Dispatcher
from tgdispatch.observability.metrics import inc, inc_labelled

logger = logging.getLogger(__name__)


class PollingSource:
    """Long-poll loop over ``getUpdates``.

    Updates are dispatched serially in the loop thread. After each batch the
    offset moves to ``max(update_id) + 1`` so the platform drops what was
    consumed. Transport errors back off linearly (``backoff_ms * failures``,
    capped); an authentication error ends the loop by raising.
    """

    def __init__(
        self,
        api: Any,
        dispatcher: Dispatcher,
        timeout_s: int = 30,
        backoff_ms: int = 1000,
        max_backoff_ms: int = 30000,
        allowed_updates: Optional[List[str]] = None,
        on_raw: Optional[Callable[[dict], None]] = None,
    ):
        self.api = api
        self.dispatcher = dispatcher
        self.timeout_s = max(0, int(timeout_s))
        self.backoff_ms = max(0, int(backoff_ms))
        self.max_backoff_ms = max(self.backoff_ms, int(max_backoff_ms))
        self.allowed_updates = allowed_updates or None
        self.on_raw = on_raw
        self.offset: Optional[int] = None

    def _delay_s(self, failures: int, err: BotApiError) -> float:
        if err.retry_after:
            return float(err.retry_after)
        return min(self.backoff_ms * failures, self.max_backoff_ms) / 1000.0

    def poll_once(self) -> int:
        """Fetch and dispatch one batch; return the number of updates dispatched."""
        batch = self.api.get_updates(offset=self.offset, timeout=self.timeout_s, allowed_updates=self.allowed_updates)
        handled = 0
        for raw in batch:
            uid = raw.get("update_id") if isinstance(raw, dict) else None
            if isinstance(uid, int):
                self.offset = max(self.offset or 0, uid + 1)
            inc_labelled("updates_received", {"mode": "polling"}, 1)
            if self.on_raw is not None:
                self.on_raw(raw)
            try:
                update = parse_update(raw)
            except UpdateParseError as e:
                logger.warning("dropping unparseable update: %s", e)
                continue
            self.dispatcher.dispatch(update)
            handled += 1
        return handled

    def run(self, stop: threading.Event, max_batches: Optional[int] = None) -> int:
        total = 0
        batches = 0
        failures = 0
        logger.info("polling started (timeout=%ss)", self.timeout_s)
        while not stop.is_set():
            if max_batches is not None and batches >= max_batches:
                break
            batches += 1
            try:
                total += self.poll_once()
                failures = 0
            except BotApiError as e:
                if e.is_auth_error:
                    logger.error("getUpdates rejected the bot token: %s", e.description)
                    raise
                failures += 1
                inc("polling_errors", 1)
                delay = self._delay_s(failures, e)
                logger.warning("getUpdates failed (%s), retrying in %.1fs", e, delay)
                if stop.wait(delay):
                    break
        logger.info("polling stopped after %d updates", total)
        return total
