from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Set

from tgdispatch.core.models import Update
from tgdispatch.observability.metrics import inc
from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class DispatchPool:
    """Runs dispatches off the request thread with a ceiling on in-flight work.

    ``submit`` never blocks: past ``max_inflight`` it returns False and the
    caller is expected to refuse the update (the platform redelivers it).
    ``drain`` waits a bounded time for in-flight dispatches on shutdown.
    """

    def __init__(self, dispatcher: Dispatcher, max_workers: int = 8, max_inflight: int = 64):
        self.dispatcher = dispatcher
        self.max_inflight = max(1, int(max_inflight))
        self._slots = threading.BoundedSemaphore(self.max_inflight)
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="dispatch")
        self._inflight: Set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def inflight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def submit(self, update: Update) -> bool:
        if not self._slots.acquire(blocking=False):
            inc("dispatch_rejected", 1)
            return False
        # every accepted future is in _inflight before drain can take its snapshot
        with self._lock:
            fut = None if self._closed else self._executor.submit(self.dispatcher.dispatch, update)
            if fut is not None:
                self._inflight.add(fut)
        if fut is None:
            self._slots.release()
            inc("dispatch_rejected", 1)
            return False
        fut.add_done_callback(self._done)
        return True

    def _done(self, fut: Future) -> None:
        with self._lock:
            self._inflight.discard(fut)
        self._slots.release()
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            # Dispatcher.dispatch isolates handler errors; reaching here is a bug in dispatch itself
            logger.error("dispatch crashed", exc_info=exc)

    def drain(self, timeout_s: float) -> int:
        """Stop accepting work and wait up to ``timeout_s``; return the number of abandoned dispatches."""
        with self._lock:
            self._closed = True
            pending = set(self._inflight)
        not_done: Set[Future] = set()
        if pending:
            logger.info("draining %d in-flight dispatches (grace %.1fs)", len(pending), timeout_s)
            _, not_done = wait(pending, timeout=max(0.0, timeout_s))
        if not_done:
            logger.warning("abandoning %d dispatches still running after %.1fs", len(not_done), timeout_s)
        self._executor.shutdown(wait=False, cancel_futures=True)
        return len(not_done)

