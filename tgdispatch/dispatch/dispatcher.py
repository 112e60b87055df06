from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Pattern, Tuple, Union

from tgdispatch.core.models import Update
from tgdispatch.observability.metrics import Timer, inc, inc_labelled
from . import predicates as P
from .predicates import Predicate

logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """What a handler receives: the update plus a way to answer it."""

    update: Update
    api: Any
    logger: logging.Logger

    @property
    def chat_id(self) -> Optional[int]:
        return self.update.chat_id

    def reply(self, text: str, **extra: Any) -> Any:
        if self.chat_id is None:
            raise ValueError(f"update {self.update.update_id} has no chat to reply to")
        if self.api is None:
            raise RuntimeError("dispatcher has no api client; cannot reply")
        return self.api.send_message(self.chat_id, text, **extra)


HandlerFn = Callable[[HandlerContext], Any]


@dataclass(frozen=True)
class HandlerRegistration:
    name: str
    predicate: Predicate
    callback: HandlerFn


@dataclass
class DispatchResult:
    update_id: int
    matched: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    duplicate: bool = False
    # parallel to ``matched``: False where that registration failed
    outcomes: List[bool] = field(default_factory=list)

    def record(self, name: str, ok: bool) -> None:
        self.matched.append(name)
        self.outcomes.append(ok)
        if not ok:
            self.failed.append(name)

    @property
    def succeeded(self) -> List[str]:
        return [n for n, ok in zip(self.matched, self.outcomes) if ok]


class Dispatcher:
    """Routes each update to every registered handler whose predicate matches.

    Handlers run in registration order, synchronously, in the caller's thread.
    A failing predicate or handler is logged and counted; the remaining
    handlers still run. Registrations are frozen by :meth:`seal` (called
    implicitly on the first dispatch).

    Updates whose ``update_id`` was already seen among the last
    ``dedupe_window`` ids are skipped; the platform redelivers on timeouts.
    """

    def __init__(
        self,
        api: Any = None,
        dedupe_window: int = 1024,
        handler_timeout_s: float = 30.0,
        bot_username: Optional[str] = None,
    ):
        self.api = api
        self.bot_username = bot_username
        self.dedupe_window = max(0, int(dedupe_window))
        self.handler_timeout_s = handler_timeout_s
        self._pending: List[HandlerRegistration] = []
        self._registrations: Optional[Tuple[HandlerRegistration, ...]] = None
        self._seen: "OrderedDict[int, None]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def registrations(self) -> Tuple[HandlerRegistration, ...]:
        return self._registrations if self._registrations is not None else tuple(self._pending)

    @property
    def sealed(self) -> bool:
        return self._registrations is not None

    def seal(self) -> None:
        with self._lock:
            if self._registrations is None:
                self._registrations = tuple(self._pending)
                self._pending = []

    def register(self, predicate: Predicate, callback: HandlerFn, name: Optional[str] = None) -> HandlerRegistration:
        if self.sealed:
            raise RuntimeError("handlers cannot be registered after dispatch has started")
        reg = HandlerRegistration(name=name or getattr(callback, "__name__", repr(callback)), predicate=predicate, callback=callback)
        self._pending.append(reg)
        return reg

    def on(self, predicate: Predicate, name: Optional[str] = None) -> Callable[[HandlerFn], HandlerFn]:
        def deco(fn: HandlerFn) -> HandlerFn:
            self.register(predicate, fn, name=name)
            return fn

        return deco

    def command(self, *names: str) -> Callable[[HandlerFn], HandlerFn]:
        return self.on(P.command(*names, username=self.bot_username))

    def text(self) -> Callable[[HandlerFn], HandlerFn]:
        return self.on(P.text())

    def hears(self, pattern: Union[str, Pattern[str]]) -> Callable[[HandlerFn], HandlerFn]:
        return self.on(P.hears(pattern))

    def sticker(self) -> Callable[[HandlerFn], HandlerFn]:
        return self.on(P.sticker())

    def media(self, *media_types: str) -> Callable[[HandlerFn], HandlerFn]:
        return self.on(P.media(*media_types))

    def callback(self, data_pattern: Optional[Union[str, Pattern[str]]] = None) -> Callable[[HandlerFn], HandlerFn]:
        return self.on(P.callback(data_pattern))

    def _first_sighting(self, update_id: int) -> bool:
        if self.dedupe_window == 0:
            return True
        with self._lock:
            if update_id in self._seen:
                return False
            self._seen[update_id] = None
            while len(self._seen) > self.dedupe_window:
                self._seen.popitem(last=False)
            return True

    def dispatch(self, update: Update) -> DispatchResult:
        self.seal()
        result = DispatchResult(update_id=update.update_id)
        if not self._first_sighting(update.update_id):
            inc("updates_duplicate", 1)
            logger.info("skipping duplicate update %d", update.update_id)
            result.duplicate = True
            return result
        inc("updates_dispatched", 1)
        ctx = HandlerContext(update=update, api=self.api, logger=logger)
        for reg in self.registrations:
            try:
                if not reg.predicate(update):
                    continue
            except Exception:
                logger.exception("predicate of handler %s failed on update %d", reg.name, update.update_id)
                inc_labelled("handler_errors", {"handler": reg.name}, 1)
                result.record(reg.name, ok=False)
                continue
            inc_labelled("handler_calls", {"handler": reg.name}, 1)
            timer = Timer("handler_duration", {"handler": reg.name})
            ok = True
            try:
                with timer:
                    reg.callback(ctx)
            except Exception:
                logger.exception("handler %s failed on update %d", reg.name, update.update_id)
                inc_labelled("handler_errors", {"handler": reg.name}, 1)
                ok = False
            result.record(reg.name, ok)
            if self.handler_timeout_s and timer.elapsed_s > self.handler_timeout_s:
                inc("handler_slow", 1)
                logger.warning(
                    "handler %s took %.1fs on update %d (limit %.1fs)",
                    reg.name,
                    timer.elapsed_s,
                    update.update_id,
                    self.handler_timeout_s,
                )
        return result
