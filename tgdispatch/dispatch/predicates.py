from __future__ import annotations

import re
from typing import Callable, Optional, Pattern, Union

from tgdispatch.core.models import Update

Predicate = Callable[[Update], bool]


def _named(pred: Predicate, name: str) -> Predicate:
    pred.__name__ = name
    pred.__qualname__ = name
    return pred


def any_update() -> Predicate:
    return _named(lambda u: True, "any_update")


def command(*names: str, username: Optional[str] = None) -> Predicate:
    """Match ``/name`` commands; with no names, match any command.

    With ``username`` set, ``/name@other_bot`` is ignored unless ``other_bot``
    is that username (case-insensitive); unaddressed commands always match.
    """
    wanted = {n.lstrip("/").lower() for n in names}
    me = username.lstrip("@").lower() if username else None

    def pred(u: Update) -> bool:
        if u.payload.kind != "command" or (wanted and u.payload.name not in wanted):
            return False
        mention = u.payload.mention
        return me is None or mention is None or mention.lower() == me

    return _named(pred, f"command({','.join(sorted(wanted)) or '*'})")


def text() -> Predicate:
    return _named(lambda u: u.payload.kind == "text", "text")


def hears(pattern: Union[str, Pattern[str]]) -> Predicate:
    """Match plain text messages.

    A string must equal the whole message text; a compiled pattern is searched.
    """
    if isinstance(pattern, str):
        def pred(u: Update) -> bool:
            return u.payload.kind == "text" and u.payload.text == pattern
        label = pattern
    else:
        rx = pattern

        def pred(u: Update) -> bool:
            return u.payload.kind == "text" and rx.search(u.payload.text) is not None
        label = rx.pattern
    return _named(pred, f"hears({label!r})")


def sticker() -> Predicate:
    return _named(lambda u: u.payload.kind == "sticker", "sticker")


def media(*media_types: str) -> Predicate:
    wanted = set(media_types)

    def pred(u: Update) -> bool:
        return u.payload.kind == "media" and (not wanted or u.payload.media_type in wanted)

    return _named(pred, f"media({','.join(sorted(wanted)) or '*'})")


def callback(data_pattern: Optional[Union[str, Pattern[str]]] = None) -> Predicate:
    rx = re.compile(data_pattern) if isinstance(data_pattern, str) else data_pattern

    def pred(u: Update) -> bool:
        if u.payload.kind != "callback":
            return False
        if rx is None:
            return True
        return u.payload.data is not None and rx.search(u.payload.data) is not None

    return _named(pred, f"callback({rx.pattern if rx is not None else '*'})")
