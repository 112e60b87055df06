from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class ParsedCommand:
    cmd: str
    args: List[str]
    mention: Optional[str] = None


def is_command_text(text: str, entities: Optional[List[Dict[str, Any]]] = None) -> bool:
    """True when the message text starts with a bot command.

    Telegram marks commands with a ``bot_command`` entity; messages forwarded
    without entities fall back to the leading slash.
    """
    t = text or ""
    if entities:
        return any(e.get("type") == "bot_command" and int(e.get("offset", -1)) == 0 for e in entities)
    return t.startswith("/") and len(t) > 1 and not t[1].isspace()


def parse_command(text: str) -> ParsedCommand:
    t = (text or "").strip()
    if t.startswith("/"):
        t = t[1:]
    parts = [p for p in t.split() if p]
    if not parts:
        return ParsedCommand(cmd="", args=[])
    head, _, mention = parts[0].partition("@")
    return ParsedCommand(cmd=head.lower(), args=parts[1:], mention=mention or None)
