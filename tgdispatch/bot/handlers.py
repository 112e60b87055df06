from __future__ import annotations

from typing import Any, Optional

from tgdispatch.dispatch.dispatcher import Dispatcher, HandlerContext

WELCOME_TEXT = "Welcome"
HELP_TEXT = "Send me a sticker"
STICKER_REPLY = "\N{THUMBS UP SIGN}"
GREETING_REPLY = "Hey there"


def on_start(ctx: HandlerContext) -> None:
    ctx.reply(WELCOME_TEXT)


def on_help(ctx: HandlerContext) -> None:
    ctx.reply(HELP_TEXT)


def on_sticker(ctx: HandlerContext) -> None:
    ctx.reply(STICKER_REPLY)


def log_text(ctx: HandlerContext) -> None:
    sender = ctx.update.sender.username if ctx.update.sender is not None else None
    ctx.logger.info("text from %s in chat %s: %s", sender or "?", ctx.chat_id, ctx.update.payload.text)


def on_hi(ctx: HandlerContext) -> None:
    ctx.reply(GREETING_REPLY)


def register_default_handlers(dispatcher: Dispatcher) -> Dispatcher:
    """/start, /help, a sticker reply, a text logger and the ``hi`` greeting.

    The text logger is registered before ``hi`` so a plain "hi" fires both.
    """
    dispatcher.command("start")(on_start)
    dispatcher.command("help")(on_help)
    dispatcher.sticker()(on_sticker)
    dispatcher.text()(log_text)
    dispatcher.hears("hi")(on_hi)
    return dispatcher


def build_default_dispatcher(
    api: Any,
    dedupe_window: int = 1024,
    handler_timeout_s: float = 30.0,
    bot_username: Optional[str] = None,
) -> Dispatcher:
    dispatcher = Dispatcher(api=api, dedupe_window=dedupe_window, handler_timeout_s=handler_timeout_s, bot_username=bot_username)
    return register_default_handlers(dispatcher)
