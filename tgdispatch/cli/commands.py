from __future__ import annotations

import json as _json
import logging
import threading
from typing import Optional, Sequence

from tgdispatch.adapters.telegram.bot_api import BotApiClient, FakeBotApi
from tgdispatch.bot.handlers import build_default_dispatcher
from tgdispatch.config import load_config
from tgdispatch.core.errors import UpdateParseError
from tgdispatch.core.models import parse_update
from tgdispatch.delivery.selector import register_webhook
from tgdispatch.observability.logging import setup_logging
from tgdispatch.observability.metrics import list_counters, list_counters_labelled
from tgdispatch.observability.prometheus import export_text as prometheus_export_text
from tgdispatch.observability.recording import read_jsonl
from tgdispatch.service.runner import ServiceRunner, build_context, install_signal_handlers

logger = logging.getLogger(__name__)


def cmd_run(config_paths: Sequence[str] = ()) -> None:
    """Run the bot until SIGINT/SIGTERM in the mode the configuration selects."""
    cfg = load_config(config_paths)
    setup_logging(cfg.logging_level, cfg.logging_json)
    api = BotApiClient(cfg.bot_token, base_url=cfg.api_base_url)
    try:
        ctx = build_context(cfg, api=api)
        stop = threading.Event()
        install_signal_handlers(stop)
        ServiceRunner(ctx).run(stop)
    finally:
        api.close()


def cmd_run_local(updates_file: str) -> str:
    """Replay JSONL updates through the default handlers without network access.

    Prints and returns one line per reply sent, ``<chat_id>: <text>``.
    """
    setup_logging()
    api = FakeBotApi()
    dispatcher = build_default_dispatcher(api)
    for raw in read_jsonl(updates_file):
        try:
            update = parse_update(raw)
        except UpdateParseError as e:
            logger.warning("skipping update: %s", e)
            continue
        dispatcher.dispatch(update)
    out = "\n".join(f"{chat_id}: {text}" for chat_id, text in api.sent)
    print(out)
    return out


def cmd_set_webhook(
    url: str,
    config_paths: Sequence[str] = (),
    secret_token: Optional[str] = None,
    drop_pending: bool = False,
) -> str:
    cfg = load_config(config_paths)
    with BotApiClient(cfg.bot_token, base_url=cfg.api_base_url) as api:
        register_webhook(
            api,
            url,
            secret_token=secret_token or cfg.secret_token or None,
            allowed_updates=cfg.allowed_updates,
            drop_pending_updates=drop_pending,
        )
    out = "webhook set"
    print(out)
    return out


def cmd_delete_webhook(config_paths: Sequence[str] = (), drop_pending: bool = False) -> str:
    cfg = load_config(config_paths)
    with BotApiClient(cfg.bot_token, base_url=cfg.api_base_url) as api:
        api.delete_webhook(drop_pending_updates=drop_pending)
    out = "webhook deleted"
    print(out)
    return out


def cmd_config_dump(config_paths: Sequence[str] = ()) -> str:
    cfg = load_config(config_paths)
    out = _json.dumps(cfg.as_dict(masked=True), indent=2, sort_keys=True)
    print(out)
    return out


def cmd_metrics(prometheus: bool = False) -> str:
    if prometheus:
        out = prometheus_export_text()
    else:
        lines = [f"{name} {val}" for name, val in list_counters()]
        for name, labels, val in list_counters_labelled():
            label_str = ",".join(f"{k}={v}" for k, v in labels)
            lines.append(f"{name}[{label_str}] {val}")
        out = "\n".join(lines)
    print(out)
    return out
