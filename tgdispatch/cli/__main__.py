from __future__ import annotations

import argparse
import sys

from tgdispatch.core.errors import BotApiError, ConfigError
from .commands import (
    cmd_config_dump,
    cmd_delete_webhook,
    cmd_metrics,
    cmd_run,
    cmd_run_local,
    cmd_set_webhook,
)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="tgdispatch")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def _config_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", action="append", default=[], help="TOML config file (repeatable; later files win, env wins over all)")

    p_run = sub.add_parser("run", help="Run the bot (webhook if WEBHOOK_DOMAIN is set, polling otherwise)")
    _config_arg(p_run)

    p_local = sub.add_parser("run-local", help="Replay updates from JSONL through the default handlers and print replies")
    p_local.add_argument("updates_file")

    p_set = sub.add_parser("set-webhook", help="Register a webhook URL")
    p_set.add_argument("url")
    p_set.add_argument("--drop-pending", action="store_true", help="Discard updates queued before registration")
    p_set.add_argument("--secret-token")
    _config_arg(p_set)

    p_del = sub.add_parser("delete-webhook", help="Remove the webhook registration")
    p_del.add_argument("--drop-pending", action="store_true")
    _config_arg(p_del)

    p_dump = sub.add_parser("config-dump", help="Print the effective configuration (secrets masked)")
    _config_arg(p_dump)

    p_metrics = sub.add_parser("metrics", help="Print in-process metrics counters")
    p_metrics.add_argument("--prometheus", action="store_true")

    args = parser.parse_args(argv)
    try:
        if args.cmd == "run":
            cmd_run(args.config)
        elif args.cmd == "run-local":
            cmd_run_local(args.updates_file)
        elif args.cmd == "set-webhook":
            cmd_set_webhook(args.url, args.config, secret_token=args.secret_token, drop_pending=args.drop_pending)
        elif args.cmd == "delete-webhook":
            cmd_delete_webhook(args.config, drop_pending=args.drop_pending)
        elif args.cmd == "config-dump":
            cmd_config_dump(args.config)
        elif args.cmd == "metrics":
            cmd_metrics(prometheus=args.prometheus)
    except ConfigError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2
    except BotApiError as e:
        print(f"telegram api error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
