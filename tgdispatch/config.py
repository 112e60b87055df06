from __future__ import annotations

import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tgdispatch.core.errors import ConfigError

DEFAULT_API_URL = "https://api.telegram.org"
DEFAULT_SECRET_PATH = "/telegraf"
DEFAULT_PORT = 3000

# env var -> (toml section, key)
ENV_KEYS: Dict[str, tuple[str, str]] = {
    "BOT_TOKEN": ("bot", "token"),
    "TELEGRAM_API_URL": ("bot", "api_base_url"),
    "PORT": ("webhook", "port"),
    "HOST": ("webhook", "host"),
    "WEBHOOK_DOMAIN": ("webhook", "public_url"),
    "WEBHOOK_PATH": ("webhook", "secret_path"),
    "WEBHOOK_SECRET_TOKEN": ("webhook", "secret_token"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_JSON": ("logging", "json"),
}


@dataclass
class Config:
    bot_token: str
    api_base_url: str = DEFAULT_API_URL
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    public_url: str = ""
    secret_path: str = DEFAULT_SECRET_PATH
    secret_token: str = ""
    max_body_bytes: int = 1 << 20
    request_timeout_s: float = 10.0
    polling_timeout_s: int = 30
    polling_backoff_ms: int = 1000
    polling_max_backoff_ms: int = 30000
    allowed_updates: List[str] = field(default_factory=list)
    record_path: str = ""
    max_workers: int = 8
    max_inflight: int = 64
    handler_timeout_s: float = 30.0
    shutdown_grace_s: float = 10.0
    logging_level: str = "INFO"
    logging_json: bool = True

    def as_dict(self, masked: bool = True) -> Dict[str, Any]:
        out = asdict(self)
        if masked:
            out["bot_token"] = mask_token(self.bot_token)
            if self.secret_token:
                out["secret_token"] = "***"
        return out


def mask_token(token: str) -> str:
    head, sep, tail = token.partition(":")
    if not sep:
        return "***" if token else ""
    return f"{head}:***{tail[-4:]}" if len(tail) > 8 else f"{head}:***"


def normalize_secret_path(path: str) -> str:
    p = (path or "").strip() or DEFAULT_SECRET_PATH
    return p if p.startswith("/") else "/" + p


def _deep_merge(a: dict, b: dict) -> dict:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(value)


def _env_overlay(env: Mapping[str, str]) -> dict:
    out: dict = {}
    for var, (section, key) in ENV_KEYS.items():
        val = env.get(var)
        if val is None or val == "":
            continue
        out.setdefault(section, {})[key] = val
    return out


def config_from_dict(data: dict) -> Config:
    bot = data.get("bot", {}) or {}
    wh = data.get("webhook", {}) or {}
    poll = data.get("polling", {}) or {}
    disp = data.get("dispatch", {}) or {}
    log = data.get("logging", {}) or {}
    rec = data.get("recordings", {}) or {}

    token = str(bot.get("token", "") or "").strip()
    if not token:
        raise ConfigError("BOT_TOKEN is required")
    port = _int(wh.get("port", DEFAULT_PORT), "webhook.port")
    if not 0 <= port <= 65535:
        raise ConfigError(f"webhook.port out of range: {port}")
    max_inflight = _int(disp.get("max_inflight", 64), "dispatch.max_inflight")
    max_workers = _int(disp.get("max_workers", 8), "dispatch.max_workers")
    if max_inflight < 1 or max_workers < 1:
        raise ConfigError("dispatch.max_inflight and dispatch.max_workers must be >= 1")
    request_timeout_s = _float(wh.get("request_timeout_s", 10.0), "webhook.request_timeout_s")
    if request_timeout_s <= 0:
        raise ConfigError(f"webhook.request_timeout_s must be positive, got {request_timeout_s}")
    allowed = poll.get("allowed_updates", []) or []
    if isinstance(allowed, str):
        allowed = [a.strip() for a in allowed.split(",") if a.strip()]

    return Config(
        bot_token=token,
        api_base_url=str(bot.get("api_base_url", DEFAULT_API_URL)).rstrip("/"),
        host=str(wh.get("host", "0.0.0.0")),
        port=port,
        public_url=str(wh.get("public_url", "") or "").strip().rstrip("/"),
        secret_path=normalize_secret_path(str(wh.get("secret_path", DEFAULT_SECRET_PATH))),
        secret_token=str(wh.get("secret_token", "") or ""),
        max_body_bytes=_int(wh.get("max_body_bytes", 1 << 20), "webhook.max_body_bytes"),
        request_timeout_s=request_timeout_s,
        polling_timeout_s=_int(poll.get("timeout_s", 30), "polling.timeout_s"),
        polling_backoff_ms=_int(poll.get("backoff_ms", 1000), "polling.backoff_ms"),
        polling_max_backoff_ms=_int(poll.get("max_backoff_ms", 30000), "polling.max_backoff_ms"),
        allowed_updates=[str(a) for a in allowed],
        record_path=str(rec.get("path", "") or ""),
        max_workers=max_workers,
        max_inflight=max_inflight,
        handler_timeout_s=_float(disp.get("handler_timeout_s", 30.0), "dispatch.handler_timeout_s"),
        shutdown_grace_s=_float(disp.get("shutdown_grace_s", 10.0), "dispatch.shutdown_grace_s"),
        logging_level=str(log.get("level", "INFO")),
        logging_json=_bool(log.get("json", True)),
    )


def load_config(paths: Sequence[str | Path] = (), env: Optional[Mapping[str, str]] = None) -> Config:
    """Load TOML files in order (later wins, missing files skipped), then overlay the environment."""
    merged: dict = {}
    for p in paths:
        pth = Path(p)
        if not pth.exists():
            continue
        with pth.open("rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"{pth}: {e}") from e
        merged = _deep_merge(merged, data)
    merged = _deep_merge(merged, _env_overlay(os.environ if env is None else env))
    return config_from_dict(merged)
