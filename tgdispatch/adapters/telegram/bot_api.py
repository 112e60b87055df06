from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from tgdispatch.config import DEFAULT_API_URL
from tgdispatch.core.errors import BotApiError
from tgdispatch.observability.metrics import inc_labelled


class BotApiClient:
    """Thin synchronous client for the Telegram Bot API.

    Every method is a ``POST {base_url}/bot{token}/{method}`` with a JSON body.
    The response envelope is unwrapped and ``result`` returned; ``ok: false``,
    HTTP errors and transport failures all raise :class:`BotApiError`.
    """

    def __init__(self, token: str, base_url: str = DEFAULT_API_URL, client: Optional[httpx.Client] = None, timeout_s: float = 10.0):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "BotApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def call(self, method: str, params: Optional[Dict[str, Any]] = None, timeout_s: Optional[float] = None) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        body = {k: v for k, v in (params or {}).items() if v is not None}
        kwargs: Dict[str, Any] = {"json": body}
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s
        inc_labelled("bot_api_calls", {"method": method}, 1)
        try:
            resp = self.client.post(url, **kwargs)
        except httpx.HTTPError as e:
            inc_labelled("bot_api_errors", {"method": method}, 1)
            raise BotApiError(method, description=f"{type(e).__name__}: {e}") from e
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if resp.status_code >= 400 or not payload.get("ok"):
            inc_labelled("bot_api_errors", {"method": method}, 1)
            params_ = payload.get("parameters") or {}
            raise BotApiError(
                method,
                description=str(payload.get("description") or resp.reason_phrase),
                status=resp.status_code,
                error_code=payload.get("error_code"),
                retry_after=params_.get("retry_after"),
            )
        return payload.get("result")

    def get_me(self) -> Dict[str, Any]:
        return self.call("getMe")

    def get_updates(self, offset: Optional[int] = None, timeout: int = 30, limit: int = 100, allowed_updates: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        # the HTTP timeout must outlive the long-poll hold time
        result = self.call(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "limit": limit, "allowed_updates": allowed_updates or None},
            timeout_s=float(timeout) + 10.0,
        )
        return list(result or [])

    def set_webhook(self, url: str, drop_pending_updates: bool = True, secret_token: Optional[str] = None, allowed_updates: Optional[List[str]] = None) -> bool:
        return bool(
            self.call(
                "setWebhook",
                {
                    "url": url,
                    "drop_pending_updates": drop_pending_updates,
                    "secret_token": secret_token or None,
                    "allowed_updates": allowed_updates or None,
                },
            )
        )

    def delete_webhook(self, drop_pending_updates: bool = False) -> bool:
        return bool(self.call("deleteWebhook", {"drop_pending_updates": drop_pending_updates}))

    def send_message(self, chat_id: int | str, text: str, **extra: Any) -> Dict[str, Any]:
        return self.call("sendMessage", {"chat_id": chat_id, "text": text, **extra})


class FakeBotApi:
    """In-memory stand-in for :class:`BotApiClient` used offline and in tests.

    Rules:
    - ``get_updates`` pops queued batches, then returns an empty list
    - ``send_message`` records ``(chat_id, text)`` and returns a message stub
    - webhook calls record the last registration
    """

    def __init__(self, batches: Optional[List[List[Dict[str, Any]]]] = None):
        self.batches = list(batches or [])
        self.sent: List[tuple[int | str, str]] = []
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.webhook_url: Optional[str] = None
        self._message_id = 0

    def _record(self, method: str, **params: Any) -> None:
        self.calls.append((method, params))

    def get_me(self) -> Dict[str, Any]:
        self._record("getMe")
        return {"id": 0, "is_bot": True, "username": "fake_bot"}

    def get_updates(self, offset: Optional[int] = None, timeout: int = 30, limit: int = 100, allowed_updates: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        self._record("getUpdates", offset=offset, timeout=timeout)
        if not self.batches:
            return []
        return [u for u in self.batches.pop(0) if offset is None or u.get("update_id", 0) >= offset]

    def set_webhook(self, url: str, drop_pending_updates: bool = True, secret_token: Optional[str] = None, allowed_updates: Optional[List[str]] = None) -> bool:
        self._record("setWebhook", url=url, drop_pending_updates=drop_pending_updates)
        self.webhook_url = url
        return True

    def delete_webhook(self, drop_pending_updates: bool = False) -> bool:
        self._record("deleteWebhook", drop_pending_updates=drop_pending_updates)
        self.webhook_url = None
        return True

    def send_message(self, chat_id: int | str, text: str, **extra: Any) -> Dict[str, Any]:
        self._record("sendMessage", chat_id=chat_id, text=text)
        self.sent.append((chat_id, text))
        self._message_id += 1
        return {"message_id": self._message_id, "chat": {"id": chat_id}, "text": text}

    def close(self) -> None:
        pass
