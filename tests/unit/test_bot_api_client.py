import json

import httpx
import pytest

from tgdispatch.adapters.telegram.bot_api import BotApiClient
from tgdispatch.core.errors import BotApiError

TOKEN = "123456:ABCdef"


def _client(handler) -> BotApiClient:
    transport = httpx.MockTransport(handler)
    return BotApiClient(TOKEN, base_url="https://api.example", client=httpx.Client(transport=transport))


def test_get_updates_posts_json_and_unwraps_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["timeout"] = request.extensions.get("timeout", {})
        return httpx.Response(200, json={"ok": True, "result": [{"update_id": 5}]})

    api = _client(handler)
    out = api.get_updates(offset=5, timeout=25)
    assert out == [{"update_id": 5}]
    assert seen["path"] == f"/bot{TOKEN}/getUpdates"
    assert seen["body"] == {"offset": 5, "timeout": 25, "limit": 100}
    assert seen["timeout"].get("read") == 35.0


def test_set_webhook_body_omits_unset_fields():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": True, "description": "Webhook was set"})

    api = _client(handler)
    assert api.set_webhook("https://bot.example/telegraf") is True
    assert api.set_webhook("https://bot.example/telegraf", secret_token="tok", allowed_updates=["message"]) is True
    assert bodies[0] == {"url": "https://bot.example/telegraf", "drop_pending_updates": True}
    assert bodies[1]["secret_token"] == "tok" and bodies[1]["allowed_updates"] == ["message"]


def test_ok_false_raises_with_code_and_retry_after():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={"ok": False, "error_code": 429, "description": "Too Many Requests", "parameters": {"retry_after": 3}},
        )

    with pytest.raises(BotApiError) as ei:
        _client(handler).send_message(1, "hi")
    err = ei.value
    assert err.method == "sendMessage"
    assert err.error_code == 429 and err.status == 429 and err.retry_after == 3
    assert not err.is_auth_error


def test_non_json_error_and_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/getMe"):
            return httpx.Response(502, text="<html>bad gateway</html>")
        return httpx.Response(401, json={"ok": False, "error_code": 401, "description": "Unauthorized"})

    api = _client(handler)
    with pytest.raises(BotApiError) as ei:
        api.get_me()
    assert ei.value.status == 502 and ei.value.error_code is None
    with pytest.raises(BotApiError) as ei2:
        api.get_updates()
    assert ei2.value.is_auth_error


def test_transport_error_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BotApiError) as ei:
        _client(handler).delete_webhook()
    assert ei.value.status is None
    assert isinstance(ei.value.__cause__, httpx.ConnectError)
    assert TOKEN not in str(ei.value)
