import pytest

from tgdispatch.adapters.telegram.bot_api import FakeBotApi
from tgdispatch.core.errors import BotApiError, WebhookRegistrationError
from tgdispatch.delivery.selector import DeliveryMode, register_webhook, select_delivery_mode, webhook_url


@pytest.mark.parametrize("url", [None, "", "   "])
def test_no_public_url_selects_polling(url):
    assert select_delivery_mode(url) is DeliveryMode.POLLING


@pytest.mark.parametrize("url", ["https://bot.example.com", "http://10.0.0.1:8443/"])
def test_public_url_selects_webhook(url):
    assert select_delivery_mode(url) is DeliveryMode.WEBHOOK
    # deterministic
    assert select_delivery_mode(url) is select_delivery_mode(url)


def test_webhook_url_joins_base_and_path():
    assert webhook_url("https://bot.example.com/", "/telegraf") == "https://bot.example.com/telegraf"
    assert webhook_url("https://bot.example.com", "s3cr3t") == "https://bot.example.com/s3cr3t"


def test_register_webhook_sends_full_url_and_drops_pending_once():
    api = FakeBotApi()
    register_webhook(api, "https://bot.example.com/telegraf")
    calls = [c for c in api.calls if c[0] == "setWebhook"]
    assert calls == [("setWebhook", {"url": "https://bot.example.com/telegraf", "drop_pending_updates": True})]
    assert api.webhook_url == "https://bot.example.com/telegraf"


class _FailingApi:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def set_webhook(self, url, **kwargs):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


def test_register_webhook_failure_surfaces_without_retry():
    api = _FailingApi(error=BotApiError("setWebhook", description="Bad Request: bad webhook", status=400, error_code=400))
    with pytest.raises(WebhookRegistrationError) as ei:
        register_webhook(api, "https://bot.example.com/x")
    assert ei.value.error_code == 400
    assert "bad webhook" in str(ei.value)
    assert api.calls == 1


def test_register_webhook_false_result_is_failure():
    with pytest.raises(WebhookRegistrationError):
        register_webhook(_FailingApi(result=False), "https://bot.example.com/x")


def test_register_webhook_can_keep_pending_updates():
    api = FakeBotApi()
    register_webhook(api, "https://bot.example.com/telegraf", drop_pending_updates=False)
    assert api.calls == [("setWebhook", {"url": "https://bot.example.com/telegraf", "drop_pending_updates": False})]
