from __future__ import annotations

import enum
import logging
from typing import Any, List, Optional

from tgdispatch.core.errors import BotApiError, WebhookRegistrationError

logger = logging.getLogger(__name__)


class DeliveryMode(str, enum.Enum):
    POLLING = "polling"
    WEBHOOK = "webhook"


def select_delivery_mode(public_url: Optional[str]) -> DeliveryMode:
    """Webhook when a public URL is configured, polling otherwise. Nothing else is consulted."""
    if public_url is not None and public_url.strip():
        return DeliveryMode.WEBHOOK
    return DeliveryMode.POLLING


def webhook_url(public_url: str, secret_path: str) -> str:
    path = secret_path if secret_path.startswith("/") else "/" + secret_path
    return public_url.strip().rstrip("/") + path


def register_webhook(
    api: Any,
    url: str,
    secret_token: Optional[str] = None,
    allowed_updates: Optional[List[str]] = None,
    drop_pending_updates: bool = True,
) -> None:
    """Register ``url`` with the platform once, by default discarding updates queued before it.

    Failures are not retried; they surface as WebhookRegistrationError.
    """
    try:
        ok = api.set_webhook(
            url,
            drop_pending_updates=drop_pending_updates,
            secret_token=secret_token or None,
            allowed_updates=allowed_updates or None,
        )
    except BotApiError as e:
        raise WebhookRegistrationError(
            e.method,
            description=e.description,
            status=e.status,
            error_code=e.error_code,
            retry_after=e.retry_after,
        ) from e
    if not ok:
        raise WebhookRegistrationError("setWebhook", description="platform returned false")
    logger.info("webhook registered", extra={"webhook_host": url.split("/")[2] if "://" in url else url})
