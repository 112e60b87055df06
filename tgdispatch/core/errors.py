from __future__ import annotations

from typing import Optional


class TgDispatchError(Exception):
    """Base class for errors raised by tgdispatch."""


class ConfigError(TgDispatchError):
    pass


class UpdateParseError(TgDispatchError):
    pass


class BotApiError(TgDispatchError):
    """A Bot API call failed: transport error, HTTP error or ``ok: false`` envelope."""

    def __init__(
        self,
        method: str,
        description: str = "",
        status: Optional[int] = None,
        error_code: Optional[int] = None,
        retry_after: Optional[int] = None,
    ):
        self.method = method
        self.description = description
        self.status = status
        self.error_code = error_code
        self.retry_after = retry_after
        code = error_code if error_code is not None else status
        super().__init__(f"{method} failed ({code if code is not None else 'network'}): {description}")

    @property
    def is_auth_error(self) -> bool:
        # getUpdates answers 401/404 for a revoked or malformed token
        return (self.error_code or self.status) in (401, 404)


class WebhookRegistrationError(BotApiError):
    pass
