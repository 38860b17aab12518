"""
Webhook ingress errors.
"""

from typing import List, Optional

from .base import DiscubotError


class WebhookError(DiscubotError):
    """Base class for errors raised while handling an inbound webhook."""

    default_code = "WEBHOOK_ERROR"
    status_code = 400


class SignatureVerificationError(WebhookError):
    """Signature or timestamp check failed.

    The user-facing message never says which check failed.
    """

    default_code = "INVALID_SIGNATURE"
    status_code = 401

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("user_message", "Invalid webhook signature")
        super().__init__(message, **kwargs)


class PayloadValidationError(WebhookError):
    """Payload is malformed or missing required fields."""

    default_code = "INVALID_PAYLOAD"
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def to_dict(self):
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class RateLimitExceededError(WebhookError):
    """Too many requests for this identifier and endpoint."""

    default_code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, message: str, limit: int, current: int, reset_in: float, reset_at: float, **kwargs):
        kwargs.setdefault("user_message", message)
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)
        self.limit = limit
        self.current = current
        self.reset_in = reset_in
        self.reset_at = reset_at

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)

    def to_dict(self):
        data = super().to_dict()
        data.update({
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_in": int(self.reset_in),
            "reset_at": int(self.reset_at),
        })
        return data
