"""
Base exception classes for Discubot.
"""

from datetime import datetime
from typing import Any, Dict, Optional


def create_error_context(**kwargs) -> Dict[str, Any]:
    """Build an error context dict, dropping empty values."""
    context = {k: v for k, v in kwargs.items() if v is not None}
    context.setdefault("timestamp", datetime.utcnow().isoformat())
    return context


class DiscubotError(Exception):
    """Base error for all pipeline failures.

    Every error carries a machine-readable ``error_code``, an optional
    ``user_message`` that is safe to return to webhook callers and a
    ``retryable`` flag that decides between 5xx and 4xx responses.
    """

    default_code = "DISCUBOT_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        retryable: bool = False,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or {}
        self.user_message = user_message
        self.retryable = retryable
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.user_message or self.message,
            "retryable": self.retryable,
        }

    def to_log_string(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items() if k != "timestamp")
            if ctx:
                parts.append(f"({ctx})")
        if self.cause is not None:
            parts.append(f"caused by {type(self.cause).__name__}: {self.cause}")
        return " ".join(parts)


class ConfigurationError(DiscubotError):
    """Invalid or incomplete configuration."""

    default_code = "CONFIGURATION_ERROR"


def handle_unexpected_error(error: Exception) -> DiscubotError:
    """Wrap an arbitrary exception so it can be logged uniformly."""
    if isinstance(error, DiscubotError):
        return error
    return DiscubotError(
        message=str(error) or type(error).__name__,
        error_code="UNEXPECTED_ERROR",
        cause=error,
    )
