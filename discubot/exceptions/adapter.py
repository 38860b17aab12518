"""
Source adapter errors.
"""

from typing import Optional

from .base import DiscubotError


class AdapterError(DiscubotError):
    """Failure inside a source adapter.

    Parse failures are never retryable. Network failures, 5xx and 429
    responses from the source API are.
    """

    default_code = "ADAPTER_ERROR"

    def __init__(
        self,
        message: str,
        source_type: Optional[str] = None,
        thread_id: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
        **kwargs,
    ):
        super().__init__(message, retryable=retryable, **kwargs)
        self.source_type = source_type
        self.thread_id = thread_id
        self.status_code = status_code
        if source_type:
            self.context.setdefault("source_type", source_type)
        if thread_id:
            self.context.setdefault("thread_id", thread_id)


class EmailProviderError(AdapterError):
    """The email provider API (fetch or send) failed."""

    default_code = "EMAIL_PROVIDER_ERROR"
