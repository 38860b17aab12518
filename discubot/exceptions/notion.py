"""
Notion API errors.
"""

from typing import Optional

from .base import DiscubotError


class NotionAPIError(DiscubotError):
    """Notion request failed.

    4xx responses are permanent, 5xx/429/network failures are retryable.
    """

    default_code = "NOTION_API_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, notion_code: Optional[str] = None, **kwargs):
        if "retryable" not in kwargs:
            kwargs["retryable"] = status_code is None or status_code >= 500 or status_code == 429
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.notion_code = notion_code

