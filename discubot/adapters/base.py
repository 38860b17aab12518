"""
Common interface for discussion source adapters.

An adapter turns a platform's inbound payload into a ParsedDiscussion
and talks back to the platform: fetching the full thread, posting the
confirmation reply and showing processing status.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import AdapterError
from ..models.discussion import DiscussionStatus, DiscussionThread, ParsedDiscussion
from ..models.flow import FlowInput, SourceType

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Outcome of a configuration check."""
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_messages(cls, errors: List[str], warnings: List[str]) -> 'ValidationResult':
        return cls(valid=not errors, errors=errors, warnings=warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": self.errors, "warnings": self.warnings}


class SourceAdapter(ABC):
    """Abstract base for source adapters.

    Adapters share the application's ``httpx.AsyncClient``; thread ids
    are the adapter-specific strings produced by ``parse_incoming``.
    """

    source_type: SourceType

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    @abstractmethod
    async def parse_incoming(self, payload: Dict[str, Any], flow_input: Optional[FlowInput] = None) -> ParsedDiscussion:
        """
        Normalize an inbound payload.

        Args:
            payload: Decoded webhook payload
            flow_input: Matched input, when the caller already knows it

        Returns:
            Parsed discussion

        Raises:
            AdapterError: Required fields are missing (never retryable)
        """
        pass

    @abstractmethod
    async def fetch_thread(self, thread_id: str, flow_input: FlowInput) -> DiscussionThread:
        """
        Fetch the root message and replies for a thread.

        Raises:
            AdapterError: Retryable for network, 5xx and 429 failures
        """
        pass

    @abstractmethod
    async def post_reply(self, thread_id: str, message: str, flow_input: FlowInput) -> bool:
        """Post a reply into the thread. Returns False instead of raising."""
        pass

    @abstractmethod
    async def update_status(self, thread_id: str, status: DiscussionStatus, flow_input: FlowInput) -> bool:
        """Show processing status on the source (usually a reaction)."""
        pass

    @abstractmethod
    async def validate_config(self, flow_input: FlowInput) -> ValidationResult:
        """Check the input's configuration without network access."""
        pass

    @abstractmethod
    async def test_connection(self, flow_input: FlowInput) -> bool:
        """Check that the input's credentials work against the live API."""
        pass

    def _error(self, message: str, thread_id: Optional[str] = None, status_code: Optional[int] = None,
               retryable: bool = False, cause: Optional[BaseException] = None) -> AdapterError:
        return AdapterError(
            message,
            source_type=self.source_type.value,
            thread_id=thread_id,
            status_code=status_code,
            retryable=retryable,
            cause=cause,
        )

    def _status_error(self, response: httpx.Response, api_name: str, thread_id: Optional[str] = None) -> AdapterError:
        """Map an HTTP error response; 5xx and 429 are retryable."""
        message = f"{api_name} API error: {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("err") or body.get("message") or body.get("error")
            if detail:
                message = f"{api_name} API error: {detail}"
        return self._error(
            message,
            thread_id=thread_id,
            status_code=response.status_code,
            retryable=response.status_code >= 500 or response.status_code == 429,
        )
