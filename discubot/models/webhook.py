"""
Pydantic wire models for inbound webhook payloads and handler responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResendEmailData(BaseModel):
    """``data`` object of a Resend ``email.received`` event."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    email_id: Optional[str] = None
    from_address: Optional[str] = Field(default=None, alias="from")
    to: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    created_at: Optional[str] = None


class ResendWebhookPayload(BaseModel):
    """Resend webhook envelope. Only metadata, the body must be fetched."""
    model_config = ConfigDict(extra="allow")

    type: str = ""
    created_at: Optional[str] = None
    data: ResendEmailData = Field(default_factory=ResendEmailData)


class ResendEmail(BaseModel):
    """Full received email from the Resend API."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    from_address: str = Field(alias="from")
    to: List[str] = Field(default_factory=list)
    subject: str = ""
    html: Optional[str] = None
    text: Optional[str] = None
    created_at: Optional[str] = None
    headers: Dict[str, Any] = Field(default_factory=dict)


class TaskLink(BaseModel):
    id: str
    url: str


class ProcessingResponse(BaseModel):
    """Successful synchronous processing result returned by webhooks."""
    success: bool = True
    discussion_id: str
    task_count: int
    tasks: List[TaskLink] = Field(default_factory=list)
    is_multi_task: bool = False
    processing_time: float = 0.0
    summary: Optional[str] = None
    skipped: bool = False
    timestamp: datetime = Field(default_factory=datetime.utcnow)
