"""
Inbox messages: auxiliary emails (verification, password reset,
invitations, notifications) received on a Figma mailbox alias.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .base import BaseModel, generate_id, parse_datetime, utc_now


@dataclass
class InboxMessage(BaseModel):
    id: str = field(default_factory=generate_id)
    input_id: str = ""
    team_id: str = ""
    message_type: str = "other"
    from_address: str = ""
    to_address: str = ""
    subject: str = ""
    html_body: Optional[str] = None
    text_body: Optional[str] = None
    received_at: datetime = field(default_factory=utc_now)
    read: bool = False
    provider_email_id: Optional[str] = None
    forwarded_to: Optional[str] = None
    forwarded_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InboxMessage':
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id(),
            input_id=data.get("input_id", ""),
            team_id=data.get("team_id", ""),
            message_type=data.get("message_type", "other"),
            from_address=data.get("from_address", ""),
            to_address=data.get("to_address", ""),
            subject=data.get("subject", ""),
            html_body=data.get("html_body"),
            text_body=data.get("text_body"),
            received_at=parse_datetime(data.get("received_at")) or utc_now(),
            read=data.get("read", False),
            provider_email_id=data.get("provider_email_id"),
            forwarded_to=data.get("forwarded_to"),
            forwarded_at=parse_datetime(data.get("forwarded_at")),
        )
