"""
Source user to Notion user mapping.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .base import BaseModel, generate_id, parse_datetime, utc_now
from .flow import SourceType


@dataclass
class UserMapping(BaseModel):
    """(team, source, workspace, source user) -> Notion user.

    ``notion_user_id`` of None marks a pending mapping discovered by a
    bootstrap comment that still needs an administrator to complete it.
    """
    id: str = field(default_factory=generate_id)
    team_id: str = ""
    source_type: SourceType = SourceType.SLACK
    source_workspace_id: str = ""
    source_user_id: str = ""
    source_user_name: Optional[str] = None
    source_user_email: Optional[str] = None
    notion_user_id: Optional[str] = None
    notion_user_name: Optional[str] = None
    notion_user_email: Optional[str] = None
    mapping_type: str = "manual"
    confidence: float = 1.0
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    last_synced_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return not self.notion_user_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserMapping':
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id(),
            team_id=data.get("team_id", ""),
            source_type=SourceType(data.get("source_type", SourceType.SLACK.value)),
            source_workspace_id=data.get("source_workspace_id", ""),
            source_user_id=data.get("source_user_id", ""),
            source_user_name=data.get("source_user_name"),
            source_user_email=data.get("source_user_email"),
            notion_user_id=data.get("notion_user_id"),
            notion_user_name=data.get("notion_user_name"),
            notion_user_email=data.get("notion_user_email"),
            mapping_type=data.get("mapping_type", "manual"),
            confidence=float(data.get("confidence", 1.0)),
            active=data.get("active", True),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            last_synced_at=parse_datetime(data.get("last_synced_at")),
        )
