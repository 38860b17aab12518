"""
Flow configuration models: flows, their inputs (sources) and outputs (sinks).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import BaseModel, generate_id, parse_datetime, utc_now


class SourceType(str, Enum):
    """Inbound source platforms."""
    FIGMA = "figma"    # Figma comment notifications forwarded by email
    SLACK = "slack"
    NOTION = "notion"


class OutputType(str, Enum):
    """Destination types for detected tasks."""
    NOTION = "notion"
    GITHUB = "github"
    LINEAR = "linear"


@dataclass
class Flow(BaseModel):
    """Binds one or more inputs to one or more outputs for a team."""
    id: str = field(default_factory=generate_id)
    team_id: str = ""
    name: str = ""
    description: str = ""
    available_domains: List[str] = field(default_factory=list)
    ai_enabled: bool = True
    summary_prompt: Optional[str] = None
    task_prompt: Optional[str] = None
    reply_personality: Optional[str] = None
    personality_icon: Optional[str] = None
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Flow':
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id(),
            team_id=data.get("team_id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            available_domains=list(data.get("available_domains") or []),
            ai_enabled=data.get("ai_enabled", True),
            summary_prompt=data.get("summary_prompt"),
            task_prompt=data.get("task_prompt"),
            reply_personality=data.get("reply_personality"),
            personality_icon=data.get("personality_icon"),
            active=data.get("active", True),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


@dataclass
class FlowInput(BaseModel):
    """One configured inbound channel (mailbox alias, Slack app, Notion integration).

    ``source_metadata`` holds per-source keys such as ``slackTeamId``,
    ``notionWorkspaceId``, ``notionIntegrationId``, ``notionToken``,
    ``triggerKeyword`` and ``botUserId``.
    """
    id: str = field(default_factory=generate_id)
    flow_id: str = ""
    team_id: str = ""
    source_type: SourceType = SourceType.FIGMA
    name: str = ""
    api_token: Optional[str] = None
    webhook_secret: Optional[str] = None
    email_address: Optional[str] = None
    email_slug: Optional[str] = None
    source_metadata: Dict[str, Any] = field(default_factory=dict)
    enable_email_forwarding: bool = False
    owner_email: Optional[str] = None
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowInput':
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id(),
            flow_id=data.get("flow_id", ""),
            team_id=data.get("team_id", ""),
            source_type=SourceType(data.get("source_type", SourceType.FIGMA.value)),
            name=data.get("name", ""),
            api_token=data.get("api_token"),
            webhook_secret=data.get("webhook_secret"),
            email_address=data.get("email_address"),
            email_slug=data.get("email_slug"),
            source_metadata=dict(data.get("source_metadata") or {}),
            enable_email_forwarding=data.get("enable_email_forwarding", False),
            owner_email=data.get("owner_email"),
            active=data.get("active", True),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class FlowOutput(BaseModel):
    """One configured destination sink."""
    id: str = field(default_factory=generate_id)
    flow_id: str = ""
    name: str = ""
    output_type: OutputType = OutputType.NOTION
    domain_filter: List[str] = field(default_factory=list)
    is_default: bool = False
    output_config: Dict[str, Any] = field(default_factory=dict)
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowOutput':
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id(),
            flow_id=data.get("flow_id", ""),
            name=data.get("name", ""),
            output_type=OutputType(data.get("output_type", OutputType.NOTION.value)),
            domain_filter=list(data.get("domain_filter") or []),
            is_default=data.get("is_default", False),
            output_config=dict(data.get("output_config") or {}),
            active=data.get("active", True),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )
