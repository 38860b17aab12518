"""
Discussion models: the canonical parsed form every adapter produces and
the persisted discussion record.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import BaseModel, generate_id, parse_datetime, utc_now
from .flow import SourceType


class DiscussionStatus(str, Enum):
    """Lifecycle of a discussion through the processor."""
    PENDING = "pending"
    PROCESSING = "processing"
    ANALYZED = "analyzed"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


@dataclass
class ParsedDiscussion(BaseModel):
    """Normalized representation of an inbound comment or message.

    ``source_thread_id`` is stable across repeated deliveries of the same
    event and is the deduplication key. ``metadata`` carries everything
    needed to rebuild deep links into the source.
    """
    source_type: SourceType
    source_thread_id: str
    source_url: str
    team_id: str
    author_handle: str
    title: str
    content: str
    participants: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParsedDiscussion':
        """Create from dictionary."""
        return cls(
            source_type=SourceType(data["source_type"]),
            source_thread_id=data["source_thread_id"],
            source_url=data.get("source_url", ""),
            team_id=data.get("team_id", ""),
            author_handle=data.get("author_handle", ""),
            title=data.get("title", ""),
            content=data.get("content", ""),
            participants=list(data.get("participants") or []),
            timestamp=parse_datetime(data.get("timestamp")) or utc_now(),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ThreadMessage(BaseModel):
    """One message in a source thread."""
    id: str
    author_handle: str
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    author_name: Optional[str] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class DiscussionThread(BaseModel):
    """Root message plus ordered replies, as fetched from the source."""
    id: str
    root_message: ThreadMessage
    replies: List[ThreadMessage] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)
    status: DiscussionStatus = DiscussionStatus.PENDING
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def messages(self) -> List[ThreadMessage]:
        return [self.root_message] + list(self.replies)

    def content_text(self) -> str:
        """All message bodies joined, used for keyword checks and cache keys."""
        return "\n".join(m.content for m in self.messages)


@dataclass
class DiscussionRecord(BaseModel):
    """Persisted discussion.

    ``source_thread_id`` is the dedup key; ``thread_ref`` is the thread id
    used for replies and status updates (for Figma it is refined to
    ``fileKey:commentId`` once the comment is located).
    """
    id: str = field(default_factory=generate_id)
    team_id: str = ""
    flow_id: Optional[str] = None
    input_id: Optional[str] = None
    source_type: SourceType = SourceType.FIGMA
    source_thread_id: str = ""
    thread_ref: Optional[str] = None
    source_url: str = ""
    title: str = ""
    content: str = ""
    author_handle: str = ""
    participants: List[str] = field(default_factory=list)
    status: DiscussionStatus = DiscussionStatus.PENDING
    summary: Optional[str] = None
    task_ids: List[str] = field(default_factory=list)
    is_multi_task: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw_payload: Dict[str, Any] = field(default_factory=dict)
    processing_time: Optional[float] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    processed_at: Optional[datetime] = None

    def to_parsed(self) -> ParsedDiscussion:
        """Rebuild the parsed form for reprocessing."""
        return ParsedDiscussion(
            source_type=self.source_type,
            source_thread_id=self.source_thread_id,
            source_url=self.source_url,
            team_id=self.team_id,
            author_handle=self.author_handle,
            title=self.title,
            content=self.content,
            participants=list(self.participants),
            timestamp=self.created_at,
            metadata=dict(self.metadata),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiscussionRecord':
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id(),
            team_id=data.get("team_id", ""),
            flow_id=data.get("flow_id"),
            input_id=data.get("input_id"),
            source_type=SourceType(data.get("source_type", SourceType.FIGMA.value)),
            source_thread_id=data.get("source_thread_id", ""),
            thread_ref=data.get("thread_ref"),
            source_url=data.get("source_url", ""),
            title=data.get("title", ""),
            content=data.get("content", ""),
            author_handle=data.get("author_handle", ""),
            participants=list(data.get("participants") or []),
            status=DiscussionStatus(data.get("status", DiscussionStatus.PENDING.value)),
            summary=data.get("summary"),
            task_ids=list(data.get("task_ids") or []),
            is_multi_task=data.get("is_multi_task", False),
            error=data.get("error"),
            metadata=dict(data.get("metadata") or {}),
            raw_payload=dict(data.get("raw_payload") or {}),
            processing_time=data.get("processing_time"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
            processed_at=parse_datetime(data.get("processed_at")),
        )
