"""
AI analysis and task models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import BaseModel, generate_id, parse_datetime, utc_now


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskType(str, Enum):
    BUG = "bug"
    FEATURE = "feature"
    QUESTION = "question"
    IMPROVEMENT = "improvement"


@dataclass
class DetectedTask(BaseModel):
    """One actionable item extracted from a discussion.

    ``assignee`` may be a source user id, a Notion user UUID or empty.
    """
    title: str
    description: str = ""
    action_items: List[str] = field(default_factory=list)
    priority: Optional[str] = None
    type: Optional[str] = None
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    domain: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DetectedTask':
        """Create from an AI response dict (camelCase or snake_case keys)."""
        priority = data.get("priority")
        if priority not in {p.value for p in TaskPriority}:
            priority = None
        task_type = data.get("type")
        if task_type not in {t.value for t in TaskType}:
            task_type = None
        return cls(
            title=str(data.get("title") or "Untitled task").strip(),
            description=str(data.get("description") or ""),
            action_items=[str(i) for i in (data.get("action_items") or data.get("actionItems") or [])],
            priority=priority,
            type=task_type,
            assignee=data.get("assignee") or None,
            due_date=data.get("due_date") or data.get("dueDate") or None,
            tags=[str(t) for t in (data.get("tags") or [])],
            domain=data.get("domain") or None,
        )


@dataclass
class AISummary(BaseModel):
    """Summary of a discussion as returned by the AI collaborator."""
    summary: str
    key_points: List[str] = field(default_factory=list)
    sentiment: Optional[str] = None
    confidence: float = 0.0
    domain: Optional[str] = None


@dataclass
class TaskDetectionResult(BaseModel):
    is_multi_task: bool
    tasks: List[DetectedTask] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class AIAnalysisResult(BaseModel):
    """Combined summary plus task detection for one discussion."""
    summary: AISummary
    task_detection: TaskDetectionResult
    processing_time: float = 0.0
    cached: bool = False


@dataclass
class NotionTaskResult(BaseModel):
    """A task page created in Notion."""
    id: str
    url: str
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class TaskRecord(BaseModel):
    """Persisted link between a discussion and a created Notion page."""
    id: str = field(default_factory=generate_id)
    team_id: str = ""
    discussion_id: str = ""
    output_id: Optional[str] = None
    notion_page_id: str = ""
    notion_page_url: str = ""
    title: str = ""
    description: str = ""
    source_thread_id: str = ""
    source_url: str = ""
    status: str = "open"
    created_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskRecord':
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id(),
            team_id=data.get("team_id", ""),
            discussion_id=data.get("discussion_id", ""),
            output_id=data.get("output_id"),
            notion_page_id=data.get("notion_page_id", ""),
            notion_page_url=data.get("notion_page_url", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            source_thread_id=data.get("source_thread_id", ""),
            source_url=data.get("source_url", ""),
            status=data.get("status", "open"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            completed_at=parse_datetime(data.get("completed_at")),
        )
