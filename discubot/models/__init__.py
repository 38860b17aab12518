"""
Data models for Discubot.
"""

from .base import BaseModel, generate_id
from .flow import Flow, FlowInput, FlowOutput, SourceType, OutputType
from .discussion import (
    ParsedDiscussion, ThreadMessage, DiscussionThread, DiscussionRecord, DiscussionStatus
)
from .task import (
    DetectedTask, AISummary, TaskDetectionResult, AIAnalysisResult,
    NotionTaskResult, TaskRecord, TaskPriority, TaskType
)
from .user_mapping import UserMapping
from .inbox import InboxMessage

__all__ = [
    'BaseModel',
    'generate_id',

    # Flow configuration
    'Flow',
    'FlowInput',
    'FlowOutput',
    'SourceType',
    'OutputType',

    # Discussions
    'ParsedDiscussion',
    'ThreadMessage',
    'DiscussionThread',
    'DiscussionRecord',
    'DiscussionStatus',

    # AI analysis and tasks
    'DetectedTask',
    'AISummary',
    'TaskDetectionResult',
    'AIAnalysisResult',
    'NotionTaskResult',
    'TaskRecord',
    'TaskPriority',
    'TaskType',

    'UserMapping',
    'InboxMessage',
]
