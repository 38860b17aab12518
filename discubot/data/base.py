"""
Abstract repository interfaces for the data access layer.

Concrete implementations (in-memory and SQLite) inherit from these
abstract base classes. The pipeline only issues point lookups, inserts
and updates; no operation spans multiple entities transactionally.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models.discussion import DiscussionRecord
from ..models.flow import Flow, FlowInput, FlowOutput, SourceType
from ..models.inbox import InboxMessage
from ..models.task import TaskRecord
from ..models.user_mapping import UserMapping


class FlowRepository(ABC):
    """Abstract repository for flows and their inputs and outputs."""

    @abstractmethod
    async def save_flow(self, flow: Flow) -> str:
        """
        Insert or replace a flow.

        Returns:
            The flow ID
        """
        pass

    @abstractmethod
    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        """Retrieve a flow by ID."""
        pass

    @abstractmethod
    async def list_flows(self, team_id: Optional[str] = None) -> List[Flow]:
        """List flows, optionally filtered by team."""
        pass

    @abstractmethod
    async def save_input(self, flow_input: FlowInput) -> str:
        """Insert or replace a flow input (also used for metadata auto-capture)."""
        pass

    @abstractmethod
    async def get_input(self, input_id: str) -> Optional[FlowInput]:
        """Retrieve a flow input by ID."""
        pass

    @abstractmethod
    async def get_inputs_by_source(self, source_type: SourceType, active_only: bool = True) -> List[FlowInput]:
        """
        List inputs of one source type.

        Args:
            source_type: Source platform to filter on
            active_only: Skip inputs flagged inactive

        Returns:
            Matching inputs in insertion order
        """
        pass

    @abstractmethod
    async def find_input_by_email(self, email_address: str) -> Optional[FlowInput]:
        """
        Find the active input whose mailbox matches a recipient address.

        Matches the full address first, then the local part against the
        input's email slug.
        """
        pass

    @abstractmethod
    async def save_output(self, output: FlowOutput) -> str:
        """Insert or replace a flow output."""
        pass

    @abstractmethod
    async def get_outputs(self, flow_id: str, active_only: bool = True) -> List[FlowOutput]:
        """List outputs configured for a flow, in insertion order."""
        pass


class DiscussionRepository(ABC):
    """Abstract repository for discussion records."""

    @abstractmethod
    async def save_discussion(self, discussion: DiscussionRecord) -> str:
        """Insert or replace a discussion."""
        pass

    @abstractmethod
    async def get_discussion(self, discussion_id: str) -> Optional[DiscussionRecord]:
        """Retrieve a discussion by ID."""
        pass

    @abstractmethod
    async def find_by_source_thread_id(self, source_thread_id: str) -> Optional[DiscussionRecord]:
        """
        Find the discussion created for a source thread.

        Used for deduplication of redelivered events.
        """
        pass

    @abstractmethod
    async def delete_discussion(self, discussion_id: str) -> bool:
        """Delete a discussion. Returns True if it existed."""
        pass


class TaskRepository(ABC):
    """Abstract repository for created task records."""

    @abstractmethod
    async def save_task(self, task: TaskRecord) -> str:
        """Insert or replace a task record."""
        pass

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        """Retrieve a task record by ID."""
        pass

    @abstractmethod
    async def find_by_notion_page_id(self, notion_page_id: str) -> Optional[TaskRecord]:
        """Find the task record for a Notion page (completion callbacks)."""
        pass

    @abstractmethod
    async def get_tasks_by_source_thread(self, source_thread_id: str) -> List[TaskRecord]:
        """All task records created for a source thread, across retries."""
        pass


class UserMappingRepository(ABC):
    """Abstract repository for source user to Notion user mappings."""

    @abstractmethod
    async def save_mapping(self, mapping: UserMapping) -> str:
        """Insert or replace a mapping."""
        pass

    @abstractmethod
    async def find_mapping(
        self,
        team_id: str,
        source_type: SourceType,
        source_workspace_id: str,
        source_user_id: str,
    ) -> Optional[UserMapping]:
        """Find the mapping for one source user."""
        pass

    @abstractmethod
    async def get_mappings(
        self,
        team_id: str,
        source_type: Optional[SourceType] = None,
        active_only: bool = True,
    ) -> List[UserMapping]:
        """List mappings for a team, optionally for one source type."""
        pass


class InboxRepository(ABC):
    """Abstract repository for auxiliary inbox emails."""

    @abstractmethod
    async def save_message(self, message: InboxMessage) -> str:
        """Insert or replace an inbox message."""
        pass

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[InboxMessage]:
        """Retrieve an inbox message by ID."""
        pass

    @abstractmethod
    async def get_messages_by_input(self, input_id: str) -> List[InboxMessage]:
        """List inbox messages received for an input, newest first."""
        pass
