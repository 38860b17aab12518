"""
In-memory repository implementations.

Used by default and in tests. Data lives for the lifetime of the process.
"""

from typing import Dict, List, Optional

from .base import (
    DiscussionRepository,
    FlowRepository,
    InboxRepository,
    TaskRepository,
    UserMappingRepository,
)
from ..models.discussion import DiscussionRecord
from ..models.flow import Flow, FlowInput, FlowOutput, SourceType
from ..models.inbox import InboxMessage
from ..models.task import TaskRecord
from ..models.user_mapping import UserMapping


class MemoryFlowRepository(FlowRepository):

    def __init__(self):
        self._flows: Dict[str, Flow] = {}
        self._inputs: Dict[str, FlowInput] = {}
        self._outputs: Dict[str, FlowOutput] = {}

    async def save_flow(self, flow: Flow) -> str:
        self._flows[flow.id] = flow
        return flow.id

    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        return self._flows.get(flow_id)

    async def list_flows(self, team_id: Optional[str] = None) -> List[Flow]:
        return [f for f in self._flows.values() if team_id is None or f.team_id == team_id]

    async def save_input(self, flow_input: FlowInput) -> str:
        self._inputs[flow_input.id] = flow_input
        return flow_input.id

    async def get_input(self, input_id: str) -> Optional[FlowInput]:
        return self._inputs.get(input_id)

    async def get_inputs_by_source(self, source_type: SourceType, active_only: bool = True) -> List[FlowInput]:
        return [
            i for i in self._inputs.values()
            if i.source_type == source_type and (i.active or not active_only)
        ]

    async def find_input_by_email(self, email_address: str) -> Optional[FlowInput]:
        address = (email_address or "").strip().lower()
        slug = address.split("@")[0]
        inputs = await self.get_inputs_by_source(SourceType.FIGMA)
        for flow_input in inputs:
            if flow_input.email_address and flow_input.email_address.lower() == address:
                return flow_input
        for flow_input in inputs:
            if flow_input.email_slug and flow_input.email_slug.lower() == slug:
                return flow_input
        return None

    async def save_output(self, output: FlowOutput) -> str:
        self._outputs[output.id] = output
        return output.id

    async def get_outputs(self, flow_id: str, active_only: bool = True) -> List[FlowOutput]:
        return [
            o for o in self._outputs.values()
            if o.flow_id == flow_id and (o.active or not active_only)
        ]


class MemoryDiscussionRepository(DiscussionRepository):

    def __init__(self):
        self._discussions: Dict[str, DiscussionRecord] = {}

    async def save_discussion(self, discussion: DiscussionRecord) -> str:
        self._discussions[discussion.id] = discussion
        return discussion.id

    async def get_discussion(self, discussion_id: str) -> Optional[DiscussionRecord]:
        return self._discussions.get(discussion_id)

    async def find_by_source_thread_id(self, source_thread_id: str) -> Optional[DiscussionRecord]:
        for discussion in self._discussions.values():
            if discussion.source_thread_id == source_thread_id:
                return discussion
        return None

    async def delete_discussion(self, discussion_id: str) -> bool:
        return self._discussions.pop(discussion_id, None) is not None


class MemoryTaskRepository(TaskRepository):

    def __init__(self):
        self._tasks: Dict[str, TaskRecord] = {}

    async def save_task(self, task: TaskRecord) -> str:
        self._tasks[task.id] = task
        return task.id

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self._tasks.get(task_id)

    async def find_by_notion_page_id(self, notion_page_id: str) -> Optional[TaskRecord]:
        for task in self._tasks.values():
            if task.notion_page_id == notion_page_id:
                return task
        return None

    async def get_tasks_by_source_thread(self, source_thread_id: str) -> List[TaskRecord]:
        return [t for t in self._tasks.values() if t.source_thread_id == source_thread_id]


class MemoryUserMappingRepository(UserMappingRepository):

    def __init__(self):
        self._mappings: Dict[str, UserMapping] = {}

    async def save_mapping(self, mapping: UserMapping) -> str:
        self._mappings[mapping.id] = mapping
        return mapping.id

    async def find_mapping(self, team_id, source_type, source_workspace_id, source_user_id) -> Optional[UserMapping]:
        for mapping in self._mappings.values():
            if (
                mapping.team_id == team_id
                and mapping.source_type == source_type
                and mapping.source_workspace_id == source_workspace_id
                and mapping.source_user_id == source_user_id
            ):
                return mapping
        return None

    async def get_mappings(self, team_id, source_type=None, active_only=True) -> List[UserMapping]:
        return [
            m for m in self._mappings.values()
            if m.team_id == team_id
            and (source_type is None or m.source_type == source_type)
            and (m.active or not active_only)
        ]


class MemoryInboxRepository(InboxRepository):

    def __init__(self):
        self._messages: Dict[str, InboxMessage] = {}

    async def save_message(self, message: InboxMessage) -> str:
        self._messages[message.id] = message
        return message.id

    async def get_message(self, message_id: str) -> Optional[InboxMessage]:
        return self._messages.get(message_id)

    async def get_messages_by_input(self, input_id: str) -> List[InboxMessage]:
        messages = [m for m in self._messages.values() if m.input_id == input_id]
        return sorted(messages, key=lambda m: m.received_at, reverse=True)
