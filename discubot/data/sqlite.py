"""
SQLite implementation of data repositories using aiosqlite.

Each entity is stored as a JSON document alongside the handful of
columns the pipeline looks it up by.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

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

logger = logging.getLogger(__name__)


SCHEMA = [
    """CREATE TABLE IF NOT EXISTS flows (
        id TEXT PRIMARY KEY,
        team_id TEXT NOT NULL,
        data TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS flow_inputs (
        id TEXT PRIMARY KEY,
        flow_id TEXT NOT NULL,
        source_type TEXT NOT NULL,
        email_address TEXT,
        email_slug TEXT,
        active INTEGER NOT NULL DEFAULT 1,
        data TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS flow_outputs (
        id TEXT PRIMARY KEY,
        flow_id TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        data TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS discussions (
        id TEXT PRIMARY KEY,
        source_thread_id TEXT NOT NULL,
        data TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        notion_page_id TEXT,
        source_thread_id TEXT,
        data TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS user_mappings (
        id TEXT PRIMARY KEY,
        team_id TEXT NOT NULL,
        source_type TEXT NOT NULL,
        source_workspace_id TEXT NOT NULL,
        source_user_id TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        data TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS inbox_messages (
        id TEXT PRIMARY KEY,
        input_id TEXT NOT NULL,
        received_at TEXT NOT NULL,
        data TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_inputs_source ON flow_inputs(source_type)",
    "CREATE INDEX IF NOT EXISTS idx_outputs_flow ON flow_outputs(flow_id)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_discussions_thread ON discussions(source_thread_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_page ON tasks(notion_page_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_thread ON tasks(source_thread_id)",
    "CREATE INDEX IF NOT EXISTS idx_mappings_team ON user_mappings(team_id, source_type)",
    "CREATE INDEX IF NOT EXISTS idx_inbox_input ON inbox_messages(input_id)",
]


class SQLiteConnection:
    """SQLite database connection with connection pooling."""

    def __init__(self, db_path: str, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._connections: List[aiosqlite.Connection] = []
        self._available: asyncio.Queue = asyncio.Queue(maxsize=pool_size)
        self._lock = asyncio.Lock()
        self._initialized = False

    async def connect(self) -> None:
        """Open the pool and make sure the schema exists."""
        async with self._lock:
            if self._initialized:
                return

            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            for _ in range(self.pool_size):
                conn = await aiosqlite.connect(self.db_path)
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA journal_mode=WAL")
                self._connections.append(conn)
                await self._available.put(conn)

            conn = self._connections[0]
            for statement in SCHEMA:
                await conn.execute(statement)
            await conn.commit()

            self._initialized = True
            logger.info(f"SQLite store ready at {self.db_path} (pool={self.pool_size})")

    async def disconnect(self) -> None:
        """Close all database connections."""
        async with self._lock:
            if not self._initialized:
                return
            for conn in self._connections:
                await conn.close()
            self._connections.clear()
            self._available = asyncio.Queue(maxsize=self.pool_size)
            self._initialized = False

    @asynccontextmanager
    async def _get_connection(self):
        if not self._initialized:
            await self.connect()

        conn = await self._available.get()
        try:
            yield conn
        finally:
            await self._available.put(conn)

    async def execute(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute a write statement and return the affected row count."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            await conn.commit()
            return cursor.rowcount

    async def fetch_one(self, query: str, params: Optional[tuple] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params or ())
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


def _dump(model) -> str:
    return json.dumps(model.to_dict())


def _load(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return json.loads(row["data"])


class SQLiteFlowRepository(FlowRepository):
    """SQLite implementation of the flow repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save_flow(self, flow: Flow) -> str:
        await self.connection.execute(
            "INSERT OR REPLACE INTO flows (id, team_id, data) VALUES (?, ?, ?)",
            (flow.id, flow.team_id, _dump(flow)),
        )
        return flow.id

    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        data = _load(await self.connection.fetch_one("SELECT data FROM flows WHERE id = ?", (flow_id,)))
        return Flow.from_dict(data) if data else None

    async def list_flows(self, team_id: Optional[str] = None) -> List[Flow]:
        if team_id is None:
            rows = await self.connection.fetch_all("SELECT data FROM flows ORDER BY rowid")
        else:
            rows = await self.connection.fetch_all(
                "SELECT data FROM flows WHERE team_id = ? ORDER BY rowid", (team_id,)
            )
        return [Flow.from_dict(_load(row)) for row in rows]

    async def save_input(self, flow_input: FlowInput) -> str:
        await self.connection.execute(
            """
            INSERT OR REPLACE INTO flow_inputs
                (id, flow_id, source_type, email_address, email_slug, active, data)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                flow_input.id,
                flow_input.flow_id,
                flow_input.source_type.value,
                (flow_input.email_address or "").lower() or None,
                (flow_input.email_slug or "").lower() or None,
                1 if flow_input.active else 0,
                _dump(flow_input),
            ),
        )
        return flow_input.id

    async def get_input(self, input_id: str) -> Optional[FlowInput]:
        data = _load(await self.connection.fetch_one("SELECT data FROM flow_inputs WHERE id = ?", (input_id,)))
        return FlowInput.from_dict(data) if data else None

    async def get_inputs_by_source(self, source_type: SourceType, active_only: bool = True) -> List[FlowInput]:
        query = "SELECT data FROM flow_inputs WHERE source_type = ?"
        if active_only:
            query += " AND active = 1"
        rows = await self.connection.fetch_all(query + " ORDER BY rowid", (source_type.value,))
        return [FlowInput.from_dict(_load(row)) for row in rows]

    async def find_input_by_email(self, email_address: str) -> Optional[FlowInput]:
        address = (email_address or "").strip().lower()
        slug = address.split("@")[0]
        row = await self.connection.fetch_one(
            "SELECT data FROM flow_inputs WHERE active = 1 AND source_type = 'figma' AND email_address = ?"
            " ORDER BY rowid LIMIT 1",
            (address,),
        )
        if row is None:
            row = await self.connection.fetch_one(
                "SELECT data FROM flow_inputs WHERE active = 1 AND source_type = 'figma' AND email_slug = ?"
                " ORDER BY rowid LIMIT 1",
                (slug,),
            )
        return FlowInput.from_dict(_load(row)) if row else None

    async def save_output(self, output: FlowOutput) -> str:
        await self.connection.execute(
            "INSERT OR REPLACE INTO flow_outputs (id, flow_id, active, data) VALUES (?, ?, ?, ?)",
            (output.id, output.flow_id, 1 if output.active else 0, _dump(output)),
        )
        return output.id

    async def get_outputs(self, flow_id: str, active_only: bool = True) -> List[FlowOutput]:
        query = "SELECT data FROM flow_outputs WHERE flow_id = ?"
        if active_only:
            query += " AND active = 1"
        rows = await self.connection.fetch_all(query + " ORDER BY rowid", (flow_id,))
        return [FlowOutput.from_dict(_load(row)) for row in rows]


class SQLiteDiscussionRepository(DiscussionRepository):
    """SQLite implementation of the discussion repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save_discussion(self, discussion: DiscussionRecord) -> str:
        await self.connection.execute(
            "INSERT OR REPLACE INTO discussions (id, source_thread_id, data) VALUES (?, ?, ?)",
            (discussion.id, discussion.source_thread_id, _dump(discussion)),
        )
        return discussion.id

    async def get_discussion(self, discussion_id: str) -> Optional[DiscussionRecord]:
        data = _load(await self.connection.fetch_one("SELECT data FROM discussions WHERE id = ?", (discussion_id,)))
        return DiscussionRecord.from_dict(data) if data else None

    async def find_by_source_thread_id(self, source_thread_id: str) -> Optional[DiscussionRecord]:
        data = _load(await self.connection.fetch_one(
            "SELECT data FROM discussions WHERE source_thread_id = ?", (source_thread_id,)
        ))
        return DiscussionRecord.from_dict(data) if data else None

    async def delete_discussion(self, discussion_id: str) -> bool:
        count = await self.connection.execute("DELETE FROM discussions WHERE id = ?", (discussion_id,))
        return count > 0


class SQLiteTaskRepository(TaskRepository):
    """SQLite implementation of the task repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save_task(self, task: TaskRecord) -> str:
        await self.connection.execute(
            "INSERT OR REPLACE INTO tasks (id, notion_page_id, source_thread_id, data) VALUES (?, ?, ?, ?)",
            (task.id, task.notion_page_id, task.source_thread_id, _dump(task)),
        )
        return task.id

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        data = _load(await self.connection.fetch_one("SELECT data FROM tasks WHERE id = ?", (task_id,)))
        return TaskRecord.from_dict(data) if data else None

    async def find_by_notion_page_id(self, notion_page_id: str) -> Optional[TaskRecord]:
        data = _load(await self.connection.fetch_one(
            "SELECT data FROM tasks WHERE notion_page_id = ?", (notion_page_id,)
        ))
        return TaskRecord.from_dict(data) if data else None

    async def get_tasks_by_source_thread(self, source_thread_id: str) -> List[TaskRecord]:
        rows = await self.connection.fetch_all(
            "SELECT data FROM tasks WHERE source_thread_id = ? ORDER BY rowid", (source_thread_id,)
        )
        return [TaskRecord.from_dict(_load(row)) for row in rows]


class SQLiteUserMappingRepository(UserMappingRepository):
    """SQLite implementation of the user mapping repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save_mapping(self, mapping: UserMapping) -> str:
        await self.connection.execute(
            """
            INSERT OR REPLACE INTO user_mappings
                (id, team_id, source_type, source_workspace_id, source_user_id, active, data)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                mapping.id,
                mapping.team_id,
                mapping.source_type.value,
                mapping.source_workspace_id,
                mapping.source_user_id,
                1 if mapping.active else 0,
                _dump(mapping),
            ),
        )
        return mapping.id

    async def find_mapping(self, team_id, source_type, source_workspace_id, source_user_id) -> Optional[UserMapping]:
        data = _load(await self.connection.fetch_one(
            """
            SELECT data FROM user_mappings
            WHERE team_id = ? AND source_type = ? AND source_workspace_id = ? AND source_user_id = ?
            """,
            (team_id, SourceType(source_type).value, source_workspace_id, source_user_id),
        ))
        return UserMapping.from_dict(data) if data else None

    async def get_mappings(self, team_id, source_type=None, active_only=True) -> List[UserMapping]:
        query = "SELECT data FROM user_mappings WHERE team_id = ?"
        params: List[Any] = [team_id]
        if source_type is not None:
            query += " AND source_type = ?"
            params.append(SourceType(source_type).value)
        if active_only:
            query += " AND active = 1"
        rows = await self.connection.fetch_all(query + " ORDER BY rowid", tuple(params))
        return [UserMapping.from_dict(_load(row)) for row in rows]


class SQLiteInboxRepository(InboxRepository):
    """SQLite implementation of the inbox repository."""

    def __init__(self, connection: SQLiteConnection):
        self.connection = connection

    async def save_message(self, message: InboxMessage) -> str:
        await self.connection.execute(
            "INSERT OR REPLACE INTO inbox_messages (id, input_id, received_at, data) VALUES (?, ?, ?, ?)",
            (message.id, message.input_id, message.received_at.isoformat(), _dump(message)),
        )
        return message.id

    async def get_message(self, message_id: str) -> Optional[InboxMessage]:
        data = _load(await self.connection.fetch_one("SELECT data FROM inbox_messages WHERE id = ?", (message_id,)))
        return InboxMessage.from_dict(data) if data else None

    async def get_messages_by_input(self, input_id: str) -> List[InboxMessage]:
        rows = await self.connection.fetch_all(
            "SELECT data FROM inbox_messages WHERE input_id = ? ORDER BY received_at DESC", (input_id,)
        )
        return [InboxMessage.from_dict(_load(row)) for row in rows]
