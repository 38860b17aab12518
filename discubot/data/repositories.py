"""
Repository factory and process-wide accessors.

The factory hands out repositories for the configured backend
(``memory`` or ``sqlite``); the seed loader populates flows, inputs,
outputs and user mappings from a JSON file at startup.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .base import (
    DiscussionRepository,
    FlowRepository,
    InboxRepository,
    TaskRepository,
    UserMappingRepository,
)
from .memory import (
    MemoryDiscussionRepository,
    MemoryFlowRepository,
    MemoryInboxRepository,
    MemoryTaskRepository,
    MemoryUserMappingRepository,
)
from .sqlite import (
    SQLiteConnection,
    SQLiteDiscussionRepository,
    SQLiteFlowRepository,
    SQLiteInboxRepository,
    SQLiteTaskRepository,
    SQLiteUserMappingRepository,
)
from ..exceptions import ConfigurationError
from ..models.flow import Flow, FlowInput, FlowOutput
from ..models.user_mapping import UserMapping
from ..services.domain_routing import validate_flow_outputs

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("memory", "sqlite")


class RepositoryFactory:
    """Factory for creating repository instances."""

    def __init__(self, backend: str = "memory", **config):
        """
        Initialize repository factory.

        Args:
            backend: Storage backend to use ('memory' or 'sqlite')
            **config: Backend-specific options (db_path, pool_size)
        """
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError(f"Unsupported backend: {backend}")
        self.backend = backend
        self.config = config
        self._connection: Optional[SQLiteConnection] = None
        self._memory: Dict[str, Any] = {}

    async def get_connection(self) -> SQLiteConnection:
        """Get or create the SQLite connection pool."""
        if self.backend != "sqlite":
            raise ValueError(f"Backend '{self.backend}' has no database connection")
        if self._connection is None:
            db_path = self.config.get("db_path", "data/discubot.db")
            pool_size = self.config.get("pool_size", 5)
            self._connection = SQLiteConnection(db_path, pool_size)
            await self._connection.connect()
        return self._connection

    def _memory_repo(self, name: str, cls):
        # Memory repositories are shared so every caller sees the same data
        if name not in self._memory:
            self._memory[name] = cls()
        return self._memory[name]

    async def get_flow_repository(self) -> FlowRepository:
        """Create and return a flow repository instance."""
        if self.backend == "memory":
            return self._memory_repo("flows", MemoryFlowRepository)
        return SQLiteFlowRepository(await self.get_connection())

    async def get_discussion_repository(self) -> DiscussionRepository:
        """Create and return a discussion repository instance."""
        if self.backend == "memory":
            return self._memory_repo("discussions", MemoryDiscussionRepository)
        return SQLiteDiscussionRepository(await self.get_connection())

    async def get_task_repository(self) -> TaskRepository:
        """Create and return a task repository instance."""
        if self.backend == "memory":
            return self._memory_repo("tasks", MemoryTaskRepository)
        return SQLiteTaskRepository(await self.get_connection())

    async def get_user_mapping_repository(self) -> UserMappingRepository:
        """Create and return a user mapping repository instance."""
        if self.backend == "memory":
            return self._memory_repo("user_mappings", MemoryUserMappingRepository)
        return SQLiteUserMappingRepository(await self.get_connection())

    async def get_inbox_repository(self) -> InboxRepository:
        """Create and return an inbox repository instance."""
        if self.backend == "memory":
            return self._memory_repo("inbox", MemoryInboxRepository)
        return SQLiteInboxRepository(await self.get_connection())

    async def close(self) -> None:
        """Close database connections."""
        if self._connection:
            await self._connection.disconnect()
            self._connection = None


async def load_seed_data(data: Dict[str, Any], factory: RepositoryFactory) -> Dict[str, int]:
    """
    Store flows (with nested inputs and outputs) and user mappings.

    Args:
        data: Parsed seed document with ``flows`` and ``user_mappings`` lists
        factory: Repository factory to write into

    Returns:
        Counts of stored entities by kind
    """
    flows = await factory.get_flow_repository()
    mappings = await factory.get_user_mapping_repository()
    counts = {"flows": 0, "inputs": 0, "outputs": 0, "user_mappings": 0}

    parsed = []
    for flow_data in data.get("flows", []):
        flow = Flow.from_dict(flow_data)
        outputs = [
            FlowOutput.from_dict({**output_data, "flow_id": flow.id})
            for output_data in flow_data.get("outputs", [])
        ]
        result = validate_flow_outputs(outputs)
        for warning in result.warnings:
            logger.warning(f"Flow {flow.id}: {warning}")
        if not result.valid:
            raise ConfigurationError(
                f"Flow {flow.id} has invalid outputs: {'; '.join(result.errors)}",
                error_code="SEED_FILE_INVALID",
                context={"flow_id": flow.id, "errors": result.errors},
            )
        parsed.append((flow, flow_data, outputs))

    for flow, flow_data, outputs in parsed:
        await flows.save_flow(flow)
        counts["flows"] += 1

        for input_data in flow_data.get("inputs", []):
            flow_input = FlowInput.from_dict({"team_id": flow.team_id, **input_data, "flow_id": flow.id})
            await flows.save_input(flow_input)
            counts["inputs"] += 1

        for output in outputs:
            await flows.save_output(output)
            counts["outputs"] += 1

    for mapping_data in data.get("user_mappings", []):
        await mappings.save_mapping(UserMapping.from_dict(mapping_data))
        counts["user_mappings"] += 1

    return counts


async def load_seed_file(path: str, factory: RepositoryFactory) -> Dict[str, int]:
    """Load a JSON seed file into the repositories."""
    seed_path = Path(path)
    if not seed_path.exists():
        raise ConfigurationError(
            f"Flows config file not found: {path}",
            error_code="SEED_FILE_NOT_FOUND",
        )
    try:
        data = json.loads(seed_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Flows config file is not valid JSON: {e}",
            error_code="SEED_FILE_INVALID",
            cause=e,
        )

    counts = await load_seed_data(data, factory)
    logger.info(
        f"Loaded {counts['flows']} flows, {counts['inputs']} inputs, "
        f"{counts['outputs']} outputs and {counts['user_mappings']} user mappings from {path}"
    )
    return counts


# Singleton instance for easy access
_default_factory: Optional[RepositoryFactory] = None


def initialize_repositories(backend: str = "memory", **config) -> RepositoryFactory:
    """
    Initialize the default repository factory.

    Args:
        backend: Storage backend to use
        **config: Backend-specific configuration

    Returns:
        Initialized repository factory
    """
    global _default_factory
    _default_factory = RepositoryFactory(backend, **config)
    return _default_factory


def get_repository_factory() -> RepositoryFactory:
    """
    Get the default repository factory instance.

    Raises:
        RuntimeError: If repositories have not been initialized
    """
    if _default_factory is None:
        raise RuntimeError(
            "Repositories not initialized. Call initialize_repositories() first."
        )
    return _default_factory
