"""
Data access layer for Discubot.

Public Interface:
    - Abstract repositories for flows, discussions, tasks, user mappings
      and inbox messages
    - In-memory and SQLite implementations
    - Factory and seed loading

Example Usage:
    ```python
    from discubot.data import initialize_repositories, load_seed_file

    factory = initialize_repositories(backend="sqlite", db_path="data/discubot.db")
    await load_seed_file("flows.json", factory)
    flows = await factory.get_flow_repository()
    ```
"""

from .base import (
    FlowRepository,
    DiscussionRepository,
    TaskRepository,
    UserMappingRepository,
    InboxRepository,
)
from .memory import (
    MemoryFlowRepository,
    MemoryDiscussionRepository,
    MemoryTaskRepository,
    MemoryUserMappingRepository,
    MemoryInboxRepository,
)
from .sqlite import SQLiteConnection
from .repositories import (
    RepositoryFactory,
    initialize_repositories,
    get_repository_factory,
    load_seed_data,
    load_seed_file,
)

__all__ = [
    'FlowRepository',
    'DiscussionRepository',
    'TaskRepository',
    'UserMappingRepository',
    'InboxRepository',
    'MemoryFlowRepository',
    'MemoryDiscussionRepository',
    'MemoryTaskRepository',
    'MemoryUserMappingRepository',
    'MemoryInboxRepository',
    'SQLiteConnection',
    'RepositoryFactory',
    'initialize_repositories',
    'get_repository_factory',
    'load_seed_data',
    'load_seed_file',
]
