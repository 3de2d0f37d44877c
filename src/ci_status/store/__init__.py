"""JobStore implementations.

- InMemoryJobStore: process-local store guarded by an asyncio.Lock
- PostgresJobStore: asyncpg-backed store with conditional status writes
"""

from src.ci_status.store.memory import InMemoryJobStore
from src.ci_status.store.postgres import DatabaseError, PostgresJobStore

__all__ = [
    "DatabaseError",
    "InMemoryJobStore",
    "PostgresJobStore",
]
