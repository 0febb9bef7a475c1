"""Persistence for projects and usage accounts.

Components:
- EvaluationStore: Abstract backend with atomic claim/commit/modify operations
- PostgresEvaluationStore: asyncpg-backed implementation
- InMemoryEvaluationStore: Lock-guarded dictionaries for development and tests
- Database: asyncpg connection pool wrapper
"""

from devscore.storage.base import EvaluationClaim, EvaluationStore
from devscore.storage.database import Database
from devscore.storage.memory import InMemoryEvaluationStore
from devscore.storage.repository import PostgresEvaluationStore

__all__ = [
    "Database",
    "EvaluationClaim",
    "EvaluationStore",
    "InMemoryEvaluationStore",
    "PostgresEvaluationStore",
]
