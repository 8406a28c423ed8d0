"""Repository pattern implementation for database access.

This module provides repository classes that encapsulate all database
access logic, providing a clean abstraction over SQLAlchemy models.
"""

from .base import BaseRepository, Page
from .commit import CommitRepository
from .merge_request import MergeRequestRepository
from .repository import ScmRepositoryRepository
from .sync_log import SyncLogRepository
from .user import UserRepository

__all__ = [
    "BaseRepository",
    "CommitRepository",
    "MergeRequestRepository",
    "Page",
    "ScmRepositoryRepository",
    "SyncLogRepository",
    "UserRepository",
]
