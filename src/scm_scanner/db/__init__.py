"""Database module for SCM Scanner."""

from scm_scanner.db.engine import (
    create_session_factory,
    create_tables,
    dispose_engine,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
)
from scm_scanner.db.models import (
    Base,
    Commit,
    ConnectionSyncLog,
    MergeRequest,
    ScmRepositoryRecord,
    SyncStatus,
    User,
)
from scm_scanner.db.persistence import PersistenceService
from scm_scanner.db.repositories import Page

__all__ = [
    # Models
    "Base",
    "Commit",
    "ConnectionSyncLog",
    "MergeRequest",
    "ScmRepositoryRecord",
    "SyncStatus",
    "User",
    # Engine
    "create_session_factory",
    "create_tables",
    "dispose_engine",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    # Persistence
    "Page",
    "PersistenceService",
]
