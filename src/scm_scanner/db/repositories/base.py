"""Base repository pattern implementation for async SQLAlchemy.

Provides common session handling, paging and write serialization shared
across all repositories.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scm_scanner.db.models import Base

ModelT = TypeVar("ModelT", bound=Base)
ItemT = TypeVar("ItemT")


@dataclass(frozen=True)
class Page(Generic[ItemT]):
    """One page of a query result (pages are 0-based)."""

    items: list[ItemT] = field(default_factory=list)
    page: int = 0
    size: int = 0
    total: int = 0

    @property
    def has_next(self) -> bool:
        """Whether more items exist after this page."""
        return (self.page + 1) * self.size < self.total


class BaseRepository(Generic[ModelT]):
    """Base repository with common async session handling.

    Usage:
        class CommitRepository(BaseRepository[Commit]):
            def __init__(self, session: AsyncSession) -> None:
                super().__init__(session, Commit)

    Concurrency:
        When multiple coroutines share the same session, pass a shared
        write_lock to serialize flushes.
    """

    def __init__(
        self,
        session: AsyncSession,
        model_class: type[ModelT],
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        """Initialize the repository with a session.

        Args:
            session: Async SQLAlchemy session (caller manages lifecycle)
            model_class: The SQLAlchemy model class this repository manages
            write_lock: Optional lock to serialize write operations (shared across repos)
        """
        self._session = session
        self._model_class = model_class
        self._write_lock = write_lock

    @property
    def session(self) -> AsyncSession:
        """Access the underlying session."""
        return self._session

    # -------------------------------------------------------------------------
    # Common Read Operations
    # -------------------------------------------------------------------------

    async def get_by_id(self, id: int) -> ModelT | None:
        """Get an entity by its primary key ID."""
        return await self._session.get(self._model_class, id)

    async def _get_by_field(self, field_name: str, value: object) -> ModelT | None:
        stmt = select(self._model_class).where(getattr(self._model_class, field_name) == value)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _paginate(self, stmt: Select[tuple[ModelT]], page: int, size: int) -> Page[ModelT]:
        """Run a select for one page and count the full result.

        Args:
            stmt: Ordered select statement
            page: 0-based page number
            size: Page size

        Returns:
            Page of entities
        """
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await self._session.execute(count_stmt)).scalar() or 0
        result = await self._session.execute(stmt.offset(page * size).limit(size))
        return Page(items=list(result.scalars().all()), page=page, size=size, total=total)

    async def count(self) -> int:
        """Count total entities of this type."""
        stmt = select(func.count()).select_from(self._model_class)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    # -------------------------------------------------------------------------
    # Common Write Operations
    # -------------------------------------------------------------------------

    def add(self, entity: ModelT) -> ModelT:
        """Add an entity to the session (does not flush)."""
        self._session.add(entity)
        return entity

    async def flush(self) -> None:
        """Flush pending changes to the database.

        This executes SQL but does not commit the transaction. If a
        write_lock was provided, acquires it to serialize flushes.
        """
        if self._write_lock:
            async with self._write_lock:
                await self._session.flush()
        else:
            await self._session.flush()
