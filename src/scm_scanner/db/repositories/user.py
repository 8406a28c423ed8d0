"""Repository for User model CRUD operations."""

import asyncio
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scm_scanner.db.models import User

from .base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for contributor identities.

    Users are keyed by (tool_config_id, lower-cased username).
    """

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(session, User, write_lock)

    async def get_by_username(self, tool_config_id: str, username: str) -> User | None:
        """Get a user by repository and username (case-insensitive)."""
        stmt = select(User).where(
            User.tool_config_id == tool_config_id,
            User.username == username.lower(),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_usernames(self, tool_config_id: str, usernames: Iterable[str]) -> dict[str, User]:
        """Get existing users keyed by lower-cased username."""
        keys = {username.lower() for username in usernames}
        if not keys:
            return {}
        stmt = select(User).where(User.tool_config_id == tool_config_id, User.username.in_(keys))
        result = await self._session.execute(stmt)
        return {user.username: user for user in result.scalars().all()}

    async def create_or_update(
        self,
        tool_config_id: str,
        username: str,
        *,
        email: str | None = None,
        display_name: str | None = None,
        repository_name: str | None = None,
        existing: User | None = None,
    ) -> tuple[User, bool]:
        """Upsert a user; known fields are never overwritten with None.

        Args:
            tool_config_id: Repository identifier
            username: Username (stored lower-cased)
            email: Email address
            display_name: Display name
            repository_name: Repository display name
            existing: Already loaded row, skips the lookup

        Returns:
            Tuple of (User, created) where created=True if new
        """
        user = existing or await self.get_by_username(tool_config_id, username)
        if user is None:
            user = User(
                tool_config_id=tool_config_id,
                username=username.lower(),
                email=email,
                display_name=display_name,
                repository_name=repository_name,
            )
            self.add(user)
            await self.flush()
            return user, True

        user.email = email or user.email
        user.display_name = display_name or user.display_name
        user.repository_name = repository_name or user.repository_name
        await self.flush()
        return user, False
