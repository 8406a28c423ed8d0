"""Contributor identity resolution and reference linking.

UserProcessor collects every identity a scan saw (commit authors and
committers, merge request authors and reviewers), stores one canonical
ScmUser per username and returns them keyed by lower-cased username.
DataReferenceUpdater then points each record at those shared instances.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from scm_scanner.db.persistence import PersistenceService
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.logging import get_logger
from scm_scanner.schemas import ScanRequest, ScmCommit, ScmMergeRequest, ScmUser

logger = get_logger(__name__)


def identity_key(
    username: str | None,
    email: str | None = None,
    name: str | None = None,
) -> str | None:
    """Username of an identity: the username, else the email local part, else the name."""
    for candidate in (username, (email or "").split("@", 1)[0], name):
        if candidate and candidate.strip():
            return candidate.strip().lower()
    return None


def commit_author_key(commit: ScmCommit) -> str | None:
    return identity_key(commit.author_username, commit.author_email, commit.author_name)


def commit_committer_key(commit: ScmCommit) -> str | None:
    return identity_key(None, commit.committer_email, commit.committer_name)


@dataclass
class UserProcessingResult:
    """Users resolved for one scan."""

    user_map: dict[str, ScmUser] = field(default_factory=dict)
    """Canonical users keyed by lower-cased username."""

    all_users: list[ScmUser] = field(default_factory=list)
    """Every distinct user seen by the scan."""


class UserProcessor:
    """Extracts, deduplicates and stores the contributors of a scan."""

    def __init__(self, persistence: PersistenceService) -> None:
        self._persistence = persistence

    async def process_users(
        self,
        commits: list[ScmCommit],
        merge_requests: list[ScmMergeRequest],
        request: ScanRequest,
    ) -> UserProcessingResult:
        """Resolve the contributors of fetched commits and merge requests.

        Args:
            commits: Fetched commits
            merge_requests: Reconciled merge requests
            request: Scan request (repository identity)

        Returns:
            UserProcessingResult whose users carry database ids
        """
        collected: dict[str, ScmUser] = {}

        def collect(username: str | None, email: str | None = None, display_name: str | None = None) -> None:
            if not username:
                return
            user = collected.get(username)
            if user is None:
                collected[username] = ScmUser(
                    username=username,
                    email=email,
                    display_name=display_name,
                    tool_config_id=request.tool_config_id,
                    repository_name=request.repository_name,
                )
                return
            user.email = user.email or email
            user.display_name = user.display_name or display_name

        for commit in commits:
            collect(commit_author_key(commit), commit.author_email, commit.author_name)
            collect(commit_committer_key(commit), commit.committer_email, commit.committer_name)

        for mr in merge_requests:
            collect(
                identity_key(mr.author_username, mr.author_email, mr.author_display_name),
                mr.author_email,
                mr.author_display_name,
            )
            for reviewer in mr.reviewer_usernames:
                collect(identity_key(reviewer), display_name=reviewer)

        if not collected:
            return UserProcessingResult()

        users = await self._persistence.save_users(list(collected.values()))
        logger.info(
            "Processed {count} unique users for repository: {repo}",
            count=len(users),
            repo=request.display_name,
        )
        return UserProcessingResult(user_map={user.key: user for user in users}, all_users=users)


class DataReferenceUpdater:
    """Links fetched records to the repository and to resolved users."""

    def __init__(self, persistence: PersistenceService) -> None:
        self._persistence = persistence

    def update_commits_with_user_references(
        self,
        commits: Iterable[ScmCommit],
        user_map: dict[str, ScmUser],
        request: ScanRequest,
    ) -> None:
        """Set repository identity and author/committer references in place."""
        for commit in commits:
            commit.tool_config_id = request.tool_config_id
            commit.repository_name = request.repository_name or commit.repository_name

            author_key = commit_author_key(commit)
            if author_key and author_key in user_map:
                commit.author = user_map[author_key]
            committer_key = commit_committer_key(commit)
            if committer_key and committer_key in user_map:
                commit.committer = user_map[committer_key]

    async def update_merge_requests_with_user_references(
        self,
        merge_requests: Iterable[ScmMergeRequest],
        user_map: dict[str, ScmUser],
        request: ScanRequest,
    ) -> None:
        """Set repository identity and author/reviewer references in place.

        An author missing from user_map is created through persistence.

        Raises:
            DataProcessingError: If the missing author cannot be saved
        """
        for mr in merge_requests:
            mr.tool_config_id = request.tool_config_id
            mr.repository_name = request.repository_name or mr.repository_name

            author_key = identity_key(mr.author_username, mr.author_email, mr.author_display_name)
            if author_key:
                author = user_map.get(author_key)
                if author is None:
                    author = await self._create_author(author_key, mr, request)
                    user_map[author.key] = author
                mr.author = author

            reviewers = [
                user_map[key]
                for key in (identity_key(name) for name in mr.reviewer_usernames)
                if key and key in user_map
            ]
            if reviewers:
                mr.reviewers = reviewers

    async def _create_author(self, username: str, mr: ScmMergeRequest, request: ScanRequest) -> ScmUser:
        try:
            return await self._persistence.find_or_create_user(
                ScmUser(
                    username=username,
                    email=mr.author_email,
                    display_name=mr.author_display_name,
                    tool_config_id=request.tool_config_id,
                    repository_name=request.repository_name,
                )
            )
        except Exception as e:
            logger.error("Error saving user {username}: {error}", username=username, error=str(e))
            raise DataProcessingError(f"Failed to save user {username}") from e
