"""Tests for user resolution and reference linking."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from scm_scanner.db.persistence import PersistenceService
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.scan.users import (
    DataReferenceUpdater,
    UserProcessor,
    commit_author_key,
    commit_committer_key,
    identity_key,
)
from tests.factories import make_commit, make_merge_request, make_request, make_user


class TestIdentityKeys:
    @pytest.mark.parametrize(
        ("username", "email", "name", "expected"),
        [
            ("Alice", "alice@example.com", "Alice Doe", "alice"),
            (None, "Alice.Doe@example.com", "Alice Doe", "alice.doe"),
            (None, None, "Alice Doe", "alice doe"),
            ("  ", "", None, None),
            (None, None, None, None),
        ],
    )
    def test_identity_key(self, username, email, name, expected) -> None:
        assert identity_key(username, email, name) == expected

    def test_commit_keys(self) -> None:
        commit = make_commit(author_username="alice-gh", committer_email="bot@example.com", committer_name="Bot")
        assert commit_author_key(commit) == "alice-gh"
        assert commit_committer_key(commit) == "bot"


class TestUserProcessor:
    @pytest.mark.asyncio
    async def test_collects_all_identities(self, db_session) -> None:
        commits = [
            make_commit("c1"),
            make_commit("c2", committer_name="GitHub", committer_email="noreply@github.com"),
        ]
        merge_requests = [make_merge_request("1", author_username="Alice", reviewer_usernames=["bob"])]

        result = await UserProcessor(PersistenceService(db_session)).process_users(
            commits, merge_requests, make_request()
        )

        assert set(result.user_map) == {"alice", "noreply", "bob"}
        assert len(result.all_users) == 3
        assert all(user.id is not None for user in result.all_users)
        alice = result.user_map["alice"]
        assert alice.email == "alice@example.com"
        assert alice.display_name == "Alice Doe"
        assert alice.tool_config_id == "cfg-1"

    @pytest.mark.asyncio
    async def test_reuses_stored_users(self, db_session) -> None:
        persistence = PersistenceService(db_session)
        (stored,) = await persistence.save_users([make_user("alice")])

        result = await UserProcessor(persistence).process_users([make_commit()], [], make_request())

        assert result.user_map["alice"].id == stored.id

    @pytest.mark.asyncio
    async def test_no_identities_skips_persistence(self) -> None:
        persistence = MagicMock(spec=PersistenceService)
        persistence.save_users = AsyncMock()

        result = await UserProcessor(persistence).process_users([], [], make_request())

        assert result.user_map == {}
        assert result.all_users == []
        persistence.save_users.assert_not_called()


class TestDataReferenceUpdater:
    def test_links_commits(self) -> None:
        alice = make_user("alice", id=1)
        commit = make_commit(tool_config_id="other", repository_name=None)

        DataReferenceUpdater(MagicMock()).update_commits_with_user_references(
            [commit], {"alice": alice}, make_request()
        )

        assert commit.tool_config_id == "cfg-1"
        assert commit.repository_name == "acme/widgets"
        assert commit.author is alice
        assert commit.committer is alice

    def test_unknown_identities_left_unlinked(self) -> None:
        commit = make_commit()
        DataReferenceUpdater(MagicMock()).update_commits_with_user_references([commit], {}, make_request())
        assert commit.author is None

    @pytest.mark.asyncio
    async def test_links_merge_requests(self) -> None:
        alice, bob = make_user("alice", id=1), make_user("bob", id=2)
        mr = make_merge_request(reviewer_usernames=["Bob", "carol"])

        await DataReferenceUpdater(MagicMock()).update_merge_requests_with_user_references(
            [mr], {"alice": alice, "bob": bob}, make_request()
        )

        assert mr.author is alice
        assert mr.reviewers == [bob]

    @pytest.mark.asyncio
    async def test_creates_missing_author(self) -> None:
        persistence = MagicMock(spec=PersistenceService)
        persistence.find_or_create_user = AsyncMock(side_effect=lambda user: user.model_copy(update={"id": 7}))
        user_map: dict = {}
        mr = make_merge_request(author_username="dave")

        await DataReferenceUpdater(persistence).update_merge_requests_with_user_references(
            [mr], user_map, make_request()
        )

        assert mr.author.id == 7
        assert user_map["dave"] is mr.author

    @pytest.mark.asyncio
    async def test_author_save_failure(self) -> None:
        persistence = MagicMock(spec=PersistenceService)
        persistence.find_or_create_user = AsyncMock(side_effect=RuntimeError("constraint"))

        with pytest.raises(DataProcessingError, match="Failed to save user dave") as exc_info:
            await DataReferenceUpdater(persistence).update_merge_requests_with_user_references(
                [make_merge_request(author_username="dave")], {}, make_request()
            )
        assert isinstance(exc_info.value.__cause__, RuntimeError)
