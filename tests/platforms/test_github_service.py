"""Tests for the GitHub platform service."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from githubkit.exception import RequestFailed

from scm_scanner.config import PlatformConfig
from scm_scanner.exceptions import (
    PlatformAuthenticationError,
    PlatformNotFoundError,
    PlatformRateLimitError,
)
from scm_scanner.platforms.github import GitHubService
from scm_scanner.schemas import MergeRequestState, ToolType
from scm_scanner.url_parser import parse_git_url
from tests.conftest import JAN_10, JAN_12_ISO, JAN_15, JAN_16, JAN_20
from tests.factories import make_request
from tests.fixtures.platform_responses import github_commit, github_pull, github_repository

CONFIG = PlatformConfig(api_url="https://api.github.com")


def page(items):
    resp = MagicMock()
    resp.parsed_data = items
    return resp


def request_failed(status_code: int, headers: dict[str, str] | None = None) -> RequestFailed:
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.headers = headers or {}
    return RequestFailed(mock_response)


@pytest.fixture
def mock_github():
    github = MagicMock()
    github.rest.repos.async_list_commits = AsyncMock(return_value=page([]))
    github.rest.pulls.async_list = AsyncMock(return_value=page([]))
    github.rest.repos.async_list_for_authenticated_user = AsyncMock(return_value=page([]))
    return github


@pytest.fixture
def factory(mock_github):
    return MagicMock(return_value=mock_github)


@pytest.fixture
def url_info():
    return parse_git_url("https://github.com/acme/widgets", ToolType.GITHUB)


class TestFetchCommits:
    @pytest.mark.asyncio
    async def test_converts_commits(self, mock_github, factory, url_info) -> None:
        mock_github.rest.repos.async_list_commits.return_value = page([github_commit("abc123")])
        service = GitHubService(None, CONFIG, 100, factory)

        commits = await service.fetch_commits("cfg-1", url_info, "main", "ghp_token", None, None)

        assert len(commits) == 1
        commit = commits[0]
        assert commit.revision_id == "abc123"
        assert commit.tool_config_id == "cfg-1"
        assert commit.repository_name == "acme/widgets"
        assert commit.branch_name == "main"
        assert commit.author_username == "alice"
        assert commit.author_email == "alice@example.com"
        assert commit.commit_timestamp == JAN_10
        assert commit.parent_shas == ["p1"]
        assert commit.is_merge_commit is False
        factory.assert_called_once_with("ghp_token", None)

    @pytest.mark.asyncio
    async def test_passes_window_and_branch(self, mock_github, factory, url_info) -> None:
        service = GitHubService(None, CONFIG, 100, factory)

        await service.fetch_commits("cfg-1", url_info, "develop", "token", JAN_15, JAN_20)

        kwargs = mock_github.rest.repos.async_list_commits.await_args.kwargs
        assert kwargs["owner"] == "acme"
        assert kwargs["repo"] == "widgets"
        assert kwargs["sha"] == "develop"
        assert kwargs["since"] == JAN_15
        assert kwargs["until"] == JAN_20
        assert kwargs["page"] == 1

    @pytest.mark.asyncio
    async def test_omits_default_branch(self, mock_github, factory, url_info) -> None:
        service = GitHubService(None, CONFIG, 100, factory)

        await service.fetch_commits("cfg-1", url_info, None, "token", None, None)

        assert "sha" not in mock_github.rest.repos.async_list_commits.await_args.kwargs

    @pytest.mark.asyncio
    async def test_pages_until_short_page(self, mock_github, factory, url_info) -> None:
        mock_github.rest.repos.async_list_commits.side_effect = [
            page([github_commit("c1"), github_commit("c2")]),
            page([github_commit("c3")]),
        ]
        service = GitHubService(None, CONFIG, 2, factory)

        commits = await service.fetch_commits("cfg-1", url_info, None, "token", None, None)

        assert [c.revision_id for c in commits] == ["c1", "c2", "c3"]
        assert mock_github.rest.repos.async_list_commits.await_count == 2

    @pytest.mark.asyncio
    async def test_enterprise_base_url(self, factory) -> None:
        info = parse_git_url("https://github.example.com/acme/widgets", ToolType.GITHUB)
        service = GitHubService(None, CONFIG, 100, factory)

        await service.fetch_commits("cfg-1", info, None, "token", None, None)

        factory.assert_called_once_with("token", "https://github.example.com/api/v3")

    @pytest.mark.asyncio
    async def test_checks_rate_limit_before_each_page(self, mock_github, factory, url_info) -> None:
        rate_limit = MagicMock()
        rate_limit.check_rate_limit = AsyncMock()
        service = GitHubService(rate_limit, CONFIG, 100, factory)

        await service.fetch_commits("cfg-1", url_info, None, "token", None, None)

        rate_limit.check_rate_limit.assert_awaited_once_with(ToolType.GITHUB, "token", "acme/widgets", None)


class TestFetchPullRequests:
    @pytest.mark.asyncio
    async def test_converts_and_filters_window(self, mock_github, factory, url_info) -> None:
        mock_github.rest.pulls.async_list.return_value = page(
            [
                github_pull(2, state="closed", merged_at=JAN_12_ISO, updated_at="2024-01-17T10:00:00Z"),
                github_pull(1, updated_at="2024-01-05T10:00:00Z"),
            ]
        )
        service = GitHubService(None, CONFIG, 100, factory)

        pulls = await service.fetch_merge_requests("cfg-1", url_info, None, "token", JAN_15, None)

        assert [pr.external_id for pr in pulls] == ["2"]
        pr = pulls[0]
        assert pr.state == MergeRequestState.MERGED
        assert pr.author_username == "alice"
        assert pr.reviewer_usernames == ["bob"]
        assert pr.from_branch == "feature"
        assert pr.to_branch == "main"

    @pytest.mark.asyncio
    async def test_stops_paging_at_window_start(self, mock_github, factory, url_info) -> None:
        mock_github.rest.pulls.async_list.side_effect = [
            page([github_pull(3, updated_at="2024-01-18T00:00:00Z"), github_pull(2, updated_at="2024-01-01T00:00:00Z")]),
            page([github_pull(1, updated_at="2023-12-01T00:00:00Z")]),
        ]
        service = GitHubService(None, CONFIG, 2, factory)

        pulls = await service.fetch_merge_requests("cfg-1", url_info, None, "token", JAN_15, None)

        assert [pr.external_id for pr in pulls] == ["3"]
        assert mock_github.rest.pulls.async_list.await_count == 1

    @pytest.mark.asyncio
    async def test_branch_filter(self, mock_github, factory, url_info) -> None:
        mock_github.rest.pulls.async_list.return_value = page(
            [github_pull(1, head="feature", base="main"), github_pull(2, head="fix", base="release")]
        )
        service = GitHubService(None, CONFIG, 100, factory)

        pulls = await service.fetch_merge_requests("cfg-1", url_info, "release", "token", None, None)

        assert [pr.external_id for pr in pulls] == ["2"]

    @pytest.mark.asyncio
    async def test_open_state(self, mock_github, factory, url_info) -> None:
        mock_github.rest.pulls.async_list.return_value = page([github_pull(5)])
        service = GitHubService(None, CONFIG, 100, factory)

        pulls = await service.fetch_merge_requests("cfg-1", url_info, None, "token", None, None)

        assert pulls[0].state == MergeRequestState.OPEN
        assert pulls[0].updated_on == JAN_16


class TestFetchRepositories:
    @pytest.mark.asyncio
    async def test_lists_repositories(self, mock_github, factory) -> None:
        mock_github.rest.repos.async_list_for_authenticated_user.return_value = page(
            [github_repository("acme/widgets"), github_repository("acme/gadgets", private=False)]
        )
        service = GitHubService(None, CONFIG, 100, factory)

        repositories = await service.fetch_repositories(make_request(connection_id="conn-1", since=JAN_15))

        assert [r.repository_name for r in repositories] == ["acme/widgets", "acme/gadgets"]
        assert repositories[0].connection_id == "conn-1"
        assert repositories[0].tool_type == ToolType.GITHUB
        assert repositories[0].is_private is True
        assert repositories[1].is_private is False
        kwargs = mock_github.rest.repos.async_list_for_authenticated_user.await_args.kwargs
        assert kwargs["since"] == JAN_15

    @pytest.mark.asyncio
    async def test_limit(self, mock_github, factory) -> None:
        mock_github.rest.repos.async_list_for_authenticated_user.return_value = page(
            [github_repository("acme/a"), github_repository("acme/b")]
        )
        service = GitHubService(None, CONFIG, 100, factory)

        repositories = await service.fetch_repositories(make_request(connection_id="conn-1", limit=1))

        assert len(repositories) == 1


class TestErrorHandling:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status_code", "headers", "expected"),
        [
            (401, None, PlatformAuthenticationError),
            (403, None, PlatformAuthenticationError),
            (403, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1705312800"}, PlatformRateLimitError),
            (404, None, PlatformNotFoundError),
            (429, None, PlatformRateLimitError),
        ],
    )
    async def test_first_page_errors_map(self, mock_github, factory, url_info, status_code, headers, expected) -> None:
        mock_github.rest.repos.async_list_commits.side_effect = request_failed(status_code, headers)
        service = GitHubService(None, CONFIG, 100, factory)

        with pytest.raises(expected) as exc_info:
            await service.fetch_commits("cfg-1", url_info, None, "token", None, None)

        assert exc_info.value.status_code == status_code
        assert exc_info.value.platform == "GitHub"

    @pytest.mark.asyncio
    async def test_later_page_error_keeps_partial(self, mock_github, factory, url_info) -> None:
        mock_github.rest.repos.async_list_commits.side_effect = [
            page([github_commit("c1")]),
            request_failed(500),
        ]
        service = GitHubService(None, CONFIG, 1, factory)

        commits = await service.fetch_commits("cfg-1", url_info, None, "token", None, None)

        assert [c.revision_id for c in commits] == ["c1"]
