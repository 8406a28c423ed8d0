"""Tests for CommitFetcher."""

import pytest

from scm_scanner.config import ScannerConfig
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.platforms import CommitsServiceLocator
from scm_scanner.scan.commit_fetcher import CommitFetcher
from scm_scanner.schemas import ToolType
from tests.conftest import JAN_15, JAN_15_MILLIS, JAN_20
from tests.factories import TOOL_CONFIG_ID, make_commit, make_platform_service, make_request


class TestFetchCommits:
    @pytest.mark.asyncio
    async def test_delegates_with_window(self) -> None:
        service = make_platform_service(commits=[make_commit()])
        fetcher = CommitFetcher(CommitsServiceLocator({ToolType.GITHUB: service}), ScannerConfig())

        commits = await fetcher.fetch_commits(
            make_request(last_scan_from=JAN_15_MILLIS, until=JAN_20, branch_name="main")
        )

        assert len(commits) == 1
        tool_config_id, url_info, branch, token, since, until = service.fetch_commits.await_args.args
        assert tool_config_id == TOOL_CONFIG_ID
        assert url_info.full_name == "acme/widgets"
        assert branch == "main"
        assert token == "ghp_test"
        assert since == JAN_15
        assert until == JAN_20

    @pytest.mark.asyncio
    async def test_bitbucket_token_carries_username(self) -> None:
        service = make_platform_service(tool_type=ToolType.BITBUCKET)
        fetcher = CommitFetcher(CommitsServiceLocator({ToolType.BITBUCKET: service}), ScannerConfig())

        await fetcher.fetch_commits(
            make_request(
                repository_url="https://bitbucket.org/workspace/widgets",
                tool_type="bitbucket",
                username="alice",
                token="app-pass",
            )
        )

        assert service.fetch_commits.await_args.args[3] == "alice:app-pass"

    @pytest.mark.asyncio
    async def test_unregistered_platform(self) -> None:
        fetcher = CommitFetcher(CommitsServiceLocator({ToolType.GITLAB: make_platform_service()}), ScannerConfig())

        with pytest.raises(DataProcessingError, match="No suitable commit fetch strategy found for tool type: github"):
            await fetcher.fetch_commits(make_request())

    @pytest.mark.asyncio
    async def test_invalid_url(self) -> None:
        service = make_platform_service()
        fetcher = CommitFetcher(CommitsServiceLocator({ToolType.GITHUB: service}), ScannerConfig())

        with pytest.raises(DataProcessingError, match="Invalid repository URL"):
            await fetcher.fetch_commits(make_request(repository_url="https://github.com/acme"))
        service.fetch_commits.assert_not_called()

    @pytest.mark.asyncio
    async def test_platform_error_propagates(self) -> None:
        service = make_platform_service()
        service.fetch_commits.side_effect = RuntimeError("boom")
        fetcher = CommitFetcher(CommitsServiceLocator({ToolType.GITHUB: service}), ScannerConfig())

        with pytest.raises(RuntimeError):
            await fetcher.fetch_commits(make_request())
