"""Tests for tool type service locators."""

from unittest.mock import AsyncMock

import pytest

from scm_scanner.platforms.locators import (
    CommitsServiceLocator,
    MergeRequestServiceLocator,
    PlatformServiceLocator,
    RepositoryServiceLocator,
)
from scm_scanner.schemas import ToolType
from tests.factories import make_platform_service


@pytest.fixture
def services():
    return {
        ToolType.GITHUB: make_platform_service(tool_type=ToolType.GITHUB),
        ToolType.GITLAB: make_platform_service(tool_type=ToolType.GITLAB),
        ToolType.BITBUCKET: make_platform_service(tool_type=ToolType.BITBUCKET),
        ToolType.AZURE_REPOSITORY: make_platform_service(tool_type=ToolType.AZURE_REPOSITORY),
    }


class TestServiceLocators:
    @pytest.mark.parametrize("tool_type", ["GitHub", "GITHUB", "github"])
    def test_lookup_is_case_insensitive(self, services, tool_type: str) -> None:
        """Every casing of a tool type resolves to the same service."""
        locator = CommitsServiceLocator(services)
        assert locator.get_commits_service(tool_type) is services[ToolType.GITHUB]

    def test_platform_name_lookup(self, services) -> None:
        locator = MergeRequestServiceLocator(services)
        assert locator.get_merge_request_service("Azure DevOps") is services[ToolType.AZURE_REPOSITORY]

    @pytest.mark.parametrize("tool_type", ["svn", "", None])
    def test_unknown_tool_type_returns_none(self, services, tool_type) -> None:
        locator = RepositoryServiceLocator(services)
        assert locator.get_repository_service(tool_type) is None

    def test_unregistered_tool_type_returns_none(self, services) -> None:
        locator = CommitsServiceLocator({ToolType.GITHUB: services[ToolType.GITHUB]})
        assert locator.get_commits_service(ToolType.GITLAB) is None

    def test_string_keys_accepted(self, services) -> None:
        locator = PlatformServiceLocator({"gitlab": services[ToolType.GITLAB]})
        assert locator.tool_types == [ToolType.GITLAB]

    def test_unknown_key_rejected(self, services) -> None:
        with pytest.raises(ValueError, match="Unknown tool type"):
            PlatformServiceLocator({"svn": services[ToolType.GITHUB]})


class TestDetectPlatform:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://github.com/acme/widgets", ToolType.GITHUB),
            ("git@github.com:acme/widgets.git", ToolType.GITHUB),
            ("https://gitlab.com/group/repo", ToolType.GITLAB),
            ("https://gitlab.example.com/group/repo", ToolType.GITLAB),
            ("https://bitbucket.org/workspace/repo", ToolType.BITBUCKET),
            ("https://bitbucket.example.com/scm/PROJ/repo.git", ToolType.BITBUCKET),
            ("https://dev.azure.com/org/Project/_git/repo", ToolType.AZURE_REPOSITORY),
            ("https://org.visualstudio.com/Project/_git/repo", ToolType.AZURE_REPOSITORY),
            ("https://example.com/repo.git", None),
            (None, None),
        ],
    )
    def test_detect_platform(self, url, expected) -> None:
        assert PlatformServiceLocator.detect_platform(url) == expected

    def test_service_by_url(self, services) -> None:
        locator = PlatformServiceLocator(services)
        assert locator.get_platform_service_by_url("https://gitlab.com/group/repo") is services[ToolType.GITLAB]
        assert locator.get_platform_service_by_url("https://example.com/repo.git") is None


class TestCallWithContext:
    @pytest.mark.asyncio
    async def test_passes_explicit_context(self, services) -> None:
        locator = PlatformServiceLocator(services)
        call = AsyncMock(return_value="done")

        result = await locator.call_with_context("https://gitlab.example.com/team/widgets", call)

        assert result == "done"
        service, context = call.await_args.args
        assert service is services[ToolType.GITLAB]
        assert context.tool_type == ToolType.GITLAB
        assert context.repository_url == "https://gitlab.example.com/team/widgets"
        assert context.api_base_url == "https://gitlab.example.com"

    @pytest.mark.asyncio
    async def test_explicit_tool_type_wins(self, services) -> None:
        locator = PlatformServiceLocator(services)
        call = AsyncMock()

        await locator.call_with_context("https://code.example.com/team/widgets", call, tool_type="gitlab")

        service, context = call.await_args.args
        assert service is services[ToolType.GITLAB]

    @pytest.mark.asyncio
    async def test_unknown_platform_raises(self, services) -> None:
        locator = PlatformServiceLocator(services)

        with pytest.raises(LookupError):
            await locator.call_with_context("https://example.com/repo.git", AsyncMock())
