"""Tests for the Bitbucket Cloud and Server platform service."""

import httpx
import pytest

from scm_scanner.config import PlatformConfig
from scm_scanner.platforms.bitbucket import BitbucketService
from scm_scanner.schemas import MergeRequestState, ToolType
from scm_scanner.url_parser import parse_git_url
from tests.conftest import JAN_10, JAN_12, JAN_15, JAN_16
from tests.factories import make_request
from tests.fixtures.platform_responses import (
    bitbucket_cloud_commit,
    bitbucket_cloud_pull,
    bitbucket_server_commit,
    bitbucket_server_pull,
    paged,
    recording_transport,
    server_page,
)

CONFIG = PlatformConfig(api_url="https://api.bitbucket.org/2.0")
NEXT_URL = "https://api.bitbucket.org/2.0/repositories/workspace/widgets/commits?page=2"


def respond_with(*payloads):
    """Serve payloads in request order."""
    remaining = list(payloads)

    def routes(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=remaining.pop(0))

    return routes


@pytest.fixture
def cloud_info():
    return parse_git_url("https://bitbucket.org/workspace/widgets", ToolType.BITBUCKET)


@pytest.fixture
def server_info():
    return parse_git_url("https://bitbucket.example.com/scm/PROJ/widgets.git", ToolType.BITBUCKET)


class TestCloudCommits:
    @pytest.mark.asyncio
    async def test_follows_next_links(self, cloud_info) -> None:
        client, requests = recording_transport(
            respond_with(
                paged([bitbucket_cloud_commit("c1", "2024-01-16T10:00:00Z")], next_url=NEXT_URL),
                paged([bitbucket_cloud_commit("c2", "2024-01-15T12:00:00Z")]),
            )
        )
        async with client:
            commits = await BitbucketService(None, CONFIG, 100, client).fetch_commits(
                "cfg-1", cloud_info, "main", "alice:app-pass", JAN_15, None
            )

        assert str(requests[0].url) == "https://api.bitbucket.org/2.0/repositories/workspace/widgets/commits/main?pagelen=100"
        assert str(requests[1].url) == NEXT_URL
        assert requests[0].headers["Authorization"].startswith("Basic ")
        assert [c.revision_id for c in commits] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_stops_at_commits_before_window(self, cloud_info) -> None:
        client, requests = recording_transport(
            respond_with(
                paged(
                    [bitbucket_cloud_commit("new", "2024-01-16T10:00:00Z"), bitbucket_cloud_commit("old", "2024-01-10T09:00:00Z")],
                    next_url=NEXT_URL,
                ),
            )
        )
        async with client:
            commits = await BitbucketService(None, CONFIG, 100, client).fetch_commits(
                "cfg-1", cloud_info, None, "alice:app-pass", JAN_15, None
            )

        assert len(requests) == 1
        assert [c.revision_id for c in commits] == ["new"]

    @pytest.mark.asyncio
    async def test_parses_raw_author(self, cloud_info) -> None:
        client, _ = recording_transport(respond_with(paged([bitbucket_cloud_commit()])))
        async with client:
            commits = await BitbucketService(None, CONFIG, 100, client).fetch_commits(
                "cfg-1", cloud_info, None, "token", None, None
            )

        commit = commits[0]
        assert commit.author_name == "Alice Doe"
        assert commit.author_email == "alice@example.com"
        assert commit.author_username == "alice"
        assert commit.commit_timestamp == JAN_10


class TestCloudPullRequests:
    @pytest.mark.asyncio
    async def test_query_and_states(self, cloud_info) -> None:
        client, requests = recording_transport(
            respond_with(
                paged(
                    [
                        bitbucket_cloud_pull(3),
                        bitbucket_cloud_pull(4, state="MERGED"),
                        bitbucket_cloud_pull(5, state="DECLINED"),
                    ]
                )
            )
        )
        async with client:
            pulls = await BitbucketService(None, CONFIG, 100, client).fetch_merge_requests(
                "cfg-1", cloud_info, None, "alice:app-pass", JAN_15, None
            )

        params = requests[0].url.params
        assert params.get_list("state") == ["OPEN", "MERGED", "DECLINED", "SUPERSEDED"]
        assert params["q"] == "updated_on >= 2024-01-15T10:00:00Z"
        assert params["pagelen"] == "50"
        assert [pr.state for pr in pulls] == [
            MergeRequestState.OPEN,
            MergeRequestState.MERGED,
            MergeRequestState.DECLINED,
        ]
        assert pulls[1].merged_on == JAN_16
        assert pulls[0].reviewer_usernames == ["bob"]

    @pytest.mark.asyncio
    async def test_next_link_cursor_is_kept(self, cloud_info) -> None:
        """The page cursor of a next link reaches the server, so paging ends."""
        next_url = "https://api.bitbucket.org/2.0/repositories/workspace/widgets/pullrequests?page=2"
        client, requests = recording_transport(
            respond_with(
                paged([bitbucket_cloud_pull(3)], next_url=next_url),
                paged([bitbucket_cloud_pull(4, state="MERGED")]),
            )
        )
        async with client:
            pulls = await BitbucketService(None, CONFIG, 100, client).fetch_merge_requests(
                "cfg-1", cloud_info, None, "alice:app-pass", JAN_10, None
            )

        assert len(requests) == 2
        assert requests[1].url.params["page"] == "2"
        assert [pr.external_id for pr in pulls] == ["3", "4"]
        assert pulls[1].state == MergeRequestState.MERGED


class TestServer:
    @pytest.mark.asyncio
    async def test_commits_page_by_start(self, server_info) -> None:
        client, requests = recording_transport(
            respond_with(
                server_page([bitbucket_server_commit("s1")], next_start=1),
                server_page([bitbucket_server_commit("s2")]),
            )
        )
        async with client:
            commits = await BitbucketService(None, CONFIG, 1, client).fetch_commits(
                "cfg-1", server_info, "main", "server-token", None, None
            )

        assert requests[0].url.path == "/rest/api/1.0/projects/PROJ/repos/widgets/commits"
        assert requests[0].url.params["until"] == "refs/heads/main"
        assert [r.url.params["start"] for r in requests] == ["0", "1"]
        assert requests[0].headers["Authorization"] == "Bearer server-token"
        assert [c.revision_id for c in commits] == ["s1", "s2"]
        assert commits[0].commit_timestamp == JAN_10
        assert commits[0].is_merge_commit is True

    @pytest.mark.asyncio
    async def test_pull_requests(self, server_info) -> None:
        client, requests = recording_transport(respond_with(server_page([bitbucket_server_pull(5)])))
        async with client:
            pulls = await BitbucketService(None, CONFIG, 100, client).fetch_merge_requests(
                "cfg-1", server_info, None, "server-token", None, None
            )

        assert requests[0].url.params["state"] == "ALL"
        pr = pulls[0]
        assert pr.external_id == "5"
        assert pr.state == MergeRequestState.MERGED
        assert pr.merged_on == JAN_16
        assert pr.author_email == "alice@example.com"
        assert pr.reviewer_usernames == ["bob"]

    @pytest.mark.asyncio
    async def test_repositories(self) -> None:
        client, requests = recording_transport(
            respond_with(
                server_page([{"slug": "widgets", "project": {"key": "PROJ"}, "public": False, "links": {"self": []}}])
            )
        )
        request = make_request(
            repository_url="https://bitbucket.example.com", tool_type="bitbucket", connection_id="conn-1"
        )
        async with client:
            repositories = await BitbucketService(None, CONFIG, 100, client).fetch_repositories(request)

        assert str(requests[0].url).startswith("https://bitbucket.example.com/rest/api/1.0/repos?")
        assert repositories[0].repository_name == "PROJ/widgets"
        assert repositories[0].is_private is True


class TestCloudRepositories:
    @pytest.mark.asyncio
    async def test_member_repositories(self) -> None:
        client, requests = recording_transport(
            respond_with(
                paged(
                    [
                        {
                            "full_name": "workspace/widgets",
                            "is_private": True,
                            "mainbranch": {"name": "main"},
                            "links": {"html": {"href": "https://bitbucket.org/workspace/widgets"}},
                            "updated_on": "2024-01-12T16:00:00Z",
                        }
                    ]
                )
            )
        )
        request = make_request(
            repository_url="https://bitbucket.org/workspace",
            tool_type="bitbucket",
            connection_id="conn-1",
            since=JAN_10,
        )
        async with client:
            repositories = await BitbucketService(None, CONFIG, 100, client).fetch_repositories(request)

        assert requests[0].url.params["role"] == "member"
        assert requests[0].url.params["q"] == "updated_on >= 2024-01-10T09:00:00Z"
        assert repositories[0].repository_name == "workspace/widgets"
        assert repositories[0].default_branch == "main"
        assert repositories[0].last_updated == JAN_12
