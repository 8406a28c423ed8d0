"""Tests for shared platform paging and window helpers."""

from unittest.mock import AsyncMock

import pytest

from scm_scanner.config import PlatformConfig
from scm_scanner.exceptions import PlatformApiError
from scm_scanner.platforms.base import BasePlatformService, in_window, matches_branch, paginate
from tests.conftest import JAN_10, JAN_15, JAN_16, JAN_20
from tests.factories import make_merge_request


def pages(*batches, fail_on: int | None = None):
    """Page fetcher over integer cursors; fails on the given page index."""
    calls: list[int] = []

    async def fetch_page(cursor: int):
        calls.append(cursor)
        if cursor == fail_on:
            raise PlatformApiError("GitHub", "server error", 500)
        next_cursor = cursor + 1 if cursor + 1 < len(batches) else None
        return list(batches[cursor]), next_cursor

    return fetch_page, calls


class TestPaginate:
    @pytest.mark.asyncio
    async def test_collects_all_pages(self) -> None:
        fetch_page, calls = pages([1, 2], [3], [4, 5])

        items = await paginate("GitHub", fetch_page, 0, repository="acme/widgets")

        assert items == [1, 2, 3, 4, 5]
        assert calls == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_first_page_failure_raises(self) -> None:
        fetch_page, _ = pages([1], [2], fail_on=0)

        with pytest.raises(PlatformApiError):
            await paginate("GitHub", fetch_page, 0, repository="acme/widgets")

    @pytest.mark.asyncio
    async def test_later_page_failure_keeps_partial_results(self) -> None:
        fetch_page, calls = pages([1, 2], [3], [4], fail_on=1)

        items = await paginate("GitHub", fetch_page, 0, repository="acme/widgets")

        assert items == [1, 2]
        assert calls == [0, 1]

    @pytest.mark.asyncio
    async def test_repeated_cursor_stops_paging(self) -> None:
        """A platform pointing back at a fetched page cannot loop forever."""
        calls: list[int] = []

        async def fetch_page(cursor: int):
            calls.append(cursor)
            return [cursor], 1

        items = await paginate("Bitbucket", fetch_page, 0, repository="workspace/widgets")

        assert items == [0, 1]
        assert calls == [0, 1]

    @pytest.mark.asyncio
    async def test_limit_truncates(self) -> None:
        fetch_page, calls = pages([1, 2], [3, 4], [5])

        items = await paginate("GitHub", fetch_page, 0, repository="acme/widgets", limit=3)

        assert items == [1, 2, 3]
        assert calls == [0, 1]

    @pytest.mark.asyncio
    async def test_before_page_runs_for_every_page(self) -> None:
        fetch_page, _ = pages([1], [2])
        before_page = AsyncMock()

        await paginate("GitHub", fetch_page, 0, repository="acme/widgets", before_page=before_page)

        assert before_page.await_count == 2

    @pytest.mark.asyncio
    async def test_before_page_error_propagates(self) -> None:
        fetch_page, calls = pages([1])
        before_page = AsyncMock(side_effect=RuntimeError("rate limit"))

        with pytest.raises(RuntimeError):
            await paginate("GitHub", fetch_page, 0, repository="acme/widgets", before_page=before_page)
        assert calls == []


class TestInWindow:
    def test_since_is_inclusive(self) -> None:
        assert in_window(JAN_15, JAN_15, JAN_20)

    def test_until_is_exclusive(self) -> None:
        assert not in_window(JAN_20, JAN_15, JAN_20)

    def test_before_since(self) -> None:
        assert not in_window(JAN_10, JAN_15, None)

    def test_open_bounds(self) -> None:
        assert in_window(JAN_16, None, None)

    def test_undated_values_kept(self) -> None:
        assert in_window(None, JAN_15, JAN_20)


class TestMatchesBranch:
    def test_no_branch_matches_everything(self) -> None:
        assert matches_branch(make_merge_request(), None)

    @pytest.mark.parametrize("branch", ["feature", "main"])
    def test_source_or_target(self, branch: str) -> None:
        assert matches_branch(make_merge_request(), branch)

    def test_other_branch(self) -> None:
        assert not matches_branch(make_merge_request(), "release")


class TestBasePlatformService:
    def test_cannot_be_instantiated(self) -> None:
        with pytest.raises(TypeError):
            BasePlatformService()

    def test_subclass_uses_its_default_config(self) -> None:
        class ExampleService(BasePlatformService):
            def _default_config(self) -> PlatformConfig:
                return PlatformConfig(api_url="https://scm.example.com/api/")

        service = ExampleService(page_size=25)

        assert service._api_base() == "https://scm.example.com/api"
        assert service._page_size == 25
