"""Tests for GitScannerService orchestration."""

import asyncio
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from scm_scanner.config import RateLimitConfig, ScannerConfig, Settings
from scm_scanner.db.models import Base, Commit, SyncStatus
from scm_scanner.db.persistence import PersistenceService
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.rate_limit import RateLimitService
from scm_scanner.scan.scanner import GitScannerService, build_default_scanner
from scm_scanner.schemas import ToolType
from tests.factories import make_commit, make_merge_request, make_platform_service, make_request


@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory over a file database, so each scan gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scan.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


def make_settings(**scanner) -> Settings:
    return Settings(_env_file=None, scanner=ScannerConfig(**scanner), rate_limit=RateLimitConfig(enabled=False))


async def commit_count(factory) -> int:
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(Commit))).scalar()


class TestScanRepository:
    @pytest.mark.asyncio
    async def test_commits_transaction(self, file_session_factory) -> None:
        service = make_platform_service(commits=[make_commit("c1")], merge_requests=[make_merge_request("1")])
        scanner = GitScannerService({ToolType.GITHUB: service}, None, make_settings(), file_session_factory)

        result = await scanner.scan_repository(make_request())

        assert result.success
        assert await commit_count(file_session_factory) == 1

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, file_session_factory) -> None:
        """A failing merge request fetch leaves no commits behind."""
        service = make_platform_service(commits=[make_commit("c1")], merge_requests=RuntimeError("boom"))
        scanner = GitScannerService({ToolType.GITHUB: service}, None, make_settings(), file_session_factory)

        with pytest.raises(DataProcessingError):
            await scanner.scan_repository(make_request())

        assert await commit_count(file_session_factory) == 0
        assert scanner._locks == {}

    @pytest.mark.asyncio
    async def test_same_repository_scans_do_not_overlap(self, file_session_factory) -> None:
        active = 0
        peak = 0

        async def fetch_commits(*args, **kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return []

        service = make_platform_service()
        service.fetch_commits.side_effect = fetch_commits
        scanner = GitScannerService(
            {ToolType.GITHUB: service}, None, make_settings(max_concurrent_scans=4), file_session_factory
        )

        results = await asyncio.gather(*(scanner.scan_repository(make_request()) for _ in range(3)))

        assert all(result.success for result in results)
        assert peak == 1
        assert scanner._locks == {}


class TestScanRepositories:
    @pytest.mark.asyncio
    async def test_reports_each_outcome_in_order(self, file_session_factory) -> None:
        github = make_platform_service(commits=[make_commit("c1")])
        gitlab = make_platform_service(tool_type=ToolType.GITLAB)
        gitlab.fetch_commits.side_effect = RuntimeError("gitlab down")
        scanner = GitScannerService(
            {ToolType.GITHUB: github, ToolType.GITLAB: gitlab},
            None,
            make_settings(max_concurrent_scans=1),
            file_session_factory,
        )

        results = await scanner.scan_repositories(
            [
                make_request(repository_url="https://gitlab.com/group/repo", tool_type="gitlab", tool_config_id="cfg-2"),
                make_request(),
            ]
        )

        failed, succeeded = results
        assert not failed.success
        assert failed.error_message == "Repository scan failed: gitlab down"
        assert failed.repository_url == "https://gitlab.com/group/repo"
        assert succeeded.success
        assert succeeded.commits_found == 1
        assert await commit_count(file_session_factory) == 1


class TestScanConnectionRepositories:
    @pytest.mark.asyncio
    async def test_failure_recorded_on_sync_log(self, file_session_factory) -> None:
        service = make_platform_service()
        service.fetch_repositories.side_effect = RuntimeError("listing failed")
        scanner = GitScannerService({ToolType.GITHUB: service}, None, make_settings(), file_session_factory)

        with pytest.raises(RuntimeError):
            await scanner.scan_connection_repositories(make_request(connection_id="conn-1"))

        async with file_session_factory() as session:
            log = await PersistenceService(session).get_sync_log("conn-1")
        assert log.status == SyncStatus.FAILED
        assert log.error_message == "listing failed"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_closes_services(self) -> None:
        service = make_platform_service()
        async with GitScannerService({ToolType.GITHUB: service}, None, make_settings()):
            pass

        service.aclose.assert_awaited_once()

    def test_shutdown_interrupts_cooldowns(self) -> None:
        rate_limit = MagicMock(spec=RateLimitService)
        scanner = GitScannerService({}, rate_limit, make_settings())

        scanner.shutdown()

        rate_limit.cooldown.interrupt.assert_called_once()

    @pytest.mark.asyncio
    async def test_build_default_scanner(self) -> None:
        settings = Settings(_env_file=None, rate_limit=RateLimitConfig(enabled=False))
        async with build_default_scanner(settings) as scanner:
            assert set(scanner.platforms.tool_types) == set(ToolType)
            assert scanner._rate_limit is None

    @pytest.mark.asyncio
    async def test_build_default_scanner_with_rate_limits(self) -> None:
        async with build_default_scanner(Settings(_env_file=None)) as scanner:
            assert isinstance(scanner._rate_limit, RateLimitService)
            scanner.shutdown()
            assert scanner._rate_limit.cooldown.is_interrupted


