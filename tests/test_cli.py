"""Tests for the scmscan CLI commands."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from scm_scanner import __version__
from scm_scanner.cli.app import app
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.rate_limit import RateLimitStatus, now_millis
from scm_scanner.scan import RepositoryScanResult, ScanResult
from scm_scanner.schemas import ScmRepository, ToolType
from tests.conftest import JAN_15

runner = CliRunner()


def make_scanner(**methods) -> MagicMock:
    """Create a scanner mock usable as `async with build_default_scanner()`."""
    scanner = MagicMock()
    scanner.__aenter__.return_value = scanner
    for name, value in methods.items():
        setattr(scanner, name, AsyncMock(**value))
    return scanner


@pytest.fixture
def patched_scanner():
    """Patch scanner construction and engine disposal in the scan commands."""
    with (
        patch("scm_scanner.cli.scan.build_default_scanner") as build,
        patch("scm_scanner.cli.scan.dispose_engine", new_callable=AsyncMock) as dispose,
    ):
        yield build, dispose


def scan_result(**overrides) -> ScanResult:
    data = {
        "success": True,
        "repository_url": "https://github.com/acme/widgets",
        "repository_name": "acme/widgets",
        "start_time": JAN_15,
        "end_time": JAN_15 + timedelta(seconds=2),
        "commits_found": 12,
        "merge_requests_found": 3,
        "users_found": 4,
    }
    data.update(overrides)
    return ScanResult(**data)


class TestGlobalFlags:
    """Tests for global CLI flags."""

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("scan", "rate-limit", "db", "--verbose", "--quiet"):
            assert command in result.stdout

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestScanRepo:
    """Tests for `scmscan scan repo`."""

    def test_json_output(self, patched_scanner):
        build, dispose = patched_scanner
        scanner = make_scanner(scan_repository={"return_value": scan_result()})
        build.return_value = scanner

        result = runner.invoke(
            app,
            ["scan", "repo", "https://github.com/acme/widgets", "-c", "cfg-1", "-t", "ghp_x", "-f", "json"],
        )

        assert result.exit_code == 0, result.stdout
        output = json.loads(result.stdout)
        assert output["commits_found"] == 12
        assert output["duration_ms"] == 2000
        dispose.assert_awaited_once()

    def test_request_built_from_options(self, patched_scanner):
        build, _ = patched_scanner
        scanner = make_scanner(scan_repository={"return_value": scan_result()})
        build.return_value = scanner

        runner.invoke(
            app,
            [
                "scan", "repo", "https://gitlab.example.com/group/sub/widgets",
                "-c", "cfg-2", "--tool-type", "GitLab", "--branch", "develop", "--since", "2024-01-15",
            ],
        )

        request = scanner.scan_repository.call_args.args[0]
        assert request.tool_type == ToolType.GITLAB
        assert request.tool_config_id == "cfg-2"
        assert request.branch_name == "develop"
        assert request.since.isoformat() == "2024-01-15T00:00:00+00:00"

    def test_text_output(self, patched_scanner):
        build, _ = patched_scanner
        build.return_value = make_scanner(scan_repository={"return_value": scan_result()})

        result = runner.invoke(app, ["scan", "repo", "https://github.com/acme/widgets", "-c", "cfg-1"])

        assert result.exit_code == 0
        assert "Scan completed." in result.stdout
        assert "12" in result.stdout

    def test_failure_exits_with_cause(self, patched_scanner):
        build, dispose = patched_scanner
        error = DataProcessingError("Repository scan failed")
        error.__cause__ = RuntimeError("GitHub API error: Bad credentials")
        build.return_value = make_scanner(scan_repository={"side_effect": error})

        result = runner.invoke(app, ["scan", "repo", "https://github.com/acme/widgets", "-c", "cfg-1"])

        assert result.exit_code == 1
        assert "Scan failed" in result.stdout
        assert "Bad credentials" in result.stdout
        dispose.assert_awaited_once()

    def test_undetectable_platform(self, patched_scanner):
        build, _ = patched_scanner

        result = runner.invoke(app, ["scan", "repo", "https://svn.example.com/widgets", "-c", "cfg-1"])

        assert result.exit_code == 1
        assert "Could not detect platform" in result.stdout
        build.assert_not_called()

    def test_unknown_tool_type(self, patched_scanner):
        result = runner.invoke(
            app, ["scan", "repo", "https://github.com/acme/widgets", "-c", "cfg-1", "--tool-type", "svn"]
        )

        assert result.exit_code != 0

    def test_invalid_date(self, patched_scanner):
        result = runner.invoke(
            app, ["scan", "repo", "https://github.com/acme/widgets", "-c", "cfg-1", "--since", "last tuesday"]
        )

        assert result.exit_code != 0


class TestScanRepos:
    """Tests for `scmscan scan repos`."""

    def test_lists_repositories(self, patched_scanner):
        build, _ = patched_scanner
        listing = RepositoryScanResult(
            connection_id="conn-1",
            start_time=JAN_15,
            end_time=JAN_15,
            repositories=(
                ScmRepository(connection_id="conn-1", repository_name="acme/widgets"),
                ScmRepository(connection_id="conn-1", repository_name="acme/gadgets"),
            ),
        )
        scanner = make_scanner(scan_connection_repositories={"return_value": listing})
        build.return_value = scanner

        result = runner.invoke(app, ["scan", "repos", "https://github.com/acme", "--connection-id", "conn-1"])

        assert result.exit_code == 0
        assert "Found 2 repositories" in result.stdout
        assert "acme/gadgets" in result.stdout
        request = scanner.scan_connection_repositories.call_args.args[0]
        assert request.connection_id == "conn-1"

    def test_empty_listing(self, patched_scanner):
        build, _ = patched_scanner
        listing = RepositoryScanResult(connection_id="conn-1", start_time=JAN_15, end_time=JAN_15)
        build.return_value = make_scanner(scan_connection_repositories={"return_value": listing})

        result = runner.invoke(app, ["scan", "repos", "https://github.com/acme", "--connection-id", "conn-1"])

        assert result.exit_code == 0
        assert "No repositories found" in result.stdout


class TestRateLimit:
    """Tests for `scmscan rate-limit`."""

    def test_requires_token(self, monkeypatch):
        monkeypatch.delenv("SCM_TOKEN", raising=False)

        result = runner.invoke(app, ["rate-limit", "github"])

        assert result.exit_code == 1
        assert "--token" in result.stdout

    def test_json_output(self):
        status = RateLimitStatus(
            platform="GitHub", used=4500, remaining=500, limit=5000, reset_time=now_millis() + 600_000
        )
        monitor = MagicMock()
        monitor.platform = ToolType.GITHUB
        monitor.default_threshold = 0.8
        monitor.get_rate_limit_status = AsyncMock(return_value=status)

        with patch("scm_scanner.cli.rate_limit.default_monitors", return_value=[monitor]):
            result = runner.invoke(app, ["rate-limit", "github", "--token", "ghp_x", "--format", "json"])

        assert result.exit_code == 0, result.stdout
        output = json.loads(result.stdout)
        assert output["remaining"] == 500
        assert output["usage_percentage"] == 0.9
        assert output["exceeds_threshold"] is True
        monitor.get_rate_limit_status.assert_awaited_once_with("ghp_x", None)


class TestDbInit:
    def test_creates_tables(self):
        with (
            patch("scm_scanner.cli.db.create_tables", new_callable=AsyncMock) as create,
            patch("scm_scanner.cli.db.dispose_engine", new_callable=AsyncMock) as dispose,
        ):
            result = runner.invoke(app, ["db", "init"])

        assert result.exit_code == 0
        assert "Database initialized" in result.stdout
        create.assert_awaited_once()
        dispose.assert_awaited_once()
