"""Commit fetching for one repository scan."""

from __future__ import annotations

from scm_scanner.config import ScannerConfig, get_settings
from scm_scanner.exceptions import DataProcessingError
from scm_scanner.logging import get_logger
from scm_scanner.platforms import CommitsServiceLocator, format_platform_token
from scm_scanner.schemas import ScanRequest, ScmCommit
from scm_scanner.url_parser import parse_git_url

from .windows import resolve_window_start

logger = get_logger(__name__)


class CommitFetcher:
    """Fetches the commits of a repository inside its incremental window.

    Usage:
        fetcher = CommitFetcher(commits_locator)
        commits = await fetcher.fetch_commits(request)
    """

    def __init__(
        self,
        locator: CommitsServiceLocator,
        config: ScannerConfig | None = None,
    ) -> None:
        self._locator = locator
        self._config = config or get_settings().scanner

    async def fetch_commits(self, request: ScanRequest) -> list[ScmCommit]:
        """Fetch commits committed since the last scan.

        Args:
            request: Scan request

        Returns:
            Commits in [since, until)

        Raises:
            DataProcessingError: If the platform is unsupported or the URL unparseable
        """
        service = self._locator.get_commits_service(request.tool_type)
        if service is None:
            raise DataProcessingError(
                f"No suitable commit fetch strategy found for tool type: {request.tool_type}"
            )

        since = resolve_window_start(request, self._config.first_scan_from_months)
        url_info = parse_git_url(
            request.repository_url,
            request.tool_type,
            request.username,
            request.repository_name,
        )
        if url_info is None:
            raise DataProcessingError(f"Invalid repository URL: {request.repository_url}")

        logger.info(
            "Fetching commits for {repo} since {since}",
            repo=request.display_name,
            since=since.isoformat(),
        )
        commits = await service.fetch_commits(
            request.tool_config_id,
            url_info,
            request.branch_name,
            format_platform_token(request.tool_type, request.username, request.token),
            since,
            request.until,
        )
        logger.info("Fetched {count} commits for {repo}", count=len(commits), repo=request.display_name)
        return commits
