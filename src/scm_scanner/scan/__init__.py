"""Repository scanning.

This module provides:
- Fetchers for commits, merge requests and repositories
- User resolution and reference linking
- ScanCommandExecutor: all-or-nothing scan of one repository
- GitScannerService: per-repository serialized scans with bounded concurrency
"""

from .commit_fetcher import CommitFetcher
from .executor import SCAN_FAILED_MESSAGE, ScanCommand, ScanCommandExecutor
from .merge_request_fetcher import MergeRequestFetcher, reconcile
from .repository_fetcher import RepositoryFetcher
from .results import RepositoryScanResult, ScanResult
from .scanner import GitScannerService, build_default_scanner, build_platform_services
from .users import DataReferenceUpdater, UserProcessingResult, UserProcessor, identity_key
from .windows import months_ago, resolve_window_start

__all__ = [
    # Windows
    "months_ago",
    "resolve_window_start",
    # Fetchers
    "CommitFetcher",
    "MergeRequestFetcher",
    "RepositoryFetcher",
    "reconcile",
    # Users
    "DataReferenceUpdater",
    "UserProcessingResult",
    "UserProcessor",
    "identity_key",
    # Execution
    "SCAN_FAILED_MESSAGE",
    "ScanCommand",
    "ScanCommandExecutor",
    "RepositoryScanResult",
    "ScanResult",
    "GitScannerService",
    "build_default_scanner",
    "build_platform_services",
]
