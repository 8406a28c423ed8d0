"""Platform services for GitHub, GitLab, Bitbucket and Azure DevOps.

This module provides:
- Service contracts and shared paging (base)
- One service per platform implementing every contract
- Locators mapping a tool type to its service
"""

from .azure_devops import AzureDevOpsService
from .base import (
    BasePlatformService,
    GitPlatformCommitsService,
    GitPlatformMergeRequestService,
    GitPlatformRepositoryService,
    GitPlatformService,
    PlatformCallContext,
    in_window,
    matches_branch,
    paginate,
)
from .bitbucket import BitbucketService
from .credentials import format_platform_token
from .github import GitHubService
from .gitlab import GitLabService
from .http import PlatformHttpClient
from .locators import (
    CommitsServiceLocator,
    MergeRequestServiceLocator,
    PlatformServiceLocator,
    RepositoryServiceLocator,
    ServiceLocator,
)

__all__ = [
    # Contracts
    "BasePlatformService",
    "GitPlatformCommitsService",
    "GitPlatformMergeRequestService",
    "GitPlatformRepositoryService",
    "GitPlatformService",
    "PlatformCallContext",
    "in_window",
    "matches_branch",
    "paginate",
    # Services
    "AzureDevOpsService",
    "BitbucketService",
    "GitHubService",
    "GitLabService",
    "PlatformHttpClient",
    "format_platform_token",
    # Locators
    "CommitsServiceLocator",
    "MergeRequestServiceLocator",
    "PlatformServiceLocator",
    "RepositoryServiceLocator",
    "ServiceLocator",
]
