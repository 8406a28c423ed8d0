"""Rate limit monitoring and governance.

This module provides:
- RateLimitStatus: point-in-time quota snapshot
- Monitors: one per platform (GitHub, GitLab, Bitbucket, Azure DevOps)
- RateLimitService: threshold checks and cooldown waits
"""

from .monitors import (
    AzureDevOpsRateLimitMonitor,
    BitbucketRateLimitMonitor,
    GitHubRateLimitMonitor,
    GitLabRateLimitMonitor,
    RateLimitMonitor,
    default_monitors,
)
from .schemas import RateLimitStatus, ThrottleOutcome, now_millis
from .service import CooldownTimer, RateLimitService

__all__ = [
    # Schemas
    "RateLimitStatus",
    "ThrottleOutcome",
    "now_millis",
    # Monitors
    "AzureDevOpsRateLimitMonitor",
    "BitbucketRateLimitMonitor",
    "GitHubRateLimitMonitor",
    "GitLabRateLimitMonitor",
    "RateLimitMonitor",
    "default_monitors",
    # Service
    "CooldownTimer",
    "RateLimitService",
]
