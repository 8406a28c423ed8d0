"""Repository URL parsing.

Turns clone/browse URLs into a GitUrlInfo (platform, owner, repository,
and for self-hosted instances the API base URL). Parsing never raises for
unsupported URLs; callers decide how to fail on None.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from scm_scanner.logging import get_logger
from scm_scanner.schemas import GitUrlInfo, ToolType

logger = get_logger(__name__)

_SSH_URL = re.compile(r"^(?:ssh://)?(?:[\w.-]+@)?(?P<host>[^:/]+)(?::\d+)?[:/](?P<path>.+)$")

_GITHUB_PATH = re.compile(r"^/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$")
_GITLAB_PATH = re.compile(r"^/(?P<namespace>.+)/(?P<repo>[^/]+?)(?:\.git)?/?$")
_BITBUCKET_CLOUD_PATH = re.compile(r"^/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$")
_BITBUCKET_SERVER_PATH = re.compile(
    r"^(?P<context>/.*?)?/(?:scm|projects)/(?P<project>[^/]+)/(?:repos/)?(?P<repo>[^/]+?)(?:\.git)?(?:/.*)?$"
)
_AZURE_PATH = re.compile(
    r"^/(?P<organization>[^/]+)/(?P<project>[^/]+)/_git/(?P<repo>[^/]+?)/?$"
)
_VISUALSTUDIO_PATH = re.compile(
    r"^(?:/DefaultCollection)?/(?P<project>[^/]+)/_git/(?P<repo>[^/]+?)/?$"
)


def _normalize(url: str) -> tuple[str, str, str] | None:
    """Split a URL into (scheme, host, path), converting SSH forms to HTTPS."""
    url = url.strip()
    if "://" in url and not url.startswith("ssh://"):
        parts = urlsplit(url)
        if not parts.hostname:
            return None
        host = parts.hostname.lower()
        if parts.port:
            host = f"{host}:{parts.port}"
        return parts.scheme or "https", host, parts.path

    match = _SSH_URL.match(url)
    if match is None:
        return None
    return "https", match.group("host").lower(), "/" + match.group("path").lstrip("/")


def _parse_github(scheme: str, host: str, path: str, url: str) -> GitUrlInfo | None:
    match = _GITHUB_PATH.match(path)
    if match is None:
        return None
    self_hosted = host not in ("github.com", "www.github.com")
    return GitUrlInfo(
        platform=ToolType.GITHUB,
        owner=match.group("owner"),
        repository_name=match.group("repo"),
        original_url=url,
        host=host,
        base_url=f"{scheme}://{host}/api/v3" if self_hosted else None,
        is_self_hosted=self_hosted,
    )


def _parse_gitlab(scheme: str, host: str, path: str, url: str) -> GitUrlInfo | None:
    # Strip web UI suffixes such as /-/tree/main
    path = path.split("/-/", 1)[0]
    match = _GITLAB_PATH.match(path)
    if match is None:
        return None
    return GitUrlInfo(
        platform=ToolType.GITLAB,
        owner=match.group("namespace"),
        repository_name=match.group("repo"),
        original_url=url,
        host=host,
        base_url=f"{scheme}://{host}",
        is_self_hosted=host != "gitlab.com",
    )


def _parse_bitbucket(scheme: str, host: str, path: str, url: str) -> GitUrlInfo | None:
    if host in ("bitbucket.org", "www.bitbucket.org"):
        match = _BITBUCKET_CLOUD_PATH.match(path)
        if match is None:
            return None
        return GitUrlInfo(
            platform=ToolType.BITBUCKET,
            owner=match.group("owner"),
            repository_name=match.group("repo"),
            original_url=url,
            host=host,
        )

    match = _BITBUCKET_SERVER_PATH.match(path)
    if match is None:
        return None
    context = match.group("context") or ""
    return GitUrlInfo(
        platform=ToolType.BITBUCKET,
        owner=match.group("project"),
        repository_name=match.group("repo"),
        original_url=url,
        host=host,
        project=match.group("project"),
        base_url=f"{scheme}://{host}{context}",
        is_self_hosted=True,
    )


def _parse_azure(scheme: str, host: str, path: str, url: str) -> GitUrlInfo | None:
    if host.endswith("dev.azure.com"):
        match = _AZURE_PATH.match(path)
        if match is None:
            return None
        organization = match.group("organization")
    elif host.endswith(".visualstudio.com"):
        match = _VISUALSTUDIO_PATH.match(path)
        if match is None:
            return None
        organization = host.split(".", 1)[0]
    else:
        return None

    return GitUrlInfo(
        platform=ToolType.AZURE_REPOSITORY,
        owner=organization,
        repository_name=match.group("repo"),
        original_url=url,
        host=host,
        organization=organization,
        project=match.group("project"),
    )


def _from_repository_name(
    tool_type: ToolType,
    url: str,
    repository_name: str | None,
) -> GitUrlInfo | None:
    """Fall back to an owner/repo style repository name."""
    if not repository_name or "/" not in repository_name:
        return None
    owner, _, name = repository_name.strip("/").rpartition("/")
    if not owner or not name:
        return None
    return GitUrlInfo(
        platform=tool_type,
        owner=owner,
        repository_name=name,
        original_url=url,
    )


_PARSERS = {
    ToolType.GITHUB: _parse_github,
    ToolType.GITLAB: _parse_gitlab,
    ToolType.BITBUCKET: _parse_bitbucket,
    ToolType.AZURE_REPOSITORY: _parse_azure,
}


def parse_git_url(
    url: str | None,
    tool_type: ToolType | str | None,
    username: str | None = None,
    repository_name: str | None = None,
) -> GitUrlInfo | None:
    """Parse a repository URL into a structured identity.

    Args:
        url: HTTPS or SSH repository URL
        tool_type: Platform the repository belongs to
        username: Account name (only used to allow the repository name fallback)
        repository_name: Optional "owner/repo" name used when the URL is not
            in a recognized form (GitHub and Bitbucket only)

    Returns:
        GitUrlInfo, or None when the URL cannot be attributed to a repository
    """
    if not url or not url.strip():
        return None

    normalized = _normalize(url)
    if normalized is None:
        logger.warning("Unrecognized repository URL: {}", url)
        return None
    scheme, host, path = normalized

    platform = ToolType.parse(tool_type)
    if platform is not None:
        info = _PARSERS[platform](scheme, host, path, url.strip())
        if info is None and username and platform in (ToolType.GITHUB, ToolType.BITBUCKET):
            info = _from_repository_name(platform, url.strip(), repository_name)
        if info is not None:
            return info

    # Azure DevOps URLs are unambiguous, accept them whatever the tool type says
    return _parse_azure(scheme, host, path, url.strip())


def extract_azure_organization(url: str | None) -> str | None:
    """Get the organization from a dev.azure.com or visualstudio.com URL."""
    if not url:
        return None
    parts = urlsplit(url if "://" in url else f"https://{url}")
    host = (parts.hostname or "").lower()
    if host.endswith(".visualstudio.com"):
        return host.split(".", 1)[0]
    if host == "dev.azure.com":
        segments = [segment for segment in parts.path.split("/") if segment]
        return segments[0] if segments else None
    return None
