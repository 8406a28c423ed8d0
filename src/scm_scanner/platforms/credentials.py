"""Platform specific credential formatting and client construction."""

import base64
from collections.abc import Callable
from typing import Any

from githubkit import GitHub

from scm_scanner.schemas import ToolType

GitHubFactory = Callable[[str | None, str | None], Any]


def format_platform_token(
    tool_type: ToolType | str,
    username: str | None,
    token: str | None,
) -> str | None:
    """Format a token the way the platform services expect it.

    Bitbucket authenticates with "username:app_password"; every other
    platform takes the token alone.

    Args:
        tool_type: Platform of the repository
        username: Account name (Bitbucket only)
        token: Access token or app password

    Returns:
        Token string, or None when no token was supplied
    """
    if not token:
        return None
    if ToolType.parse(tool_type) == ToolType.BITBUCKET and username and ":" not in token:
        return f"{username}:{token}"
    return token


def basic_or_bearer_headers(token: str | None) -> dict[str, str]:
    """Basic auth for "user:secret" tokens, bearer auth otherwise."""
    if not token:
        return {}
    if ":" in token:
        encoded = base64.b64encode(token.encode()).decode()
        return {"Authorization": f"Basic {encoded}"}
    return {"Authorization": f"Bearer {token}"}


def azure_devops_headers(token: str | None) -> dict[str, str]:
    """Azure DevOps takes a PAT as the password of basic auth with no user."""
    if not token:
        return {}
    encoded = base64.b64encode(f":{token}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


def default_github_factory(token: str | None, base_url: str | None) -> GitHub[Any]:
    """Build a githubkit client, pointed at GitHub Enterprise when base_url is set."""
    if base_url:
        return GitHub(token, base_url=base_url)
    return GitHub(token)
