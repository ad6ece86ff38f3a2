"""
GitHub repository data source.

Resolves a repository URL (or ``owner/name`` shorthand) to
``TargetMetadata`` using the public GitHub REST API.

A single ``httpx.AsyncClient`` is injected and reused across calls so
connection pooling is preserved. Per-call timeouts are enforced by the
caller's ``CallPolicy``, not here.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

import httpx

from fortress.app.schemas.pipeline import TargetMetadata

logger = logging.getLogger(__name__)


_TARGET_RE = re.compile(
    r"^(?:(?:https?://)?(?:www\.)?github\.com/)?"
    r"(?P<owner>[A-Za-z0-9_.-]+)/(?P<name>[A-Za-z0-9_.-]+?)"
    r"(?:\.git)?/?$"
)


def parse_target(target_url: str) -> Optional[Tuple[str, str]]:
    """
    Extract ``(owner, name)`` from a GitHub URL or shorthand.

    Returns None if the string does not identify a repository.
    """
    match = _TARGET_RE.match(target_url.strip())
    if match is None:
        return None
    return match.group("owner"), match.group("name")


class GitHubDataSource:
    """
    Data-source collaborator backed by ``GET /repos/{owner}/{name}``.

    Returns None for targets that do not parse or do not exist (404).
    Transport errors and other HTTP failures are raised so the caller's
    retry policy can apply.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_url: str = "https://api.github.com",
        token: Optional[str] = None,
    ) -> None:
        self._client = http_client
        self._api_url = api_url.rstrip("/")
        self._headers = {"Accept": "application/vnd.github+json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    async def fetch(self, target_url: str) -> Optional[TargetMetadata]:
        parsed = parse_target(target_url)
        if parsed is None:
            logger.info("github: unparseable target %r", target_url)
            return None

        owner, name = parsed
        response = await self._client.get(
            f"{self._api_url}/repos/{owner}/{name}",
            headers=self._headers,
        )

        if response.status_code == 404:
            logger.info("github: repository %s/%s not found", owner, name)
            return None

        response.raise_for_status()
        body = response.json()

        return TargetMetadata(
            owner=body.get("owner", {}).get("login", owner),
            name=body.get("name", name),
            url=body.get("html_url", f"https://github.com/{owner}/{name}"),
            default_branch=body.get("default_branch"),
            description=body.get("description"),
            language=body.get("language"),
            stars=body.get("stargazers_count") or 0,
        )
