"""GitLab REST client using httpx with personal-access-token authentication.

Authentication priority (resolved once, then cached):
1. ``GITLAB_TOKEN`` env var
2. ``GITLAB_PERSONAL_ACCESS_TOKEN`` env var
3. ``glab config get token`` subprocess (reads the local glab config, no network)
4. Raises :exc:`GitLabAuthError` with setup instructions

GET responses are cached for a short TTL in :mod:`mrautofix.cache`; a write
invalidates what was cached for the merge request it touches.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess  # noqa: S404
from typing import Any
from urllib.parse import quote

import httpx

from mrautofix import cache
from mrautofix.feedback import MergeRequestSource
from mrautofix.models import Discussion, MergeRequestRef

logger = logging.getLogger(__name__)

TOKEN_HELP = "Create a token with the 'api' scope under User Settings > Access Tokens."  # noqa: S105

_token: str | None = None
_token_resolved: bool = False

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_TOO_MANY_REQUESTS = 429
_PER_PAGE = 100
_MR_SCOPE = re.compile(r"^/projects/[^/]+/merge_requests/\d+")


class GitLabError(Exception):
    """Raised when a GitLab API call fails."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitLabAuthError(GitLabError):
    """Raised when GitLab authentication fails or no token is available."""

    def __init__(self, detail: str = "", status_code: int = _HTTP_UNAUTHORIZED) -> None:
        msg = f"GitLab token not found or rejected. Set GITLAB_TOKEN or GITLAB_PERSONAL_ACCESS_TOKEN.\n{TOKEN_HELP}"
        if detail:
            msg = f"{detail}\n{msg}"
        super().__init__(msg, status_code=status_code)


# ---------------------------------------------------------------------------
# Token resolution
# ---------------------------------------------------------------------------


def _resolve_token_sync() -> str | None:
    token = os.environ.get("GITLAB_TOKEN") or os.environ.get("GITLAB_PERSONAL_ACCESS_TOKEN")
    if token:
        logger.debug("GitLab token resolved from env var")
        return token

    try:
        result = subprocess.run(
            ["glab", "config", "get", "token"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode == 0 and result.stdout.strip():
        logger.debug("GitLab token resolved from glab config")
        return result.stdout.strip()
    return None


async def get_token() -> str:
    """Return the GitLab token, resolving it lazily on first call.

    Raises:
        GitLabAuthError: If no token can be found.
    """
    global _token, _token_resolved  # noqa: PLW0603
    if not _token_resolved:
        _token = await asyncio.to_thread(_resolve_token_sync)
        _token_resolved = True
    if _token is None:
        raise GitLabAuthError
    return _token


def reset_token() -> None:
    """Forget the cached token (for testing)."""
    global _token, _token_resolved  # noqa: PLW0603
    _token = None
    _token_resolved = False


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or response.text)
    return response.text


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the matching :exc:`GitLabError` for a non-2xx response."""
    if response.is_success:
        return

    status = response.status_code
    msg = _error_message(response)

    if status == _HTTP_UNAUTHORIZED:
        raise GitLabAuthError(f"GitLab rejected the token: {msg}")
    if status == _HTTP_FORBIDDEN:
        raise GitLabAuthError(f"GitLab API access forbidden: {msg}", status_code=_HTTP_FORBIDDEN)
    if status == _HTTP_NOT_FOUND:
        raise GitLabError(f"GitLab resource not found (404): {msg}", status_code=status)
    if status == _HTTP_TOO_MANY_REQUESTS:
        raise GitLabError(f"GitLab API rate limit exceeded: {msg}", status_code=status)
    raise GitLabError(f"GitLab API error {status}: {msg}", status_code=status)


def _parse_next_link(link_header: str) -> str | None:
    """Return the ``rel="next"`` URL of a ``Link:`` header, if any."""
    if not link_header:
        return None
    match = re.search(r'<([^>]+)>;\s*rel="next"', link_header)
    return match.group(1) if match else None


def encode_project(project_id: str) -> str:
    """URL-encode a numeric ID or ``group/project`` path for use in a URL path."""
    return quote(str(project_id), safe="")


class GitLabClient:
    """Thin async REST wrapper bound to one GitLab instance."""

    def __init__(self, api_url: str = "https://gitlab.com", *, timeout: float = 30.0) -> None:
        self.base_url = f"{api_url.rstrip('/')}/api/v4"
        self.timeout = timeout

    async def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": await get_token(), "Accept": "application/json"}

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        paginate: bool = False,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Call ``endpoint`` (a path below ``/api/v4``) and return parsed JSON.

        GET requests are cached. Anything else invalidates the cached
        responses of the merge request it touches, or of the whole instance
        when the endpoint is not below a merge request. With
        ``paginate=True`` the ``Link`` header is followed and every page is
        returned as one flat list.
        """
        is_read = method.upper() == "GET"
        url = f"{self.base_url}{endpoint}"
        key = cache.responses.key(url, params, paginate=paginate)
        if is_read:
            hit, cached = cache.responses.lookup(key)
            if hit:
                return cached

        headers = await self._headers()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            if paginate:
                result = await self._collect_pages(client, url, headers, params)
            else:
                response = await client.request(method, url, headers=headers, params=params, json=json)
                _raise_for_status(response)
                result = response.json() if response.content else None

        if is_read:
            cache.responses.store(key, result)
        else:
            scope = _MR_SCOPE.match(endpoint)
            cache.responses.invalidate(f"{self.base_url}{scope.group(0)}" if scope else self.base_url)
        return result

    async def _collect_pages(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None,
    ) -> list[Any]:
        results: list[Any] = []
        next_url: str | None = url
        page_params: dict[str, Any] | None = {"per_page": _PER_PAGE, **(params or {})}
        while next_url:
            response = await client.get(next_url, headers=headers, params=page_params)
            _raise_for_status(response)
            page = response.json()
            if isinstance(page, list):
                results.extend(page)
            elif page is not None:
                results.append(page)
            next_url = _parse_next_link(response.headers.get("link", ""))
            # The next link already carries every query parameter.
            page_params = None
        return results


class GitLabSource(MergeRequestSource):
    """Merge-request data source backed by the GitLab REST API."""

    def __init__(self, client: GitLabClient) -> None:
        self.client = client

    def _mr_path(self, project_id: str, iid: int | str) -> str:
        return f"/projects/{encode_project(project_id)}/merge_requests/{iid}"

    async def get_merge_request(self, project_id: str, iid: int | str) -> MergeRequestRef:
        data = await self.client.request(self._mr_path(project_id, iid))
        return MergeRequestRef.model_validate(data)

    async def find_merge_request_for_branch(self, project_id: str, branch: str) -> MergeRequestRef | None:
        """Return the newest open merge request whose source is *branch*."""
        data = await self.client.request(
            f"/projects/{encode_project(project_id)}/merge_requests",
            params={"source_branch": branch, "state": "opened"},
        )
        if not data:
            return None
        return MergeRequestRef.model_validate(data[0])

    async def list_discussions(self, project_id: str, iid: int | str) -> list[Discussion]:
        data = await self.client.request(f"{self._mr_path(project_id, iid)}/discussions", paginate=True)
        return [Discussion.model_validate(item) for item in data]

    async def get_diffs(self, project_id: str, iid: int | str) -> list[dict[str, Any]]:
        return await self.client.request(f"{self._mr_path(project_id, iid)}/diffs", paginate=True)

    async def create_note(self, project_id: str, iid: int | str, discussion_id: str, body: str) -> dict[str, Any]:
        """Reply inside an existing discussion."""
        return await self.client.request(
            f"{self._mr_path(project_id, iid)}/discussions/{discussion_id}/notes",
            method="POST",
            json={"body": body},
        )
