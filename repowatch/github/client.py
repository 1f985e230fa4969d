"""GitHub API client with retry logic and rate limit handling."""

import asyncio
import math
import re
from typing import Any
from urllib.parse import parse_qs, urlparse

import aiohttp

from repowatch.core.logging import get_logger
from repowatch.shared.exceptions import AuthError, GitHubAPIError
from repowatch.shared.models import ResourcePage

logger = get_logger(__name__)

_LINK_LAST_RE = re.compile(r'<([^>]+)>;\s*rel="last"')


def parse_total_pages(link_header: str | None, page: int) -> int:
    """Derive the page count from a GitHub ``Link`` response header.

    Args:
        link_header: Raw ``Link`` header value, if any
        page: Page number that was requested

    Returns:
        Page number of the ``rel="last"`` link, or ``page`` when there is none
        (single page, or the requested page is already the last one)

    Example:
        >>> parse_total_pages('<https://api.github.com/x?page=2>; rel="next", '
        ...                   '<https://api.github.com/x?page=7>; rel="last"', 1)
        7
    """
    if not link_header:
        return page

    match = _LINK_LAST_RE.search(link_header)
    if not match:
        return page

    query = parse_qs(urlparse(match.group(1)).query)
    try:
        return int(query["page"][0])
    except (KeyError, IndexError, ValueError):
        return page


def pages_from_total_count(total_count: int, per_page: int) -> int:
    """Page count for endpoints that report ``total_count`` instead of links."""
    return max(1, math.ceil(total_count / per_page))


class GitHubClient:
    """Async GitHub REST client with automatic retry logic.

    Every ``fetch_*`` method returns the requested page of a repository
    collection as a :class:`ResourcePage`. Failures raise rather than
    returning an empty page, so callers can tell "nothing there" apart from
    "could not look".

    Attributes:
        BASE_URL: GitHub API base URL
        MAX_RETRIES: Maximum number of retry attempts
        RETRY_DELAYS: Exponential backoff delays in seconds
    """

    BASE_URL = "https://api.github.com"
    MAX_RETRIES = 3
    RETRY_DELAYS = [2, 4, 8]

    def __init__(self, token: str, per_page: int = 10) -> None:
        """Initialize GitHub client with authentication token.

        Args:
            token: GitHub personal access or OAuth token
            per_page: Page size requested from list endpoints
        """
        self.token = token
        self.per_page = per_page
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "GitHubClient":
        """Context manager entry: create aiohttp session."""
        self.session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "repowatch",
            }
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Context manager exit: close aiohttp session."""
        if self.session:
            await self.session.close()

    async def _get_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> tuple[Any, str | None]:
        """GET a JSON document, retrying network errors with backoff.

        Args:
            path: API path below ``BASE_URL``
            params: Query parameters

        Returns:
            Tuple of (decoded JSON body, ``Link`` header or None)

        Raises:
            AuthError: On 401 responses
            GitHubAPIError: On any other non-200 response or exhausted retries
        """
        url = f"{self.BASE_URL}{path}"

        for attempt in range(self.MAX_RETRIES):
            try:
                if not self.session:
                    raise GitHubAPIError("Session not initialized")

                async with self.session.get(url, params=params) as response:
                    if response.status == 200:
                        data = await response.json()
                        return data, response.headers.get("Link")
                    elif response.status == 401:
                        raise AuthError(f"Invalid token: {response.status}")
                    elif response.status in (403, 429):
                        remaining = response.headers.get("x-ratelimit-remaining")
                        reset = response.headers.get("x-ratelimit-reset")
                        logger.warning(
                            "github.ratelimit",
                            path=path,
                            remaining=remaining,
                            reset=reset,
                            status=response.status,
                        )
                        raise GitHubAPIError(f"Rate limited: {response.status}")
                    elif response.status == 404:
                        raise GitHubAPIError(f"Not found: {path}")
                    else:
                        raise GitHubAPIError(f"API error: {response.status}")
            except aiohttp.ClientError as e:
                if attempt < self.MAX_RETRIES - 1:
                    logger.warning(
                        "github.request.retry",
                        path=path,
                        attempt=attempt + 1,
                        error=str(e),
                    )
                    await asyncio.sleep(self.RETRY_DELAYS[attempt])
                else:
                    raise GitHubAPIError(f"Network error: {e}") from e

        raise GitHubAPIError("Request failed after retries")

    async def get_authenticated_user(self) -> str:
        """Get authenticated user's login.

        Returns:
            GitHub login of the token owner

        Raises:
            AuthError: If the token is rejected
            GitHubAPIError: If the request fails for any other reason
        """
        data, _ = await self._get_json("/user")
        login: str = data["login"]
        return login

    async def fetch_issues(
        self, repo_full_name: str, state: str = "open", page: int = 1
    ) -> ResourcePage:
        """Fetch one page of issues, newest first.

        The issues endpoint also lists pull requests; those are dropped.

        Args:
            repo_full_name: Repository in ``owner/name`` form
            state: open, closed or all
            page: Page number (1-based)
        """
        data, link = await self._get_json(
            f"/repos/{repo_full_name}/issues",
            {
                "state": state,
                "sort": "created",
                "direction": "desc",
                "per_page": self.per_page,
                "page": page,
            },
        )
        issues = [item for item in data if "pull_request" not in item]
        return ResourcePage(items=issues, total_pages=parse_total_pages(link, page))

    async def fetch_pull_requests(
        self, repo_full_name: str, state: str = "open", page: int = 1
    ) -> ResourcePage:
        """Fetch one page of pull requests, newest first.

        Args:
            repo_full_name: Repository in ``owner/name`` form
            state: open, closed or all
            page: Page number (1-based)
        """
        data, link = await self._get_json(
            f"/repos/{repo_full_name}/pulls",
            {
                "state": state,
                "sort": "created",
                "direction": "desc",
                "per_page": self.per_page,
                "page": page,
            },
        )
        return ResourcePage(items=data, total_pages=parse_total_pages(link, page))

    async def fetch_assigned_pull_requests(
        self, repo_full_name: str, login: str, page: int = 1
    ) -> ResourcePage:
        """Fetch open pull requests in a repository assigned to ``login``.

        Uses the issue search API, which reports ``total_count``.
        """
        data, _ = await self._get_json(
            "/search/issues",
            {
                "q": f"is:pr is:open repo:{repo_full_name} assignee:{login}",
                "sort": "created",
                "order": "desc",
                "per_page": self.per_page,
                "page": page,
            },
        )
        return ResourcePage(
            items=data.get("items", []),
            total_pages=pages_from_total_count(data.get("total_count", 0), self.per_page),
        )

    async def fetch_workflow_runs(
        self, repo_full_name: str, status: str | None = None, page: int = 1
    ) -> ResourcePage:
        """Fetch one page of GitHub Actions workflow runs, newest first.

        Args:
            repo_full_name: Repository in ``owner/name`` form
            status: Optional status or conclusion filter (e.g. ``in_progress``)
            page: Page number (1-based)
        """
        params: dict[str, Any] = {"per_page": self.per_page, "page": page}
        if status:
            params["status"] = status

        data, _ = await self._get_json(f"/repos/{repo_full_name}/actions/runs", params)
        return ResourcePage(
            items=data.get("workflow_runs", []),
            total_pages=pages_from_total_count(data.get("total_count", 0), self.per_page),
        )

    async def fetch_releases(self, repo_full_name: str, page: int = 1) -> ResourcePage:
        """Fetch one page of releases, newest first."""
        data, link = await self._get_json(
            f"/repos/{repo_full_name}/releases",
            {"per_page": self.per_page, "page": page},
        )
        return ResourcePage(items=data, total_pages=parse_total_pages(link, page))

    async def fetch_last_commit_for_file(
        self, repo_full_name: str, branch: str, path: str
    ) -> dict[str, Any] | None:
        """Fetch the most recent commit touching ``path`` on ``branch``.

        Returns:
            Commit object, or None when the file has no history on the branch
        """
        data, _ = await self._get_json(
            f"/repos/{repo_full_name}/commits",
            {"sha": branch, "path": path, "per_page": 1},
        )
        if not data:
            return None
        commit: dict[str, Any] = data[0]
        return commit
