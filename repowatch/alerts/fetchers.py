"""Category fetchers: one per monitored resource kind.

Each fetcher knows how to observe its category for one repository (network,
first page only) and how to turn an observation plus the previous snapshot
value into notification markers and the next snapshot value.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from repowatch.alerts.diff import diff_file_commits, diff_ids, diff_run_states
from repowatch.alerts.snapshot import SNAPSHOT_KEYS
from repowatch.core.logging import get_logger
from repowatch.github.client import GitHubClient
from repowatch.shared.exceptions import AuthError, FetchError
from repowatch.shared.models import (
    Category,
    ResourcePage,
    TrackedFile,
    WorkflowRun,
)

logger = get_logger(__name__)


@dataclass
class Detection:
    """Outcome of applying a novelty rule.

    Attributes:
        markers: New notification markers, earliest first
        snapshot: Value to store as the category's next snapshot
    """

    markers: list[Any] = field(default_factory=list)
    snapshot: Any = None


class CategoryFetcher(ABC):
    """Observes one category of a repository and applies its novelty rule.

    Attributes:
        bounds_own_requests: True when ``observe`` applies its own per-request
            timeout, so the caller must not bound the whole observation
    """

    bounds_own_requests = False

    def __init__(self, category: Category) -> None:
        self.category = category

    @property
    def snapshot_key(self) -> str:
        """Key of this category inside a repository's snapshot entry."""
        return SNAPSHOT_KEYS[self.category]

    @abstractmethod
    async def observe(self, repo_full_name: str) -> Any:
        """Fetch the current state of the category.

        Raises:
            AuthError: If the credential is rejected
            FetchError: If the category could not be fetched
        """
        pass

    @abstractmethod
    def detect(self, previous: Any, observation: Any) -> Detection:
        """Compare an observation with the previous snapshot value."""
        pass


def _log_truncation(category: Category, repo_full_name: str, page: ResourcePage) -> None:
    if page.has_more:
        logger.debug(
            "alerts.fetch.first_page_only",
            repo=repo_full_name,
            category=category.value,
            total_pages=page.total_pages,
        )


class IdListFetcher(CategoryFetcher):
    """Fetcher for categories whose novelty rule is "id not seen before"."""

    def __init__(
        self, category: Category, fetch_page: Callable[[str], Awaitable[ResourcePage]]
    ) -> None:
        super().__init__(category)
        self.fetch_page = fetch_page

    async def observe(self, repo_full_name: str) -> list[int]:
        page = await self.fetch_page(repo_full_name)
        _log_truncation(self.category, repo_full_name, page)
        return page.ids

    def detect(self, previous: Any, observation: list[int]) -> Detection:
        return Detection(markers=diff_ids(previous, observation), snapshot=list(observation))


class WorkflowRunFetcher(CategoryFetcher):
    """Fetcher for workflow runs, notifying on every state transition."""

    def __init__(self, client: GitHubClient) -> None:
        super().__init__(Category.ACTIONS)
        self.client = client

    async def observe(self, repo_full_name: str) -> list[WorkflowRun]:
        page = await self.client.fetch_workflow_runs(repo_full_name, None, 1)
        _log_truncation(self.category, repo_full_name, page)
        return [WorkflowRun.from_github_run(run) for run in page.items]

    def detect(self, previous: Any, observation: list[WorkflowRun]) -> Detection:
        changed, next_states = diff_run_states(previous, observation)
        return Detection(markers=changed, snapshot=next_states)


class FileChangeFetcher(CategoryFetcher):
    """Fetcher for tracked files, notifying when a file's latest commit changes.

    Each file lookup is bounded on its own, so one slow file never costs the
    other files of the repository their update.
    """

    bounds_own_requests = True

    def __init__(
        self,
        client: GitHubClient,
        tracked_files: dict[str, list[TrackedFile]],
        timeout: float | None = None,
    ) -> None:
        super().__init__(Category.FILE_CHANGES)
        self.client = client
        self.tracked_files = tracked_files
        self.timeout = timeout

    async def observe(self, repo_full_name: str) -> list[tuple[TrackedFile, str | None]]:
        """Look up each tracked file; a failed or timed-out lookup yields a None sha.

        Raises:
            AuthError: If the credential is rejected for any file
        """
        observed: list[tuple[TrackedFile, str | None]] = []
        for tracked in self.tracked_files.get(repo_full_name, []):
            try:
                commit = await asyncio.wait_for(
                    self.client.fetch_last_commit_for_file(
                        repo_full_name, tracked.branch, tracked.path
                    ),
                    timeout=self.timeout,
                )
            except AuthError:
                raise
            except TimeoutError:
                logger.warning(
                    "alerts.fetch.file_timeout",
                    repo=repo_full_name,
                    path=tracked.path,
                    branch=tracked.branch,
                    timeout=self.timeout,
                )
                observed.append((tracked, None))
                continue
            except FetchError as e:
                logger.warning(
                    "alerts.fetch.file_failed",
                    repo=repo_full_name,
                    path=tracked.path,
                    branch=tracked.branch,
                    error=str(e),
                )
                observed.append((tracked, None))
                continue
            observed.append((tracked, commit.get("sha") if commit else None))
        return observed

    def detect(self, previous: Any, observation: list[tuple[TrackedFile, str | None]]) -> Detection:
        markers, next_shas = diff_file_commits(previous, observation)
        return Detection(markers=[m.model_dump() for m in markers], snapshot=next_shas)


def build_fetchers(
    client: GitHubClient,
    login: str,
    tracked_files: dict[str, list[TrackedFile]] | None = None,
    file_timeout: float | None = None,
) -> dict[Category, CategoryFetcher]:
    """Build the fetcher for every category.

    Args:
        client: GitHub API client
        login: Login whose assigned pull requests are watched
        tracked_files: Repository -> tracked files for the file-change category
        file_timeout: Seconds allowed for each tracked file lookup

    Returns:
        Mapping covering every :class:`Category` member
    """
    fetchers: dict[Category, CategoryFetcher] = {
        Category.ISSUES: IdListFetcher(
            Category.ISSUES, lambda repo: client.fetch_issues(repo, "open", 1)
        ),
        Category.NEW_PRS: IdListFetcher(
            Category.NEW_PRS, lambda repo: client.fetch_pull_requests(repo, "open", 1)
        ),
        Category.ASSIGNED_PRS: IdListFetcher(
            Category.ASSIGNED_PRS,
            lambda repo: client.fetch_assigned_pull_requests(repo, login, 1),
        ),
        Category.ACTIONS: WorkflowRunFetcher(client),
        Category.NEW_RELEASES: IdListFetcher(
            Category.NEW_RELEASES, lambda repo: client.fetch_releases(repo, 1)
        ),
        Category.FILE_CHANGES: FileChangeFetcher(client, tracked_files or {}, file_timeout),
    }

    missing = set(Category) - set(fetchers)
    if missing:
        raise RuntimeError(f"No fetcher for categories: {sorted(missing)}")
    return fetchers
