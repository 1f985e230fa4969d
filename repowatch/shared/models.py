"""Data models for repowatch."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Category(StrEnum):
    """Monitored resource kinds.

    Values double as the alert-flag names and the notification-store keys.
    """

    ISSUES = "issues"
    NEW_PRS = "newPRs"
    ASSIGNED_PRS = "assignedPRs"
    ACTIONS = "actions"
    NEW_RELEASES = "newReleases"
    FILE_CHANGES = "fileChanges"


class Tab(StrEnum):
    """Consumer views that acknowledge one or more categories at once."""

    ISSUES = "Issues"
    PRS = "PRs"
    ACTIONS = "Actions"
    RELEASES = "Releases"


TAB_CATEGORIES: dict[Tab, tuple[Category, ...]] = {
    Tab.ISSUES: (Category.ISSUES,),
    Tab.PRS: (Category.NEW_PRS, Category.ASSIGNED_PRS),
    Tab.ACTIONS: (Category.ACTIONS,),
    Tab.RELEASES: (Category.NEW_RELEASES,),
}


class ResourcePage(BaseModel):
    """First page of a repository collection as returned by a fetcher.

    Attributes:
        items: Raw GitHub API objects on the page
        total_pages: Number of pages the collection spans
    """

    items: list[dict[str, Any]] = Field(default_factory=list, description="Items on this page")
    total_pages: int = Field(1, ge=0, description="Total number of pages")

    @property
    def ids(self) -> list[int]:
        """Integer ids of the page items, in API order."""
        return [int(item["id"]) for item in self.items if item.get("id") is not None]

    @property
    def has_more(self) -> bool:
        """Whether items exist beyond this page."""
        return self.total_pages > 1


class WorkflowRun(BaseModel):
    """Minimal view of a GitHub Actions workflow run.

    Attributes:
        id: Run id
        status: queued, in_progress, completed, waiting ...
        conclusion: success, failure, cancelled ... (None until completed)
    """

    id: int = Field(..., description="Workflow run id")
    status: str = Field(..., description="Run status")
    conclusion: str | None = Field(None, description="Run conclusion once completed")

    @property
    def state(self) -> str:
        """Observed state: the conclusion when completed, else the status."""
        if self.status == "completed":
            return self.conclusion or "completed"
        return self.status

    @classmethod
    def from_github_run(cls, run: dict[str, Any]) -> "WorkflowRun":
        """Parse a run object from the workflow runs API."""
        return cls(id=run["id"], status=run.get("status") or "", conclusion=run.get("conclusion"))


class TrackedFile(BaseModel):
    """A file path on a branch whose latest commit is watched."""

    path: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1)

    @property
    def snapshot_key(self) -> str:
        """Composite key used in the file-change snapshot map."""
        return f"{self.path}_{self.branch}"


class FileChangeMarker(BaseModel):
    """Notification marker for a tracked file that received a new commit."""

    path: str
    branch: str
    sha: str
