"""Alert configuration loading and validation.

Alert configuration is owned by the consumer (a UI, or the optional JSON file
synced at startup). The poll cycle only reads it.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, RootModel, TypeAdapter, ValidationError

from repowatch.alerts.keys import alerts_config_key, tracked_files_key
from repowatch.core.logging import get_logger
from repowatch.core.store import KeyValueStore
from repowatch.shared.exceptions import ConfigError
from repowatch.shared.models import Category, TrackedFile

logger = get_logger(__name__)

_CATEGORY_FIELDS: dict[Category, str] = {
    Category.ISSUES: "issues",
    Category.NEW_PRS: "new_prs",
    Category.ASSIGNED_PRS: "assigned_prs",
    Category.ACTIONS: "actions",
    Category.NEW_RELEASES: "new_releases",
    Category.FILE_CHANGES: "file_changes",
}


class RepoAlertSettings(BaseModel):
    """Per-repository category switches.

    Attributes:
        issues: Notify on newly opened issues
        new_prs: Notify on newly opened pull requests
        assigned_prs: Notify on pull requests newly assigned to the user
        actions: Notify on workflow run state changes
        new_releases: Notify on new releases
        file_changes: Notify on new commits to tracked files
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    issues: bool = False
    new_prs: bool = Field(False, alias="newPRs")
    assigned_prs: bool = Field(False, alias="assignedPRs")
    actions: bool = False
    new_releases: bool = Field(False, alias="newReleases")
    file_changes: bool = Field(False, alias="fileChanges")

    def is_enabled(self, category: Category) -> bool:
        return bool(getattr(self, _CATEGORY_FIELDS[category]))

    @property
    def enabled_categories(self) -> list[Category]:
        """Enabled categories in declaration order."""
        return [category for category in Category if self.is_enabled(category)]


class AlertConfiguration(RootModel[dict[str, RepoAlertSettings]]):
    """Mapping of repository full name to its category switches."""

    root: dict[str, RepoAlertSettings] = Field(default_factory=dict)

    @property
    def repos(self) -> list[str]:
        return list(self.root)

    @property
    def is_empty(self) -> bool:
        return not self.root

    def enabled_categories(self, repo_full_name: str) -> list[Category]:
        """Categories enabled for a repository; empty when the repo is absent."""
        settings = self.root.get(repo_full_name)
        if settings is None:
            return []
        return settings.enabled_categories


_tracked_files_adapter = TypeAdapter(dict[str, list[TrackedFile]])


def parse_alert_configuration(raw: Any) -> AlertConfiguration:
    """Validate a stored alert configuration.

    Args:
        raw: Value read from the store (None when never configured)

    Returns:
        Parsed configuration, empty when ``raw`` is None

    Raises:
        ConfigError: If the stored value is malformed
    """
    if raw is None:
        return AlertConfiguration({})
    try:
        return AlertConfiguration.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid alert configuration: {e}") from e


def parse_tracked_files(raw: Any) -> dict[str, list[TrackedFile]]:
    """Validate a stored tracked-files mapping (repo -> files)."""
    if raw is None:
        return {}
    try:
        return _tracked_files_adapter.validate_python(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid tracked files: {e}") from e


class AlertsFile(BaseModel):
    """Contents of the optional alerts configuration file.

    Attributes:
        repos: Repository full name -> category switches
        tracked_files: Repository full name -> files to watch
    """

    repos: dict[str, RepoAlertSettings] = Field(default_factory=dict)
    tracked_files: dict[str, list[TrackedFile]] = Field(default_factory=dict)


def load_alerts_file(path: str | Path) -> AlertsFile:
    """Load and validate an alerts configuration file.

    Args:
        path: Path to the JSON file

    Returns:
        Validated file contents

    Raises:
        ConfigError: If the file is missing, not JSON or fails validation
    """
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError(f"Alerts config file not found: {file_path}")

    try:
        data = json.loads(file_path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in alerts config: {e}") from e

    try:
        alerts_file = AlertsFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid alerts config: {e}") from e

    logger.info(
        "alerts.config.loaded",
        path=str(file_path),
        repos=len(alerts_file.repos),
        tracked_files=sum(len(files) for files in alerts_file.tracked_files.values()),
    )
    return alerts_file


async def sync_alerts_file(store: KeyValueStore, login: str, alerts_file: AlertsFile) -> None:
    """Write file-based alert configuration into the store for ``login``."""
    await store.set(
        {
            alerts_config_key(login): {
                repo: settings.model_dump(by_alias=True)
                for repo, settings in alerts_file.repos.items()
            },
            tracked_files_key(login): {
                repo: [f.model_dump() for f in files]
                for repo, files in alerts_file.tracked_files.items()
            },
        }
    )
    logger.info("alerts.config.synced", login=login, repos=len(alerts_file.repos))
