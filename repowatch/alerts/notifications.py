"""Notification accumulator and acknowledgement service.

The notification store maps repository full name -> category -> list of
markers. Poll cycles only ever append to it; markers leave the store only
when the consumer acknowledges a category, a tab or a single file.
"""

import copy
from collections.abc import Iterable
from typing import Any

from repowatch.alerts.badge import (
    BadgeIndicator,
    BadgeState,
    format_badge,
    publish_badge,
    summarize,
)
from repowatch.alerts.keys import notifications_key
from repowatch.alerts.locks import UserLocks
from repowatch.core.logging import get_logger
from repowatch.core.store import KeyValueStore
from repowatch.shared.models import TAB_CATEGORIES, Category, FileChangeMarker, Tab

logger = get_logger(__name__)

# Repository full name -> category value -> markers
NotificationStore = dict[str, dict[str, list[Any]]]


def marker_identity(marker: Any) -> Any:
    """Deduplication key of a marker: the sha for file changes, else the id."""
    if isinstance(marker, FileChangeMarker):
        return marker.sha
    if isinstance(marker, dict):
        return marker.get("sha")
    return marker


def merge_markers(existing: list[Any] | None, new_markers: Iterable[Any]) -> list[Any]:
    """Append markers that are not already present.

    Args:
        existing: Current markers for one repository category
        new_markers: Newly detected markers, earliest first

    Returns:
        ``existing`` itself when nothing was added, otherwise a new list with
        the unseen markers appended in order

    Example:
        >>> merge_markers([3], [3, 4])
        [3, 4]
    """
    current = existing if isinstance(existing, list) else []
    seen = {marker_identity(marker) for marker in current}
    additions: list[Any] = []
    for marker in new_markers:
        identity = marker_identity(marker)
        if identity in seen:
            continue
        seen.add(identity)
        additions.append(marker)

    if not additions:
        return existing if isinstance(existing, list) else []
    return [*current, *additions]


def append_markers(
    notifications: NotificationStore,
    repo_full_name: str,
    category: Category,
    new_markers: Iterable[Any],
) -> int:
    """Merge markers into a working notification store in place.

    The repository and category entries are only created when something is
    added.

    Returns:
        Number of markers actually appended
    """
    repo_entry = notifications.get(repo_full_name)
    existing = repo_entry.get(category.value) if isinstance(repo_entry, dict) else None
    before = len(existing) if isinstance(existing, list) else 0

    merged = merge_markers(existing, new_markers)
    added = len(merged) - before
    if added <= 0:
        return 0

    if not isinstance(repo_entry, dict):
        repo_entry = {}
        notifications[repo_full_name] = repo_entry
    repo_entry[category.value] = merged
    return added


def clear_categories(
    notifications: NotificationStore, repo_full_name: str, categories: Iterable[Category]
) -> tuple[NotificationStore, bool]:
    """Remove every marker of the given categories for one repository.

    The repository key is dropped once no category remains.

    Returns:
        Tuple of (new store, whether anything was removed). ``notifications``
        is not modified.
    """
    repo_entry = notifications.get(repo_full_name)
    if not isinstance(repo_entry, dict):
        return notifications, False

    remaining = {
        key: markers
        for key, markers in repo_entry.items()
        if key not in {category.value for category in categories}
    }
    if len(remaining) == len(repo_entry):
        return notifications, False

    updated = copy.deepcopy(notifications)
    if remaining:
        updated[repo_full_name] = copy.deepcopy(remaining)
    else:
        del updated[repo_full_name]
    return updated, True


def clear_file_markers(
    notifications: NotificationStore, repo_full_name: str, path: str, branch: str
) -> tuple[NotificationStore, bool]:
    """Remove the file-change markers of one tracked file.

    Returns:
        Tuple of (new store, whether anything was removed)
    """
    repo_entry = notifications.get(repo_full_name)
    if not isinstance(repo_entry, dict):
        return notifications, False
    markers = repo_entry.get(Category.FILE_CHANGES.value)
    if not isinstance(markers, list):
        return notifications, False

    kept = [
        marker
        for marker in markers
        if not (
            isinstance(marker, dict)
            and marker.get("path") == path
            and marker.get("branch") == branch
        )
    ]
    if len(kept) == len(markers):
        return notifications, False

    updated = copy.deepcopy(notifications)
    if kept:
        updated[repo_full_name][Category.FILE_CHANGES.value] = kept
    else:
        del updated[repo_full_name][Category.FILE_CHANGES.value]
        if not updated[repo_full_name]:
            del updated[repo_full_name]
    return updated, True


def normalize_notifications(raw: Any) -> NotificationStore:
    """Copy a stored notification store into working form.

    Repository entries that are not objects are dropped; category values are
    kept as stored.
    """
    if not isinstance(raw, dict):
        return {}
    return {
        repo: copy.deepcopy(entry) for repo, entry in raw.items() if isinstance(entry, dict)
    }


class NotificationService:
    """Consumer-facing reads and acknowledgements of the notification store.

    Every mutation holds the login's lock, so it is serialised with poll
    cycles for the same login.
    """

    def __init__(self, store: KeyValueStore, locks: UserLocks, indicator: BadgeIndicator) -> None:
        """Initialize notification service.

        Args:
            store: Key-value store holding the notification stores
            locks: Per-login locks shared with the poll orchestrator
            indicator: Badge indicator republished after every acknowledgement
        """
        self.store = store
        self.locks = locks
        self.indicator = indicator

    async def get_notifications(self, login: str) -> NotificationStore:
        key = notifications_key(login)
        data = await self.store.get([key])
        return normalize_notifications(data.get(key))

    async def get_badge(self, login: str) -> BadgeState:
        return format_badge(summarize(await self.get_notifications(login)))

    async def clear_category(
        self, login: str, repo_full_name: str, category: Category
    ) -> BadgeState:
        """Acknowledge one repository category.

        Args:
            login: Owner of the notification store
            repo_full_name: Repository in ``owner/name`` form
            category: Category the consumer has viewed

        Returns:
            The republished badge
        """
        return await self._clear(login, repo_full_name, (category,))

    async def clear_tab(self, login: str, repo_full_name: str, tab: Tab) -> BadgeState:
        """Acknowledge every category shown on a consumer tab."""
        return await self._clear(login, repo_full_name, TAB_CATEGORIES[tab])

    async def clear_file_notification(
        self, login: str, repo_full_name: str, path: str, branch: str
    ) -> BadgeState:
        """Acknowledge the file-change markers of one tracked file."""
        async with self.locks.for_user(login):
            key = notifications_key(login)
            data = await self.store.get([key])
            current = normalize_notifications(data.get(key))
            updated, changed = clear_file_markers(current, repo_full_name, path, branch)
            if changed:
                await self.store.set({key: updated})
                logger.info(
                    "notifications.file.cleared",
                    login=login,
                    repo=repo_full_name,
                    path=path,
                    branch=branch,
                )
            return await publish_badge(self.indicator, login, updated)

    async def _clear(
        self, login: str, repo_full_name: str, categories: tuple[Category, ...]
    ) -> BadgeState:
        async with self.locks.for_user(login):
            key = notifications_key(login)
            data = await self.store.get([key])
            current = normalize_notifications(data.get(key))
            updated, changed = clear_categories(current, repo_full_name, categories)
            if changed:
                await self.store.set({key: updated})
                logger.info(
                    "notifications.cleared",
                    login=login,
                    repo=repo_full_name,
                    categories=[category.value for category in categories],
                )
            return await publish_badge(self.indicator, login, updated)
