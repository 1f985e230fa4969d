"""Snapshot (last observed state) helpers."""

from typing import Any

from repowatch.core.logging import get_logger
from repowatch.shared.models import Category

logger = get_logger(__name__)

# Repository full name -> snapshot key -> last observed value
Snapshot = dict[str, dict[str, Any]]

SNAPSHOT_KEYS: dict[Category, str] = {
    Category.ISSUES: "issues",
    Category.NEW_PRS: "prs",
    Category.ASSIGNED_PRS: "assignedPRs",
    Category.ACTIONS: "actions",
    Category.NEW_RELEASES: "releases",
    Category.FILE_CHANGES: "trackedFiles",
}


ID_LIST_KEYS = frozenset(
    SNAPSHOT_KEYS[category]
    for category in (
        Category.ISSUES,
        Category.NEW_PRS,
        Category.ASSIGNED_PRS,
        Category.NEW_RELEASES,
    )
)


def _is_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _normalize_run_states(value: dict[Any, Any]) -> dict[int, str]:
    states: dict[int, str] = {}
    for run_id, state in value.items():
        try:
            states[int(run_id)] = state
        except (TypeError, ValueError):
            logger.warning("alerts.snapshot.malformed_run_id", run_id=run_id)
    return states


def _normalize_value(key: str, value: Any) -> Any:
    """Working copy of one category value, or None when its shape is wrong."""
    if key in ID_LIST_KEYS:
        if not isinstance(value, list):
            return None
        return [item for item in value if _is_id(item)]
    if key == SNAPSHOT_KEYS[Category.ACTIONS]:
        return _normalize_run_states(value) if isinstance(value, dict) else None
    if key == SNAPSHOT_KEYS[Category.FILE_CHANGES]:
        if not isinstance(value, dict):
            return None
        return {k: sha for k, sha in value.items() if isinstance(sha, str)}

    # Keys this version does not know are carried over as stored
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, list):
        return list(value)
    return value


def normalize_snapshot(raw: Any) -> Snapshot:
    """Copy a stored snapshot into working form.

    JSON object keys are always strings, so the run-id keys of the actions
    map are turned back into integers. Entries that are not objects are
    dropped, and so is any category value whose shape does not match its
    category; that category is then treated as never observed.

    Args:
        raw: Value read from the store (None on first run)

    Returns:
        A fresh snapshot that shares no containers with ``raw``
    """
    if not isinstance(raw, dict):
        return {}

    snapshot: Snapshot = {}
    for repo, entry in raw.items():
        if not isinstance(entry, dict):
            logger.warning("alerts.snapshot.malformed_entry", repo=repo)
            continue

        copied: dict[str, Any] = {}
        for key, value in entry.items():
            normalized = _normalize_value(key, value)
            if normalized is None and value is not None:
                logger.warning("alerts.snapshot.malformed_value", repo=repo, key=key)
                continue
            copied[key] = normalized
        snapshot[repo] = copied
    return snapshot


def merge_snapshot(previous: Any, fetched: Any, fetch_succeeded: bool) -> Any:
    """Next snapshot value for one repository category.

    A successful fetch replaces the previous value outright; a failed one
    carries the previous value over unchanged (which stays None when the
    category was never observed).
    """
    if fetch_succeeded:
        return fetched
    return previous
