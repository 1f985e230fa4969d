"""Tests for the notification accumulator and acknowledgement service."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from repowatch.alerts.locks import UserLocks
from repowatch.alerts.notifications import (
    NotificationService,
    append_markers,
    clear_categories,
    clear_file_markers,
    merge_markers,
    normalize_notifications,
)
from repowatch.shared.exceptions import PersistenceError
from repowatch.shared.models import Category, Tab

FILE_MARKER = {"path": "README.md", "branch": "main", "sha": "abc"}


@pytest.fixture
def indicator() -> AsyncMock:
    """Mock badge indicator."""
    return AsyncMock()


@pytest.fixture
def service(memory_store, indicator: AsyncMock) -> NotificationService:
    """Notification service backed by the in-memory store."""
    return NotificationService(store=memory_store, locks=UserLocks(), indicator=indicator)


def test_merge_markers_appends_in_order() -> None:
    """Test that new markers are appended earliest first."""
    assert merge_markers([3], [4, 5]) == [3, 4, 5]


def test_merge_markers_is_idempotent() -> None:
    """Test that merging the same markers twice adds nothing the second time."""
    once = merge_markers([], [3, 4])
    twice = merge_markers(once, [3, 4])

    assert twice == [3, 4]


def test_merge_markers_empty_input_returns_same_list() -> None:
    """Test that nothing new leaves the existing list untouched."""
    existing = [1, 2]

    assert merge_markers(existing, []) is existing


def test_merge_markers_associative() -> None:
    """Test that merging in two steps equals merging the concatenation."""
    stepwise = merge_markers(merge_markers([1], [2, 3]), [3, 4])

    assert stepwise == merge_markers([1], [2, 3, 3, 4]) == [1, 2, 3, 4]


def test_merge_markers_file_changes_dedup_by_sha() -> None:
    """Test that file-change markers are deduplicated by commit sha."""
    merged = merge_markers([FILE_MARKER], [dict(FILE_MARKER), {**FILE_MARKER, "sha": "def"}])

    assert [m["sha"] for m in merged] == ["abc", "def"]


def test_append_markers_creates_entries_only_when_adding() -> None:
    """Test that no empty repository entry is created for nothing new."""
    store: dict = {}

    assert append_markers(store, "o/r", Category.ISSUES, []) == 0
    assert store == {}

    assert append_markers(store, "o/r", Category.ISSUES, [3]) == 1
    assert store == {"o/r": {"issues": [3]}}


def test_append_markers_additivity_across_cycles() -> None:
    """Test that two cycles accumulate the union without duplicates."""
    store: dict = {}

    append_markers(store, "o/r", Category.ISSUES, [3])
    append_markers(store, "o/r", Category.ISSUES, [3, 4])

    assert store == {"o/r": {"issues": [3, 4]}}


def test_clear_categories_only_clears_target() -> None:
    """Test that clearing one category keeps the others."""
    store = {"o/r": {"issues": [3], "newPRs": [9]}}

    updated, changed = clear_categories(store, "o/r", [Category.ISSUES])

    assert changed
    assert updated == {"o/r": {"newPRs": [9]}}
    assert store == {"o/r": {"issues": [3], "newPRs": [9]}}


def test_clear_categories_last_category_drops_repo() -> None:
    """Test that clearing the last category removes the repository key."""
    store = {"o/r": {"newPRs": [9]}, "o/s": {"issues": [1]}}

    updated, changed = clear_categories(store, "o/r", [Category.NEW_PRS])

    assert changed
    assert updated == {"o/s": {"issues": [1]}}


def test_clear_categories_nothing_to_clear() -> None:
    """Test that clearing an absent category reports no change."""
    store = {"o/r": {"issues": [3]}}

    updated, changed = clear_categories(store, "o/r", [Category.ACTIONS])
    assert not changed
    assert updated is store

    _, changed = clear_categories(store, "o/missing", [Category.ISSUES])
    assert not changed


def test_clear_file_markers_removes_matching_file() -> None:
    """Test that only markers of the given path and branch are removed."""
    other = {"path": "docs/a.md", "branch": "main", "sha": "zzz"}
    store = {"o/r": {"fileChanges": [FILE_MARKER, other], "issues": [1]}}

    updated, changed = clear_file_markers(store, "o/r", "README.md", "main")

    assert changed
    assert updated == {"o/r": {"fileChanges": [other], "issues": [1]}}


def test_clear_file_markers_last_file_drops_repo() -> None:
    """Test that removing the last marker cascades to the repository key."""
    store = {"o/r": {"fileChanges": [FILE_MARKER]}}

    updated, changed = clear_file_markers(store, "o/r", "README.md", "main")

    assert changed
    assert updated == {}


def test_clear_file_markers_branch_must_match() -> None:
    """Test that the same path on another branch is kept."""
    store = {"o/r": {"fileChanges": [FILE_MARKER]}}

    updated, changed = clear_file_markers(store, "o/r", "README.md", "dev")

    assert not changed
    assert updated is store


def test_normalize_notifications_drops_non_objects() -> None:
    """Test that malformed repository entries are dropped."""
    assert normalize_notifications(None) == {}
    assert normalize_notifications({"o/r": [1], "o/s": {"issues": [2]}}) == {
        "o/s": {"issues": [2]}
    }


@pytest.mark.asyncio
async def test_service_clear_category_persists_and_republishes(
    service: NotificationService, memory_store, indicator: AsyncMock
) -> None:
    """Test that clearing a category writes the store and republishes the badge."""
    memory_store.seed({"notifications:octocat": {"o/r": {"issues": [3], "newPRs": [9]}}})

    badge = await service.clear_category("octocat", "o/r", Category.ISSUES)

    assert memory_store.data["notifications:octocat"] == {"o/r": {"newPRs": [9]}}
    assert badge.text == "+1"
    indicator.publish.assert_awaited_once_with("octocat", badge)


@pytest.mark.asyncio
async def test_service_clear_category_without_change_skips_write(
    service: NotificationService, memory_store, indicator: AsyncMock
) -> None:
    """Test that nothing is written when there is nothing to clear."""
    memory_store.seed({"notifications:octocat": {"o/r": {"issues": [3]}}})

    badge = await service.clear_category("octocat", "o/r", Category.ACTIONS)

    assert memory_store.set_calls == []
    assert badge.count == 1
    indicator.publish.assert_awaited_once()


@pytest.mark.asyncio
async def test_service_clear_tab_prs_clears_both_pr_categories(
    service: NotificationService, memory_store
) -> None:
    """Test that the PRs tab acknowledges new and assigned pull requests."""
    memory_store.seed(
        {"notifications:octocat": {"o/r": {"newPRs": [9], "assignedPRs": [7], "issues": [1]}}}
    )

    badge = await service.clear_tab("octocat", "o/r", Tab.PRS)

    assert memory_store.data["notifications:octocat"] == {"o/r": {"issues": [1]}}
    assert badge.count == 1


@pytest.mark.asyncio
async def test_service_clear_file_notification(
    service: NotificationService, memory_store
) -> None:
    """Test that a single tracked file can be acknowledged."""
    memory_store.seed({"notifications:octocat": {"o/r": {"fileChanges": [FILE_MARKER]}}})

    badge = await service.clear_file_notification("octocat", "o/r", "README.md", "main")

    assert memory_store.data["notifications:octocat"] == {}
    assert badge.count == 0
    assert badge.text == ""


@pytest.mark.asyncio
async def test_service_get_badge(service: NotificationService, memory_store) -> None:
    """Test that get_badge() summarizes the persisted store."""
    memory_store.seed({"notifications:octocat": {"o/r": {"issues": [1, 2, 3]}}})

    badge = await service.get_badge("octocat")

    assert badge.count == 3
    assert badge.text == "+3"


@pytest.mark.asyncio
async def test_service_get_notifications_for_unknown_login(
    service: NotificationService,
) -> None:
    """Test that an unknown login has an empty notification store."""
    assert await service.get_notifications("nobody") == {}


@pytest.mark.asyncio
async def test_service_propagates_persistence_errors(
    service: NotificationService, memory_store
) -> None:
    """Test that storage failures reach the caller."""
    memory_store.seed({"notifications:octocat": {"o/r": {"issues": [3]}}})
    memory_store.fail_set = True

    with pytest.raises(PersistenceError):
        await service.clear_category("octocat", "o/r", Category.ISSUES)


@pytest.mark.asyncio
async def test_service_waits_for_poll_lock(memory_store, indicator: AsyncMock) -> None:
    """Test that an acknowledgement waits while the login's lock is held."""
    locks = UserLocks()
    service = NotificationService(store=memory_store, locks=locks, indicator=indicator)
    memory_store.seed({"notifications:octocat": {"o/r": {"issues": [3]}}})

    async with locks.for_user("octocat"):
        task = asyncio.create_task(service.clear_category("octocat", "o/r", Category.ISSUES))
        await asyncio.sleep(0)
        assert not task.done()
        assert memory_store.set_calls == []

    await task
    assert memory_store.data["notifications:octocat"] == {}
