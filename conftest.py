"""Shared pytest fixtures for repowatch tests."""

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from repowatch.core.config import Settings
from repowatch.core.store import KeyValueStore
from repowatch.shared.exceptions import PersistenceError


class MemoryStore(KeyValueStore):
    """In-memory store that round-trips values through JSON like the real engines.

    Records every ``set`` call so tests can assert on write batching, and can
    be told to fail reads or writes.
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = json.loads(json.dumps(data or {}))
        self.set_calls: list[dict[str, Any]] = []
        self.fail_get = False
        self.fail_set = False

    def seed(self, values: dict[str, Any]) -> None:
        """Put values in the store without recording a ``set`` call."""
        self.data.update(json.loads(json.dumps(values)))

    async def get(self, keys: list[str]) -> dict[str, Any]:
        if self.fail_get:
            raise PersistenceError("read failed")
        return {key: json.loads(json.dumps(self.data[key])) for key in keys if key in self.data}

    async def set(self, values: dict[str, Any]) -> None:
        if self.fail_set:
            raise PersistenceError("write failed")
        encoded = json.loads(json.dumps(values))
        self.set_calls.append(encoded)
        self.data.update(encoded)


@pytest.fixture
def temp_state_file(tmp_path: Path) -> Path:
    """Create a temporary state file path for testing.

    Args:
        tmp_path: pytest's temporary directory fixture

    Returns:
        Path to temporary state.json file
    """
    return tmp_path / "state.json"


@pytest.fixture
def mock_settings(temp_state_file: Path) -> Settings:
    """Create Settings instance with test values.

    Args:
        temp_state_file: Temporary state file path

    Returns:
        Settings instance configured for testing
    """
    return Settings(
        github_token="test_github_token",
        github_login="octocat",
        log_level="INFO",
        state_backend="json",
        state_file_path=str(temp_state_file),
        poll_interval_minutes=5,
        fetch_timeout_seconds=1.0,
        max_concurrent_fetches=4,
        enable_api=False,
        app_version="0.1.0",
        environment="test",
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    """Empty in-memory key-value store."""
    return MemoryStore()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    """Reset the global settings cache before and after each test.

    This ensures tests don't interfere with each other via cached settings.
    """
    import repowatch.core.config

    repowatch.core.config._settings = None

    yield

    repowatch.core.config._settings = None
