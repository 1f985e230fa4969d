"""Shared test fixtures for GitHub client tests."""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from repowatch.github.client import GitHubClient


@pytest.fixture
def github_client() -> GitHubClient:
    """Create a GitHub client instance for testing.

    Returns:
        GitHubClient instance with test token
    """
    return GitHubClient("test_token_12345")


@pytest.fixture
def mock_response_factory() -> Callable[..., MagicMock]:
    """Build an async context manager standing in for ``session.get(...)``.

    Returns:
        Factory taking status, JSON body and headers
    """

    def factory(
        status: int = 200, body: Any = None, headers: dict[str, str] | None = None
    ) -> MagicMock:
        mock_response = AsyncMock()
        mock_response.status = status
        mock_response.json = AsyncMock(return_value=body)
        mock_response.headers = headers or {}

        mock_context = MagicMock()
        mock_context.__aenter__ = AsyncMock(return_value=mock_response)
        mock_context.__aexit__ = AsyncMock(return_value=None)
        return mock_context

    return factory
