"""Tests for application startup and shutdown."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import repowatch.main as app_main
from repowatch.core.config import Settings
from repowatch.shared.exceptions import AuthError, ConfigError


@pytest.fixture
def mock_github_client() -> MagicMock:
    """GitHub client mock usable as an async context manager."""
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    client.get_authenticated_user = AsyncMock(return_value="token-owner")
    return client


@pytest.mark.asyncio
async def test_resolve_login_prefers_configured_login(
    mock_settings: Settings, mock_github_client: MagicMock
) -> None:
    """Test that GITHUB_LOGIN skips the user lookup."""
    login = await app_main.resolve_login(mock_github_client, mock_settings)

    assert login == "octocat"
    mock_github_client.get_authenticated_user.assert_not_called()


@pytest.mark.asyncio
async def test_resolve_login_from_token(
    mock_settings: Settings, mock_github_client: MagicMock
) -> None:
    """Test that the token owner is used when no login is configured."""
    settings = mock_settings.model_copy(update={"github_login": ""})

    assert await app_main.resolve_login(mock_github_client, settings) == "token-owner"


@pytest.mark.asyncio
async def test_resolve_login_invalid_token(
    mock_settings: Settings, mock_github_client: MagicMock
) -> None:
    """Test that a rejected token is a configuration error."""
    settings = mock_settings.model_copy(update={"github_login": ""})
    mock_github_client.get_authenticated_user.side_effect = AuthError("Invalid token: 401")

    with pytest.raises(ConfigError, match="Invalid GitHub token"):
        await app_main.resolve_login(mock_github_client, settings)


@pytest.mark.asyncio
async def test_startup_and_shutdown(
    mock_settings: Settings, mock_github_client: MagicMock, tmp_path: Path
) -> None:
    """Test that startup wires the services and shutdown releases them."""
    alerts_path = tmp_path / "alerts.json"
    alerts_path.write_text(json.dumps({"repos": {"o/r": {"issues": True}}}))
    settings = mock_settings.model_copy(update={"alerts_config_file": str(alerts_path)})

    with patch.object(app_main, "get_settings", return_value=settings):
        with patch.object(app_main, "GitHubClient", return_value=mock_github_client):
            await app_main.startup()

            try:
                assert app_main.scheduler is not None
                assert app_main.scheduler.is_running
                assert app_main.api_server is None
                state = json.loads(Path(settings.state_file_path).read_text())
                assert state["alerts_config:octocat"]["o/r"]["issues"] is True
            finally:
                await app_main.shutdown()

    assert app_main.scheduler is None
    assert app_main.store is None
    mock_github_client.__aexit__.assert_awaited_once()


@pytest.mark.asyncio
async def test_startup_with_api_server(
    mock_settings: Settings, mock_github_client: MagicMock
) -> None:
    """Test that the HTTP surface starts when enabled."""
    settings = mock_settings.model_copy(update={"enable_api": True, "api_port": 0})

    with patch.object(app_main, "get_settings", return_value=settings):
        with patch.object(app_main, "GitHubClient", return_value=mock_github_client):
            await app_main.startup()

            try:
                assert app_main.api_server is not None
                assert app_main.api_server.is_running
            finally:
                await app_main.shutdown()

    assert app_main.api_server is None


def test_run_exits_on_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that configuration errors exit with status 1."""
    monkeypatch.setattr(app_main, "get_settings", MagicMock(side_effect=ConfigError("bad")))

    with pytest.raises(SystemExit) as exc_info:
        app_main.run()

    assert exc_info.value.code == 1
