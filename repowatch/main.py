"""repowatch main entry point."""

import asyncio
import signal
import sys

from repowatch.alerts.badge import LoggingBadgeIndicator, publish_badge
from repowatch.alerts.config import load_alerts_file, sync_alerts_file
from repowatch.alerts.locks import UserLocks
from repowatch.alerts.notifications import NotificationService
from repowatch.alerts.polling import AlertPollingService
from repowatch.alerts.scheduler import PollScheduler
from repowatch.api.server import NotificationServer
from repowatch.core.config import Settings, get_settings
from repowatch.core.logging import get_logger, setup_logging
from repowatch.core.store import KeyValueStore, open_store
from repowatch.github.client import GitHubClient
from repowatch.shared.exceptions import ConfigError, FetchError

logger = get_logger(__name__)

# Module-level variables for lifecycle management
store: KeyValueStore | None = None
github_client: GitHubClient | None = None
scheduler: PollScheduler | None = None
api_server: NotificationServer | None = None


async def resolve_login(client: GitHubClient, settings: Settings) -> str:
    """Return the login whose repositories are watched.

    Uses ``settings.github_login`` when set, otherwise asks GitHub who owns
    the token.

    Raises:
        ConfigError: If the token is rejected or the user lookup fails
    """
    if settings.github_login:
        return settings.github_login

    try:
        login = await client.get_authenticated_user()
    except FetchError as e:
        logger.error("github.auth.failed", error=str(e))
        raise ConfigError(f"Invalid GitHub token: {e}") from e

    logger.info("github.auth.validated", username=login)
    return login


async def startup() -> None:
    """Initialize application on startup."""
    global store, github_client, scheduler, api_server

    settings = get_settings()

    logger.info(
        "application.lifecycle.started",
        version=settings.app_version,
        environment=settings.environment,
    )

    logger.info(
        "application.config.loaded",
        log_level=settings.log_level,
        poll_interval=settings.poll_interval_minutes,
        state_backend=settings.state_backend,
    )

    store = await open_store(settings)
    logger.info("store.initialized", backend=settings.state_backend)

    github_client = GitHubClient(settings.github_token, per_page=settings.page_size)
    await github_client.__aenter__()

    login = await resolve_login(github_client, settings)

    if settings.alerts_config_file:
        alerts_file = load_alerts_file(settings.alerts_config_file)
        await sync_alerts_file(store, login, alerts_file)

    indicator = LoggingBadgeIndicator()
    locks = UserLocks()

    polling_service = AlertPollingService(
        client=github_client,
        store=store,
        settings=settings,
        indicator=indicator,
        locks=locks,
    )
    notification_service = NotificationService(store=store, locks=locks, indicator=indicator)

    # Publish the persisted count before the first cycle runs
    await publish_badge(indicator, login, await notification_service.get_notifications(login))

    async def poll() -> None:
        await polling_service.run_poll_cycle(login)

    scheduler = PollScheduler(
        store=store,
        callback=poll,
        default_period_minutes=settings.poll_interval_minutes,
        initial_delay_minutes=settings.initial_delay_minutes,
    )
    await scheduler.start()

    if settings.enable_api:
        api_server = NotificationServer(
            host=settings.api_host,
            port=settings.api_port,
            login=login,
            notifications=notification_service,
            scheduler=scheduler,
            api_token=settings.api_token,
        )
        await api_server.start()

    logger.info("application.initialization.completed", login=login)


async def shutdown() -> None:
    """Cleanup on application shutdown."""
    global store, github_client, scheduler, api_server

    logger.info("application.shutdown.started")

    # Stop accepting acknowledgements first
    if api_server:
        await api_server.stop()
        api_server = None

    if scheduler:
        await scheduler.stop()
        scheduler = None

    if github_client:
        await github_client.__aexit__(None, None, None)
        github_client = None

    if store:
        await store.close()
        store = None

    logger.info("application.shutdown.completed")


async def main() -> None:
    """Main application loop."""
    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        logger.info("application.signal.received", signal=signal.Signals(sig).name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):

        def make_handler(s: int = sig) -> None:
            signal_handler(s)

        loop.add_signal_handler(sig, make_handler)

    try:
        await startup()
        await stop_event.wait()
    except Exception as e:
        logger.error("application.error.fatal", error=str(e), exc_info=True)
        raise
    finally:
        await shutdown()


def run() -> None:
    """Entry point for running the watcher."""
    try:
        # Load settings first to validate configuration
        settings = get_settings()

        # Setup logging with configured level
        setup_logging(log_level=settings.log_level)

        asyncio.run(main())

    except ConfigError as e:
        # Configuration errors should exit immediately with clear message
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
