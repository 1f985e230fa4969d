"""Alert poll orchestrator.

One poll cycle for a login:

1. Load alert configuration, snapshot, notification store and tracked files
   in one read. An empty configuration ends the cycle with no side effects.
2. Observe every enabled (repository, category) pair concurrently, each
   observation bounded by a timeout.
3. Fold the observations into working copies in configuration order: novel
   items become markers, successful observations replace the category's
   snapshot value, failed ones leave it untouched.
4. Persist the snapshot and the notification store in a single ``set`` call.
5. Recompute the badge from the persisted notification store and publish it.
"""

import asyncio
import copy
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from repowatch.alerts.badge import BadgeIndicator, publish_badge
from repowatch.alerts.config import parse_alert_configuration, parse_tracked_files
from repowatch.alerts.fetchers import CategoryFetcher, build_fetchers
from repowatch.alerts.keys import (
    alerts_config_key,
    last_checked_key,
    notifications_key,
    tracked_files_key,
)
from repowatch.alerts.locks import UserLocks
from repowatch.alerts.notifications import append_markers, normalize_notifications
from repowatch.alerts.snapshot import merge_snapshot, normalize_snapshot
from repowatch.core.config import Settings
from repowatch.core.logging import get_logger, new_correlation_id
from repowatch.core.store import KeyValueStore
from repowatch.github.client import GitHubClient
from repowatch.shared.exceptions import AuthError, ConfigError, PersistenceError
from repowatch.shared.models import Category

logger = get_logger(__name__)


class PollStatus(StrEnum):
    COMPLETED = "completed"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    NOT_CONFIGURED = "not_configured"
    AUTH_FAILED = "auth_failed"
    CONFIG_INVALID = "config_invalid"
    PERSISTENCE_FAILED = "persistence_failed"
    FAILED = "failed"


@dataclass
class PollResult:
    """Summary of one poll cycle.

    Attributes:
        status: How the cycle ended
        new_markers: Markers appended across all repositories
        failed: (repository, category) pairs whose observation failed
        badge_count: Published aggregate count, None when nothing was published
    """

    status: PollStatus
    new_markers: int = 0
    failed: list[tuple[str, Category]] = field(default_factory=list)
    badge_count: int | None = None


class AlertPollingService:
    """Runs poll cycles and keeps the per-login alert state in the store.

    At most one cycle per login is in flight: a cycle requested while another
    one for the same login is running is skipped. Acknowledgements share the
    same per-login lock; a cycle requested while one is applied waits for it.
    """

    def __init__(
        self,
        client: GitHubClient,
        store: KeyValueStore,
        settings: Settings,
        indicator: BadgeIndicator,
        locks: UserLocks | None = None,
    ) -> None:
        """Initialize polling service with dependencies.

        Args:
            client: GitHub API client used by the category fetchers
            store: Key-value store holding every per-login value
            settings: Application settings (timeouts, concurrency)
            indicator: Badge indicator published after each cycle
            locks: Per-login locks shared with the notification service
        """
        self.client = client
        self.store = store
        self.settings = settings
        self.indicator = indicator
        self.locks = locks or UserLocks()
        self._fetch_slots = asyncio.Semaphore(settings.max_concurrent_fetches)
        self._polling: set[str] = set()

    async def run_poll_cycle(self, login: str) -> PollResult:
        """Run one poll cycle for ``login``.

        Never raises for cycle-level failures: they are logged and reported
        through the returned status.
        """
        if login in self._polling:
            logger.warning("alerts.poll.skipped_in_flight", login=login)
            return PollResult(status=PollStatus.SKIPPED_IN_FLIGHT)

        self._polling.add(login)
        try:
            if self.locks.is_locked(login):
                logger.info("alerts.poll.waiting_for_acknowledgement", login=login)
            async with self.locks.for_user(login):
                new_correlation_id()
                return await self._guarded_cycle(login)
        finally:
            self._polling.discard(login)

    async def _guarded_cycle(self, login: str) -> PollResult:
        try:
            return await self._run_cycle(login)
        except AuthError as e:
            logger.error("alerts.poll.auth_failed", login=login, error=str(e))
            return PollResult(status=PollStatus.AUTH_FAILED)
        except ConfigError as e:
            logger.error("alerts.poll.config_invalid", login=login, error=str(e))
            return PollResult(status=PollStatus.CONFIG_INVALID)
        except PersistenceError as e:
            logger.error(
                "alerts.poll.persistence_failed", login=login, error=str(e), exc_info=True
            )
            return PollResult(status=PollStatus.PERSISTENCE_FAILED)
        except Exception as e:
            logger.error("alerts.poll.failed", login=login, error=str(e), exc_info=True)
            return PollResult(status=PollStatus.FAILED)

    async def _run_cycle(self, login: str) -> PollResult:
        if not login:
            raise AuthError("No login identity for poll cycle")

        keys = {
            "config": alerts_config_key(login),
            "snapshot": last_checked_key(login),
            "notifications": notifications_key(login),
            "tracked_files": tracked_files_key(login),
        }
        data = await self.store.get(list(keys.values()))

        config = parse_alert_configuration(data.get(keys["config"]))
        if config.is_empty:
            logger.info("alerts.poll.not_configured", login=login)
            return PollResult(status=PollStatus.NOT_CONFIGURED)

        previous_snapshot = normalize_snapshot(data.get(keys["snapshot"]))
        notifications = normalize_notifications(data.get(keys["notifications"]))
        tracked_files = parse_tracked_files(data.get(keys["tracked_files"]))
        fetchers = build_fetchers(
            self.client, login, tracked_files, self.settings.fetch_timeout_seconds
        )

        jobs = [
            (repo, category)
            for repo in config.repos
            for category in config.enabled_categories(repo)
        ]
        logger.info("alerts.poll.started", login=login, repos=len(config.repos), jobs=len(jobs))

        outcomes = await asyncio.gather(
            *(self._observe(fetchers[category], repo) for repo, category in jobs),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, AuthError):
                raise outcome

        # Repositories that are no longer configured keep their last snapshot
        next_snapshot = copy.deepcopy(previous_snapshot)
        result = PollResult(status=PollStatus.COMPLETED)

        for (repo, category), outcome in zip(jobs, outcomes):
            fetcher = fetchers[category]
            previous = previous_snapshot.get(repo, {}).get(fetcher.snapshot_key)

            if isinstance(outcome, BaseException):
                logger.warning(
                    "alerts.fetch.failed",
                    repo=repo,
                    category=category.value,
                    error=str(outcome) or type(outcome).__name__,
                )
                result.failed.append((repo, category))
                value = merge_snapshot(previous, None, fetch_succeeded=False)
            else:
                try:
                    detection = fetcher.detect(previous, outcome)
                except Exception as e:
                    logger.warning(
                        "alerts.detect.failed",
                        repo=repo,
                        category=category.value,
                        error=str(e) or type(e).__name__,
                        exc_info=True,
                    )
                    result.failed.append((repo, category))
                    value = merge_snapshot(previous, None, fetch_succeeded=False)
                else:
                    added = append_markers(notifications, repo, category, detection.markers)
                    result.new_markers += added
                    if added:
                        logger.info(
                            "alerts.markers.added",
                            repo=repo,
                            category=category.value,
                            count=added,
                        )
                    value = merge_snapshot(previous, detection.snapshot, fetch_succeeded=True)

            if value is not None:
                next_snapshot.setdefault(repo, {})[fetcher.snapshot_key] = value

        await self.store.set(
            {
                keys["snapshot"]: next_snapshot,
                keys["notifications"]: notifications,
            }
        )

        badge = await publish_badge(self.indicator, login, notifications)
        result.badge_count = badge.count

        logger.info(
            "alerts.poll.complete",
            login=login,
            new_markers=result.new_markers,
            failed=len(result.failed),
            badge_count=badge.count,
        )
        return result

    async def _observe(self, fetcher: CategoryFetcher, repo_full_name: str) -> Any:
        """Observe one category, bounded by the configured fetch timeout."""
        async with self._fetch_slots:
            if fetcher.bounds_own_requests:
                return await fetcher.observe(repo_full_name)
            return await asyncio.wait_for(
                fetcher.observe(repo_full_name),
                timeout=self.settings.fetch_timeout_seconds,
            )
