"""Recurring poll trigger owning a single named timer."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from repowatch.alerts.keys import ALERT_FREQUENCY_KEY
from repowatch.core.logging import get_logger
from repowatch.core.store import KeyValueStore
from repowatch.shared.exceptions import ConfigError, PersistenceError

logger = get_logger(__name__)


class PollScheduler:
    """Fires a callback every N minutes after an initial delay.

    The scheduler owns exactly one timer. Registering again while the timer
    exists is a no-op, and changing the cadence replaces the timer rather
    than adding a second one. Each firing runs the callback as its own task,
    so replacing the timer never cancels a cycle that is already running.

    Attributes:
        TIMER_NAME: Name of the single recurring timer
    """

    TIMER_NAME = "repowatch-poll"

    def __init__(
        self,
        store: KeyValueStore,
        callback: Callable[[], Awaitable[Any]],
        default_period_minutes: int = 10,
        initial_delay_minutes: float = 1,
    ) -> None:
        """Initialize scheduler.

        Args:
            store: Store holding the persisted cadence
            callback: Coroutine function invoked on every firing
            default_period_minutes: Cadence used when none is persisted
            initial_delay_minutes: Delay before the first firing of a timer
        """
        self.store = store
        self.callback = callback
        self.default_period_minutes = default_period_minutes
        self.initial_delay_minutes = initial_delay_minutes
        self.period_minutes: int | None = None
        self._timer: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def start(self) -> None:
        """Register the timer, reading the cadence from the store.

        Does nothing when the timer is already registered.
        """
        if self.is_running:
            logger.warning("scheduler.already_running", timer=self.TIMER_NAME)
            return

        period = await self._load_cadence()
        self._schedule(period)
        logger.info(
            "scheduler.started",
            timer=self.TIMER_NAME,
            period_minutes=period,
            initial_delay_minutes=self.initial_delay_minutes,
        )

    async def set_cadence(self, minutes: int) -> None:
        """Persist a new cadence and replace the running timer.

        Raises:
            ConfigError: If ``minutes`` is below 1
            PersistenceError: If the cadence cannot be stored
        """
        if minutes < 1:
            raise ConfigError(f"Cadence must be at least 1 minute, got {minutes}")

        await self.store.set({ALERT_FREQUENCY_KEY: minutes})
        self._schedule(minutes)
        logger.info("scheduler.cadence.changed", timer=self.TIMER_NAME, period_minutes=minutes)

    async def stop(self) -> None:
        """Cancel the timer and any callback still running."""
        tasks = [t for t in (self._timer, *self._inflight) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timer = None
        self._inflight.clear()
        logger.info("scheduler.stopped", timer=self.TIMER_NAME)

    async def _load_cadence(self) -> int:
        try:
            data = await self.store.get([ALERT_FREQUENCY_KEY])
        except PersistenceError as e:
            logger.warning("scheduler.cadence.load_failed", error=str(e))
            return self.default_period_minutes

        value = data.get(ALERT_FREQUENCY_KEY)
        if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
            return value
        if value is not None:
            logger.warning("scheduler.cadence.invalid", value=value)
        return self.default_period_minutes

    def _schedule(self, period_minutes: int) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self.period_minutes = period_minutes
        self._timer = asyncio.create_task(
            self._timer_loop(period_minutes), name=self.TIMER_NAME
        )

    async def _timer_loop(self, period_minutes: int) -> None:
        await asyncio.sleep(self.initial_delay_minutes * 60)
        while True:
            self._fire()
            await asyncio.sleep(period_minutes * 60)

    def _fire(self) -> None:
        task = asyncio.create_task(self._run_callback())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_callback(self) -> None:
        try:
            await self.callback()
        except Exception as e:
            logger.error("scheduler.callback.failed", error=str(e), exc_info=True)
