"""Badge summarizer and indicator publishing."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from repowatch.core.logging import get_logger

logger = get_logger(__name__)

BADGE_COLOR = "#d93f3f"


def summarize(notifications: Mapping[str, Any]) -> int:
    """Total number of markers across every repository and category.

    Values that are not marker lists are skipped instead of failing the count.

    Example:
        >>> summarize({"o/r": {"issues": [3], "newPRs": [9, 10]}})
        3
    """
    total = 0
    for repo_notifications in notifications.values():
        if not isinstance(repo_notifications, Mapping):
            continue
        for markers in repo_notifications.values():
            if isinstance(markers, list):
                total += len(markers)
    return total


@dataclass(frozen=True)
class BadgeState:
    """What the external indicator shows.

    Attributes:
        count: Aggregate marker count
        text: ``+<count>``, or empty when there is nothing new
        color: Background color hint, only set when ``count > 0``
    """

    count: int
    text: str
    color: str | None


def format_badge(count: int) -> BadgeState:
    if count > 0:
        return BadgeState(count=count, text=f"+{count}", color=BADGE_COLOR)
    return BadgeState(count=0, text="", color=None)


class BadgeIndicator(ABC):
    """External indicator that displays the badge for a login."""

    @abstractmethod
    async def publish(self, login: str, badge: BadgeState) -> None:
        pass


class LoggingBadgeIndicator(BadgeIndicator):
    """Indicator that reports badge changes through the structured log.

    Keeps the last published badge per login so repeated values are logged at
    debug level only.
    """

    def __init__(self) -> None:
        self.current: dict[str, BadgeState] = {}

    async def publish(self, login: str, badge: BadgeState) -> None:
        previous = self.current.get(login)
        self.current[login] = badge
        if previous == badge:
            logger.debug("badge.unchanged", login=login, count=badge.count)
            return
        logger.info("badge.updated", login=login, count=badge.count, text=badge.text)


async def publish_badge(
    indicator: BadgeIndicator, login: str, notifications: Mapping[str, Any]
) -> BadgeState:
    """Recompute the badge from ``notifications`` and push it to ``indicator``.

    Indicator failures are logged; the badge is derived state and is
    recomputed on the next publish anyway.
    """
    badge = format_badge(summarize(notifications))
    try:
        await indicator.publish(login, badge)
    except Exception as e:
        logger.error("badge.publish.failed", login=login, error=str(e), exc_info=True)
    return badge
