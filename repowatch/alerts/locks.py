"""Per-login mutual exclusion for alert state."""

import asyncio


class UserLocks:
    """One asyncio lock per login.

    Poll cycles and acknowledgements for the same login take the same lock,
    so neither can overwrite the other's write with a stale copy.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_user(self, login: str) -> asyncio.Lock:
        lock = self._locks.get(login)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[login] = lock
        return lock

    def is_locked(self, login: str) -> bool:
        lock = self._locks.get(login)
        return lock is not None and lock.locked()
