"""Key-value persistence engines.

Both engines make a single ``set`` call atomic: every key in the call is
written or none is. There is no transaction spanning several calls, so callers
that must keep values consistent with each other write them together.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from types import TracebackType
from typing import Any, ClassVar

import asyncpg

from repowatch.core.config import Settings, get_settings
from repowatch.core.logging import get_logger
from repowatch.shared.exceptions import PersistenceError

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Async key-value store holding JSON-serialisable values."""

    @abstractmethod
    async def get(self, keys: list[str]) -> dict[str, Any]:
        """Read several keys at once.

        Args:
            keys: Keys to read

        Returns:
            Mapping of the keys that exist to their values; missing keys are absent

        Raises:
            PersistenceError: If the underlying engine fails
        """
        pass

    @abstractmethod
    async def set(self, values: dict[str, Any]) -> None:
        """Write several keys in one atomic operation.

        Args:
            values: Mapping of key to JSON-serialisable value

        Raises:
            PersistenceError: If the underlying engine fails
        """
        pass

    async def close(self) -> None:
        """Release engine resources."""
        return None


class JsonFileStore(KeyValueStore):
    """Thread-safe key-value store kept in a single JSON document."""

    def __init__(self, file_path: str | Path) -> None:
        """Initialize JsonFileStore with file path.

        Args:
            file_path: Path to JSON state file
        """
        self.file_path = Path(file_path)
        self.lock = Lock()
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        """Create state file with empty dict if it doesn't exist."""
        if not self.file_path.exists():
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self.file_path.write_text("{}")
            logger.info("store.file.created", path=str(self.file_path))

    def _read_state(self) -> dict[str, Any]:
        """Read the whole document. Caller must hold ``self.lock``.

        Raises:
            PersistenceError: If the file is unreadable or not a JSON object
        """
        try:
            result = json.loads(self.file_path.read_text())
        except json.JSONDecodeError as e:
            logger.error("store.file.corrupted", path=str(self.file_path), error=str(e))
            raise PersistenceError(f"State file is corrupted: {e}") from e
        except OSError as e:
            logger.error(
                "store.file.read_failed",
                path=str(self.file_path),
                error=str(e),
                exc_info=True,
            )
            raise PersistenceError(f"Failed to read state file: {e}") from e

        if not isinstance(result, dict):
            raise PersistenceError("State file does not hold a JSON object")
        return result

    def _write_state(self, state: dict[str, Any]) -> None:
        """Write the whole document atomically. Caller must hold ``self.lock``.

        Note:
            Uses atomic write (temp file + rename) to prevent corruption.
        """
        try:
            temp_path = self.file_path.with_suffix(".tmp")
            temp_path.write_text(json.dumps(state, indent=2))
            temp_path.replace(self.file_path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(
                "store.file.write_failed",
                path=str(self.file_path),
                error=str(e),
                exc_info=True,
            )
            raise PersistenceError(f"Failed to write state file: {e}") from e

    def _get_sync(self, keys: list[str]) -> dict[str, Any]:
        with self.lock:
            state = self._read_state()
        return {key: state[key] for key in keys if key in state}

    def _set_sync(self, values: dict[str, Any]) -> None:
        with self.lock:
            state = self._read_state()
            state.update(values)
            self._write_state(state)

    async def get(self, keys: list[str]) -> dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, keys)

    async def set(self, values: dict[str, Any]) -> None:
        await asyncio.to_thread(self._set_sync, values)
        logger.debug("store.file.updated", keys=sorted(values))


class PostgresStore(KeyValueStore):
    """Async PostgreSQL key-value store with connection pooling."""

    MAX_RETRIES: ClassVar[int] = 3
    RETRY_DELAYS: ClassVar[list[int]] = [2, 4, 8]

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value JSONB NOT NULL,
            updated_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings
        self.pool: asyncpg.Pool | None = None

    async def __aenter__(self) -> "PostgresStore":
        """Create connection pool with retry logic and ensure the table exists."""
        settings = self.settings or get_settings()

        for attempt in range(self.MAX_RETRIES):
            try:
                self.pool = await asyncpg.create_pool(
                    host=settings.db_host,
                    port=settings.db_port,
                    database=settings.db_name,
                    user=settings.db_user,
                    password=settings.db_password,
                    min_size=1,
                    max_size=3,
                    timeout=60.0,
                )
                logger.info("store.pool.created", min_size=1, max_size=3)
                break
            except (asyncpg.PostgresError, OSError) as e:
                if attempt < self.MAX_RETRIES - 1:
                    logger.warning("store.pool.retry", attempt=attempt + 1, error=str(e))
                    await asyncio.sleep(self.RETRY_DELAYS[attempt])
                else:
                    logger.error("store.pool.failed", error=str(e), exc_info=True)
                    raise PersistenceError(f"Failed to create pool: {e}") from e

        if self.pool is None:
            raise PersistenceError("Unreachable")

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(self.SCHEMA)
        except asyncpg.PostgresError as e:
            logger.error("store.schema.failed", error=str(e), exc_info=True)
            raise PersistenceError(f"Failed to create kv_store table: {e}") from e
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close connection pool."""
        await self.close()

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("store.pool.closed")

    async def get(self, keys: list[str]) -> dict[str, Any]:
        if not self.pool:
            raise PersistenceError("Connection pool not initialized")

        query = """
            SELECT key, value FROM kv_store
            WHERE key = ANY($1::text[])
        """

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, keys)
        except asyncpg.PostgresError as e:
            logger.error("store.get.failed", keys=keys, error=str(e), exc_info=True)
            raise PersistenceError(f"Failed to read keys: {e}") from e

        return {row["key"]: json.loads(row["value"]) for row in rows}

    async def set(self, values: dict[str, Any]) -> None:
        if not self.pool:
            raise PersistenceError("Connection pool not initialized")
        if not values:
            return

        query = """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES ($1, $2::jsonb, NOW())
            ON CONFLICT (key)
            DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
        """

        try:
            records = [(key, json.dumps(value)) for key, value in values.items()]
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value is not JSON serialisable: {e}") from e

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(query, records)
        except asyncpg.PostgresError as e:
            logger.error("store.set.failed", keys=sorted(values), error=str(e), exc_info=True)
            raise PersistenceError(f"Failed to write keys: {e}") from e

        logger.debug("store.db.updated", keys=sorted(values))


async def open_store(settings: Settings) -> KeyValueStore:
    """Open the persistence engine selected by ``settings.state_backend``.

    Args:
        settings: Application settings

    Returns:
        A ready-to-use store; the caller closes it with ``close()``
    """
    if settings.state_backend == "postgres":
        return await PostgresStore(settings).__aenter__()
    return JsonFileStore(settings.state_file_path)
