"""Persistent scan cache backed by SQLite.

Stores the scored file list of a completed project scan, keyed by the
project path and the configuration fingerprint. Uses aiosqlite with WAL
mode so concurrent readers are never blocked by a writer.

Validity is decided solely by ``(project_path, config_hash)`` equality.
Files edited after a scan are not noticed until the entry is invalidated,
the configuration changes, or the cache is cleared.

Rows older than ``max_age`` are deleted when the cache opens. This only
bounds the size of the database; a pruned row is simply a miss.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
from pydantic import TypeAdapter, ValidationError

from smartctx.errors import CacheError
from smartctx.schemas.context import CacheEntry, CacheStats, FileScore, ProjectInfo

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PATH = "~/.smartctx/context_cache.db"

IN_MEMORY = ":memory:"

DEFAULT_MAX_AGE = timedelta(hours=24)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS context_cache (
    cache_key     TEXT PRIMARY KEY,
    project_path  TEXT NOT NULL,
    config_hash   TEXT NOT NULL,
    project_json  TEXT,
    scores_json   TEXT NOT NULL DEFAULT '[]',
    created_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_project ON context_cache(project_path);
"""

_SCORES = TypeAdapter(list[FileScore])


def cache_key(project_path: str, config_hash: str) -> str:
    """Stable key for a (project, configuration) pair."""
    raw = f"{project_path}\x00{config_hash}".encode()
    return hashlib.sha256(raw).hexdigest()


def _normalize(project_path: str | Path) -> str:
    return str(Path(project_path).expanduser().resolve())


def _timestamp(moment: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as text
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


class ContextCache:
    """Async store for completed project scans.

    Call :meth:`open` before use (or use ``async with``). Every storage
    failure surfaces as :class:`CacheError`; a missing or unreadable entry
    is a plain miss.
    """

    def __init__(
        self,
        db_path: str | Path = DEFAULT_CACHE_PATH,
        max_age: timedelta | None = DEFAULT_MAX_AGE,
    ) -> None:
        self._db_path = str(db_path)
        self._max_age = max_age
        self._db: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> None:
        """Open the database, create the schema and prune old rows.

        Safe to call from concurrent tasks: only one connection is made.

        Raises:
            CacheError: If the database cannot be created or opened.
        """
        if self._db is not None:
            return
        async with self._open_lock:
            if self._db is None:
                await self._connect()

    async def _connect(self) -> None:
        if self._db_path == IN_MEMORY:
            target = IN_MEMORY
        else:
            resolved = Path(self._db_path).expanduser()
            target = str(resolved)

        try:
            if target != IN_MEMORY:
                Path(target).parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(target)
            await db.execute("PRAGMA journal_mode=WAL")
            await db.executescript(_SCHEMA)
            await db.commit()
            await self._prune(db)
        except (OSError, sqlite3.Error) as e:
            raise CacheError(f"Cannot open context cache at {target}: {e}") from e

        self._db = db
        logger.debug("Context cache opened at %s", target)

    async def _prune(self, db: aiosqlite.Connection) -> None:
        if self._max_age is None:
            return
        cutoff = _timestamp(datetime.now(UTC) - self._max_age)
        cursor = await db.execute(
            "DELETE FROM context_cache WHERE created_at < ?", (cutoff,),
        )
        await db.commit()
        if cursor.rowcount:
            logger.info("Pruned %d cached scans older than %s", cursor.rowcount, self._max_age)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> ContextCache:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise CacheError("Context cache is not open")
        return self._db

    async def get(self, project_path: str | Path, config_hash: str) -> CacheEntry | None:
        """Look up a completed scan.

        Returns:
            The cached entry, or None on a miss. Rows that no longer parse
            count as a miss.

        Raises:
            CacheError: If the database cannot be read.
        """
        path = _normalize(project_path)
        try:
            cursor = await self._conn().execute(
                """
                SELECT project_path, config_hash, project_json, scores_json, created_at
                FROM context_cache WHERE cache_key = ?
                """,
                (cache_key(path, config_hash),),
            )
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"Cache read failed: {e}") from e

        if row is None:
            self._misses += 1
            return None

        try:
            entry = CacheEntry(
                project_path=row[0],
                config_hash=row[1],
                project_info=ProjectInfo.model_validate_json(row[2]) if row[2] else None,
                file_scores=_SCORES.validate_json(row[3]),
                timestamp=datetime.fromisoformat(row[4]),
            )
        except (ValidationError, ValueError) as e:
            logger.warning("Discarding unreadable cache entry for %s: %s", path, e)
            self._misses += 1
            return None

        self._hits += 1
        logger.debug("Cache hit for %s (%d files)", path, len(entry.file_scores))
        return entry

    async def put(
        self,
        project_path: str | Path,
        config_hash: str,
        scores: list[FileScore],
        project_info: ProjectInfo | None = None,
    ) -> CacheEntry:
        """Store a completed scan. The last write for a key wins.

        Raises:
            CacheError: If the database cannot be written.
        """
        entry = CacheEntry(
            project_path=_normalize(project_path),
            config_hash=config_hash,
            project_info=project_info,
            file_scores=scores,
            timestamp=datetime.now(UTC),
        )
        db = self._conn()
        try:
            await db.execute(
                """
                INSERT OR REPLACE INTO context_cache
                    (cache_key, project_path, config_hash, project_json,
                     scores_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    cache_key(entry.project_path, config_hash),
                    entry.project_path,
                    config_hash,
                    project_info.model_dump_json() if project_info else None,
                    _SCORES.dump_json(scores).decode("utf-8"),
                    _timestamp(entry.timestamp),
                ),
            )
            await db.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Cache write failed: {e}") from e

        logger.debug("Cached %d scores for %s", len(scores), entry.project_path)
        return entry

    async def invalidate(self, project_path: str | Path) -> int:
        """Drop every entry for a project, whatever its configuration.

        Returns:
            The number of entries removed.
        """
        db = self._conn()
        try:
            cursor = await db.execute(
                "DELETE FROM context_cache WHERE project_path = ?",
                (_normalize(project_path),),
            )
            await db.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Cache invalidation failed: {e}") from e
        return cursor.rowcount

    async def clear(self) -> int:
        """Drop every entry and reset the hit/miss counters."""
        db = self._conn()
        try:
            cursor = await db.execute("DELETE FROM context_cache")
            await db.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Cache clear failed: {e}") from e
        self._hits = 0
        self._misses = 0
        return cursor.rowcount

    async def stats(self) -> CacheStats:
        """Entry count plus this process's hit and miss counters."""
        try:
            cursor = await self._conn().execute("SELECT COUNT(*) FROM context_cache")
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"Cache stats failed: {e}") from e

        return CacheStats(
            entry_count=row[0] if row else 0,
            hit_count=self._hits,
            miss_count=self._misses,
            db_path=self._db_path,
        )
