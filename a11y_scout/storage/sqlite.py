# a11y_scout/storage/sqlite.py
"""SQLite implementation of the seed queue and the result sink (``aiosqlite``).

Every mutation is a single statement (upsert, insert-or-ignore, guarded
update, delete), so several scheduler processes may share one database
file without read-then-write races.
"""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

import aiosqlite

from a11y_scout.crawler.models import (
    PageResult,
    PageStatus,
    ScanRecord,
    ScanStatus,
    SeedQueueEntry,
    Violation,
    utcnow,
)
from a11y_scout.errors import StoreError
from a11y_scout.logger import get_logger
from a11y_scout.storage.base import ResultSink, SeedQueue

logger = get_logger("storage")

SCHEMA = """
CREATE TABLE IF NOT EXISTS queue (
    url TEXT PRIMARY KEY,
    max_pages INTEGER NOT NULL,
    max_depth INTEGER NOT NULL,
    enqueued_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scans (
    scan_id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    status TEXT NOT NULL,
    total_pages_found INTEGER,
    pages_scanned INTEGER,
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_scans_status ON scans (status);

CREATE TABLE IF NOT EXISTS scan_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id TEXT NOT NULL,
    url TEXT NOT NULL,
    depth INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    http_status INTEGER,
    violations TEXT NOT NULL DEFAULT '[]',
    links TEXT NOT NULL DEFAULT '[]',
    error_message TEXT,
    scanned_at TEXT NOT NULL,
    UNIQUE (scan_id, url)
);
"""


def _ts(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else utcnow()


class SqliteStore(SeedQueue, ResultSink):
    """Queue and results in one SQLite database.

    Use as an async context manager or call :meth:`open` / :meth:`close`::

        async with SqliteStore("data/a11y_scout.db") as store:
            await store.enqueue("https://example.com", max_pages=50)
    """

    def __init__(self, path: Union[str, Path], default_max_depth: int = 5) -> None:
        self.path = str(path)
        self.default_max_depth = default_max_depth
        self._conn: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------ #
    # Connection                                                         #
    # ------------------------------------------------------------------ #

    async def open(self) -> SqliteStore:
        if self._conn is not None:
            return self
        if self.path != ":memory:":
            Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        try:
            # autocommit: each statement is its own transaction
            self._conn = await aiosqlite.connect(self.path, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            if self.path != ":memory:":
                await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.executescript(SCHEMA)
        except aiosqlite.Error as exc:
            await self.close()
            raise StoreError(f"cannot open database {self.path}: {exc}") from exc
        logger.debug("Connected to SQLite database: %s", self.path)
        return self

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()

    async def __aenter__(self) -> SqliteStore:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("store is not open")
        return self._conn

    async def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        try:
            cursor = await self._connection().execute(sql, tuple(params))
            rowcount = cursor.rowcount
            await cursor.close()
            return rowcount
        except aiosqlite.Error as exc:
            raise StoreError(str(exc)) from exc

    async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        try:
            async with self._connection().execute(sql, tuple(params)) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StoreError(str(exc)) from exc

    async def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------ #
    # SeedQueue                                                          #
    # ------------------------------------------------------------------ #

    async def enqueue(self, url: str, max_pages: int, max_depth: Optional[int] = None) -> None:
        await self._execute(
            """
            INSERT INTO queue (url, max_pages, max_depth, enqueued_at) VALUES (?, ?, ?, ?)
            ON CONFLICT (url) DO UPDATE SET
                max_pages = excluded.max_pages,
                max_depth = COALESCE(?, queue.max_depth)
            """,
            (
                url,
                max_pages,
                self.default_max_depth if max_depth is None else max_depth,
                utcnow().isoformat(),
                max_depth,
            ),
        )

    async def peek_batch(self, n: int) -> List[SeedQueueEntry]:
        rows = await self._fetchall(
            "SELECT url, max_pages, max_depth, enqueued_at FROM queue ORDER BY enqueued_at, rowid LIMIT ?",
            (n,),
        )
        return [self._entry(row) for row in rows]

    async def remove(self, url: str) -> bool:
        return await self._execute("DELETE FROM queue WHERE url = ?", (url,)) > 0

    async def rename(self, url: str, new_url: str) -> bool:
        # OR IGNORE: an existing *new_url* leaves both rows untouched
        return await self._execute("UPDATE OR IGNORE queue SET url = ? WHERE url = ?", (new_url, url)) > 0

    async def get(self, url: str) -> Optional[SeedQueueEntry]:
        row = await self._fetchone(
            "SELECT url, max_pages, max_depth, enqueued_at FROM queue WHERE url = ?", (url,)
        )
        return self._entry(row) if row else None

    async def list_entries(self) -> List[SeedQueueEntry]:
        rows = await self._fetchall(
            "SELECT url, max_pages, max_depth, enqueued_at FROM queue ORDER BY enqueued_at, rowid"
        )
        return [self._entry(row) for row in rows]

    @staticmethod
    def _entry(row: sqlite3.Row) -> SeedQueueEntry:
        return SeedQueueEntry(
            url=row["url"],
            max_pages=row["max_pages"],
            max_depth=row["max_depth"],
            enqueued_at=_ts(row["enqueued_at"]),
        )

    # ------------------------------------------------------------------ #
    # ResultSink                                                         #
    # ------------------------------------------------------------------ #

    async def create_scan(self, scan_id: str, url: str, status: ScanStatus = ScanStatus.IN_PROGRESS) -> None:
        now = utcnow().isoformat()
        await self._execute(
            "INSERT INTO scans (scan_id, url, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (scan_id, url, status.value, now, now),
        )

    async def append_page_result(self, result: PageResult) -> bool:
        inserted = await self._execute(
            """
            INSERT OR IGNORE INTO scan_results
                (scan_id, url, depth, status, http_status, violations, links, error_message, scanned_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                result.scan_id,
                result.url,
                result.depth,
                result.status.value,
                result.http_status,
                json.dumps([v.to_dict() for v in result.violations], ensure_ascii=False),
                json.dumps(result.links, ensure_ascii=False),
                result.error_message,
                result.scanned_at.isoformat(),
            ),
        )
        if not inserted:
            logger.debug("Result for %s already recorded in scan %s", result.url, result.scan_id)
        return inserted > 0

    async def set_scan_status(
        self,
        scan_id: str,
        status: ScanStatus,
        *,
        error_message: Optional[str] = None,
        total_pages_found: Optional[int] = None,
        pages_scanned: Optional[int] = None,
    ) -> bool:
        sources = [s.value for s in ScanStatus if s.can_become(status)]
        if not sources:
            return False
        placeholders = ", ".join("?" for _ in sources)
        updated = await self._execute(
            f"""
            UPDATE scans SET
                status = ?,
                error_message = COALESCE(?, error_message),
                total_pages_found = COALESCE(?, total_pages_found),
                pages_scanned = COALESCE(?, pages_scanned),
                updated_at = ?
            WHERE scan_id = ? AND status IN ({placeholders})
            """,
            (
                status.value,
                error_message,
                total_pages_found,
                pages_scanned,
                utcnow().isoformat(),
                scan_id,
                *sources,
            ),
        )
        return updated > 0

    async def query_in_progress_scan_ids(self) -> List[str]:
        rows = await self._fetchall("SELECT scan_id FROM scans WHERE status = ?", (ScanStatus.IN_PROGRESS.value,))
        return [row["scan_id"] for row in rows]

    async def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        row = await self._fetchone("SELECT * FROM scans WHERE scan_id = ?", (scan_id,))
        return self._scan(row) if row else None

    async def list_scans(self, limit: int = 20) -> List[ScanRecord]:
        rows = await self._fetchall("SELECT * FROM scans ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,))
        return [self._scan(row) for row in rows]

    async def delete_scan(self, scan_id: str) -> bool:
        # child rows first
        await self._execute("DELETE FROM scan_results WHERE scan_id = ?", (scan_id,))
        deleted = await self._execute("DELETE FROM scans WHERE scan_id = ?", (scan_id,))
        if deleted:
            logger.info("Deleted scan %s", scan_id)
        return deleted > 0

    async def get_page_results(self, scan_id: str) -> List[PageResult]:
        rows = await self._fetchall("SELECT * FROM scan_results WHERE scan_id = ? ORDER BY id", (scan_id,))
        return [
            PageResult(
                scan_id=row["scan_id"],
                url=row["url"],
                depth=row["depth"],
                status=PageStatus(row["status"]),
                http_status=row["http_status"],
                violations=[Violation.from_dict(v) for v in json.loads(row["violations"] or "[]")],
                links=list(json.loads(row["links"] or "[]")),
                error_message=row["error_message"],
                scanned_at=_ts(row["scanned_at"]),
            )
            for row in rows
        ]

    @staticmethod
    def _scan(row: sqlite3.Row) -> ScanRecord:
        return ScanRecord(
            scan_id=row["scan_id"],
            url=row["url"],
            status=ScanStatus(row["status"]),
            total_pages_found=row["total_pages_found"],
            pages_scanned=row["pages_scanned"],
            error_message=row["error_message"],
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )
