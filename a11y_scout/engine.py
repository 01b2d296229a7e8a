# File: a11y_scout/engine.py
"""a11y_scout.engine: facade used by the CLI to wire config, store, analyzer and scheduler."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from a11y_scout.aggregator import ScanSummary, summarize
from a11y_scout.analyzer import BasicAnalyzer, PageAnalyzer
from a11y_scout.config import ScoutConfig
from a11y_scout.crawler.models import ScanRecord, SeedQueueEntry
from a11y_scout.errors import ScoutError
from a11y_scout.logger import logger
from a11y_scout.scheduler.processor import QueueProcessor, ScanProgressListener
from a11y_scout.storage.sqlite import SqliteStore
from a11y_scout.submission import CleanupReport, cleanup_queue, submit

__all__ = ["Engine"]


class Engine:
    """Entry point for the CLI and tests: one configured store plus a queue processor."""

    def __init__(self, config: ScoutConfig, analyzer: Optional[PageAnalyzer] = None) -> None:
        self.config = config
        self.analyzer: PageAnalyzer = analyzer or BasicAnalyzer()

    @asynccontextmanager
    async def open_store(self) -> AsyncIterator[SqliteStore]:
        async with SqliteStore(self.config.database, default_max_depth=self.config.max_depth) as store:
            yield store

    def processor(self, store: SqliteStore, on_progress: Optional[ScanProgressListener] = None) -> QueueProcessor:
        return QueueProcessor(self.config, store, store, analyzer=self.analyzer, on_progress=on_progress)

    async def enqueue(self, url: str, max_pages: Optional[int] = None, max_depth: Optional[int] = None) -> str:
        async with self.open_store() as store:
            return await submit(
                store,
                url,
                max_pages or self.config.max_pages,
                max_depth,
                policy=self.config.url_policy(),
            )

    async def scan(
        self,
        url: str,
        max_pages: Optional[int] = None,
        max_depth: Optional[int] = None,
        on_progress: Optional[ScanProgressListener] = None,
    ) -> ScanSummary:
        """Crawl *url* immediately and return the summary of the finished scan."""
        entry = SeedQueueEntry(
            url=url,
            max_pages=max_pages or self.config.max_pages,
            max_depth=self.config.max_depth if max_depth is None else max_depth,
        )
        logger.info("Starting scan of %s", url)
        async with self.open_store() as store:
            scan_id = await self.processor(store, on_progress).scan_now(entry)
            return await self.summary(store, scan_id)

    async def report(self, scan_id: str) -> ScanSummary:
        async with self.open_store() as store:
            return await self.summary(store, scan_id)

    async def cleanup_queue(self) -> CleanupReport:
        async with self.open_store() as store:
            return await cleanup_queue(store, self.config.url_policy())

    async def list_scans(self, limit: int = 20) -> List[ScanRecord]:
        async with self.open_store() as store:
            return await store.list_scans(limit)

    async def delete_scan(self, scan_id: str) -> None:
        """Remove a finished scan and its page results."""
        async with self.open_store() as store:
            scan = await store.get_scan(scan_id)
            if scan is None:
                raise ScoutError(f"unknown scan id {scan_id}")
            if not scan.status.is_terminal:
                raise ScoutError(f"scan {scan_id} is still {scan.status.value}")
            await store.delete_scan(scan_id)

    @staticmethod
    async def summary(store: SqliteStore, scan_id: str) -> ScanSummary:
        scan = await store.get_scan(scan_id)
        if scan is None:
            raise ScoutError(f"unknown scan id {scan_id}")
        return summarize(scan, await store.get_page_results(scan_id))

    async def serve(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the queue processor until *stop_event* is set."""
        async with self.open_store() as store:
            await self.processor(store).run(stop_event)
