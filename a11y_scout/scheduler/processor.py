"""
Queue processor: turns durable queue entries into crawls.

One scheduling pass (:meth:`QueueProcessor.tick`) starts at most one crawl:

1. skip when ``max_concurrent_scans`` domains are already being crawled;
2. take the oldest queued entry whose domain is not locked;
3. drop it if it already failed ``max_attempts`` times in a row;
4. lock its domain, record the scan as in progress and crawl it in a
   background task.

The task marks the scan completed or failed, removes or keeps the queue
entry, and always releases the domain lock. A slower reconciliation pass
releases locks whose scan is no longer in progress in the result store,
e.g. after a crash of another worker that shared the database.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional, Set, Tuple

from a11y_scout.analyzer import PageAnalyzer
from a11y_scout.config import ScoutConfig
from a11y_scout.crawler.crawler import AsyncCrawler, ProgressCallback
from a11y_scout.crawler.models import CrawlStats, PageResult, PageStatus, ScanStatus, SeedQueueEntry
from a11y_scout.errors import CrawlStartupError
from a11y_scout.logger import get_logger
from a11y_scout.scheduler.registry import DomainRegistry
from a11y_scout.storage.base import ResultSink, SeedQueue
from a11y_scout.utils import extract_domain, generate_scan_id, normalize_url

__all__ = ["QueueProcessor", "CrawlerFactory", "ScanProgressListener"]

logger = get_logger("processor")

#: builds a fresh, not yet started crawler for every scan
CrawlerFactory = Callable[[], AsyncCrawler]
#: ``listener(scan_id, pages_visited, pages_found, frontier_size)``
ScanProgressListener = Callable[[str, int, int, int], Any]


class QueueProcessor:
    """Polls the seed queue and runs crawls with per-domain mutual exclusion."""

    def __init__(
        self,
        config: ScoutConfig,
        queue: SeedQueue,
        sink: ResultSink,
        crawler_factory: Optional[CrawlerFactory] = None,
        *,
        analyzer: Optional[PageAnalyzer] = None,
        registry: Optional[DomainRegistry] = None,
        on_progress: Optional[ScanProgressListener] = None,
    ) -> None:
        self.config = config
        self.queue = queue
        self.sink = sink
        self.crawler_factory: CrawlerFactory = crawler_factory or (
            lambda: AsyncCrawler(config, sink, analyzer, seed_queue=queue)
        )
        self.registry = registry or DomainRegistry()
        self.on_progress = on_progress
        self._tick_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------ #
    # Scheduling                                                         #
    # ------------------------------------------------------------------ #

    async def tick(self) -> Optional[str]:
        """Run one scheduling pass; returns the id of the scan it started, if any."""
        async with self._tick_lock:
            try:
                started = await self._schedule_next()
            except Exception as exc:
                logger.error("Error in queue processor: %s", exc)
                return None
        return started[0] if started else None

    async def _schedule_next(self) -> Optional[Tuple[str, asyncio.Task]]:
        if self.registry.active_count >= self.config.max_concurrent_scans:
            logger.debug(
                "Maximum concurrent scans (%d) reached, active domains: %s",
                self.config.max_concurrent_scans,
                ", ".join(self.registry.locked()),
            )
            return None

        entries = await self.queue.peek_batch(self.config.batch_size)
        if not entries:
            logger.debug("No items in queue")
            return None

        entry = next((e for e in entries if not self.registry.is_locked(extract_domain(e.url))), None)
        if entry is None:
            logger.debug("All queued URLs are from domains already being scanned")
            return None

        if self.registry.failures(normalize_url(entry.url)) >= self.config.max_attempts:
            await self._quarantine(entry)
            return None

        return await self._start(entry)

    async def scan_now(self, entry: SeedQueueEntry) -> str:
        """Crawl *entry* right away, outside the polling loop, and wait for it.

        Raises :class:`~a11y_scout.errors.DomainLockedError` if its domain is busy.
        """
        async with self._tick_lock:
            scan_id, task = await self._start(entry)
        await task
        return scan_id

    async def _start(self, entry: SeedQueueEntry) -> Tuple[str, asyncio.Task]:
        domain = extract_domain(entry.url)
        scan_id = generate_scan_id()
        self.registry.acquire(domain, scan_id)
        try:
            await self.sink.create_scan(scan_id, entry.url)
        except BaseException:
            self.registry.release(domain, scan_id)
            raise

        logger.info(
            "Processing queued URL %s with max pages %d, max depth %d and scan ID %s",
            entry.url,
            entry.max_pages,
            entry.max_depth,
            scan_id,
        )
        task = asyncio.create_task(self._execute(entry, domain, scan_id), name=f"scan-{scan_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return scan_id, task

    async def _quarantine(self, entry: SeedQueueEntry) -> None:
        attempts = self.registry.failures(normalize_url(entry.url))
        reason = f"Failed after {attempts} attempts. URL may be inaccessible or require authentication."
        logger.warning("URL %s has failed %d times. Removing from queue.", entry.url, attempts)
        await self.queue.remove(entry.url)

        scan_id = generate_scan_id()
        await self.sink.create_scan(scan_id, entry.url)
        await self.sink.append_page_result(
            PageResult(scan_id, normalize_url(entry.url), PageStatus.FAILED, error_message=reason)
        )
        await self.sink.set_scan_status(scan_id, ScanStatus.FAILED, error_message=reason)

    # ------------------------------------------------------------------ #
    # One scan                                                           #
    # ------------------------------------------------------------------ #

    async def _execute(self, entry: SeedQueueEntry, domain: str, scan_id: str) -> ScanStatus:
        try:
            try:
                stats = await self._crawl(entry, scan_id)
            except Exception as exc:
                await self._record_failure(entry, scan_id, exc)
                return ScanStatus.FAILED
            await self._record_success(entry, scan_id, stats)
            return ScanStatus.COMPLETED
        except Exception as exc:
            logger.error("Could not record the outcome of scan %s for %s: %s", scan_id, entry.url, exc)
            return ScanStatus.FAILED
        finally:
            self.registry.release(domain, scan_id)

    async def _crawl(self, entry: SeedQueueEntry, scan_id: str) -> CrawlStats:
        crawler = self.crawler_factory()
        try:
            try:
                await asyncio.wait_for(crawler.start(), timeout=self.config.startup_timeout)
            except asyncio.TimeoutError as exc:
                raise CrawlStartupError(
                    f"Crawler startup timed out after {self.config.startup_timeout:g}s"
                ) from exc
            return await crawler.crawl(
                entry.url,
                entry.max_pages,
                entry.max_depth,
                on_progress=self._progress(scan_id),
                scan_id=scan_id,
            )
        finally:
            await crawler.close()

    def _progress(self, scan_id: str) -> ProgressCallback:
        def report(visited: int, found: int, frontier: int) -> Any:
            logger.info(
                "Scan progress for %s: %d pages scanned, %d pages found, %d pages in queue",
                scan_id,
                visited,
                found,
                frontier,
            )
            if self.on_progress is not None:
                return self.on_progress(scan_id, visited, found, frontier)
            return None

        return report

    async def _record_success(self, entry: SeedQueueEntry, scan_id: str, stats: CrawlStats) -> None:
        await self.sink.set_scan_status(
            scan_id,
            ScanStatus.COMPLETED,
            total_pages_found=stats.pages_found,
            pages_scanned=stats.pages_visited,
        )
        await self.queue.remove(entry.url)
        self.registry.reset(normalize_url(entry.url))
        logger.info("Scan %s completed, removed %s from queue", scan_id, entry.url)

    async def _record_failure(self, entry: SeedQueueEntry, scan_id: str, exc: Exception) -> None:
        attempts = self.registry.record_failure(normalize_url(entry.url))
        message = str(exc) or exc.__class__.__name__
        logger.error(
            "Scan failed for URL %s with scan ID %s (attempt %d/%d): %s",
            entry.url,
            scan_id,
            attempts,
            self.config.max_attempts,
            message,
        )
        await self.sink.append_page_result(
            PageResult(scan_id, normalize_url(entry.url), PageStatus.FAILED, error_message=message)
        )
        await self.sink.set_scan_status(scan_id, ScanStatus.FAILED, error_message=message)
        if attempts >= self.config.max_attempts:
            await self.queue.remove(entry.url)
            logger.warning("Removed URL %s from queue after %d failed attempts", entry.url, attempts)

    # ------------------------------------------------------------------ #
    # Stale lock cleanup and loops                                       #
    # ------------------------------------------------------------------ #

    async def reconcile(self) -> List[str]:
        """Release locks whose scan is no longer in progress. Returns the released domains."""
        if not self.registry.active_count:
            return []
        async with self._tick_lock:
            try:
                live = set(await self.sink.query_in_progress_scan_ids())
            except Exception as exc:
                logger.error("Error in stale lock cleanup: %s", exc)
                return []
            released: List[str] = []
            for domain, scan_id in self.registry.locked().items():
                if scan_id not in live and self.registry.release(domain, scan_id):
                    logger.warning("Scan ID %s for domain %s is no longer active. Cleaning up.", scan_id, domain)
                    released.append(domain)
            return released

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll the queue until *stop_event* is set, then wait for running crawls."""
        stop_event = stop_event or asyncio.Event()
        logger.info(
            "Queue processor started: max %d concurrent scans, polling every %gs",
            self.config.max_concurrent_scans,
            self.config.poll_interval,
        )
        reconciler = asyncio.create_task(self._reconcile_loop(stop_event), name="reconcile-domains")
        try:
            while not stop_event.is_set():
                await self.tick()
                await _wait(stop_event, self.config.poll_interval)
        finally:
            reconciler.cancel()
            await asyncio.gather(reconciler, return_exceptions=True)
            await self.drain()
            logger.info("Queue processor stopped")

    async def _reconcile_loop(self, stop_event: asyncio.Event) -> None:
        while not await _wait(stop_event, self.config.reconcile_interval):
            await self.reconcile()

    async def drain(self) -> None:
        """Wait for every crawl started by this processor."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def _wait(event: asyncio.Event, timeout: float) -> bool:
    """Sleep up to *timeout* seconds; True if *event* got set meanwhile."""
    try:
        await asyncio.wait_for(event.wait(), timeout)
    except asyncio.TimeoutError:
        return False
    return True
