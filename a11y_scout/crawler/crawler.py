"""
Breadth-first crawl of one site with per-page accessibility analysis.

Pages of one crawl are processed strictly one after another in FIFO order;
concurrency happens across crawls (see :mod:`a11y_scout.scheduler`).
"""
from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Set
from urllib.parse import urljoin

from aiohttp import ClientSession

from a11y_scout.analyzer import BasicAnalyzer, PageAnalyzer
from a11y_scout.config import ScoutConfig
from a11y_scout.crawler.fetcher import Fetcher
from a11y_scout.crawler.models import (
    Analysis,
    CrawlStats,
    FrontierItem,
    PageResult,
    PageStatus,
)
from a11y_scout.crawler.url_filter import is_document_link, is_valid_for_crawl
from a11y_scout.errors import StoreError
from a11y_scout.logger import get_logger
from a11y_scout.storage.base import ResultSink, SeedQueue
from a11y_scout.utils import normalize_url, remove_duplicates

__all__ = ("AsyncCrawler", "ProgressCallback")

#: ``on_progress(pages_visited, pages_found, frontier_size)``; may be a coroutine function
ProgressCallback = Callable[[int, int, int], Any]


class AsyncCrawler:
    """Bounded breadth-first crawler writing one :class:`PageResult` per visited URL."""

    def __init__(
        self,
        config: ScoutConfig,
        sink: ResultSink,
        analyzer: Optional[PageAnalyzer] = None,
        *,
        fetcher: Optional[Fetcher] = None,
        seed_queue: Optional[SeedQueue] = None,
    ) -> None:
        self.config = config
        self.sink = sink
        self.analyzer: PageAnalyzer = analyzer or BasicAnalyzer()
        self.fetcher = fetcher
        self.seed_queue = seed_queue
        self.policy = config.url_policy()
        self.session: Optional[ClientSession] = None
        self.logger = get_logger("crawler")

    async def start(self) -> AsyncCrawler:
        """Acquire network resources. Bounded by the scheduler's startup timeout."""
        if self.fetcher is None:
            self.session = ClientSession(
                headers={"User-Agent": self.config.user_agent},
                raise_for_status=False,
            )
            self.fetcher = Fetcher(self.session, self.config)
        return self

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def __aenter__(self) -> AsyncCrawler:
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Traversal                                                          #
    # ------------------------------------------------------------------ #

    async def crawl(
        self,
        seed_url: str,
        max_pages: int,
        max_depth: int,
        on_progress: Optional[ProgressCallback] = None,
        scan_id: str = "",
    ) -> CrawlStats:
        """Visit at most *max_pages* pages no further than *max_depth* hops from *seed_url*.

        The seed is always attempted, even when it would not pass the
        admission filter. Failures of single pages are recorded and do not
        stop the crawl; failures to persist a result do.
        """
        fetcher = self.fetcher
        if fetcher is None:
            raise RuntimeError("Crawler not started")

        seed = normalize_url(seed_url)
        frontier: Deque[FrontierItem] = deque([FrontierItem(seed, 0)])
        visited: Set[str] = set()
        # every URL ever put in the frontier; membership means visited or pending
        found: Set[str] = {seed}

        self.logger.info("Starting crawl of %s with max %d pages, max depth %d", seed, max_pages, max_depth)
        start = time.monotonic()

        while frontier and len(visited) < max_pages:
            item = frontier.popleft()
            if item.url in visited or item.depth > max_depth:
                continue
            visited.add(item.url)
            self.logger.info(
                "Scanning page %d/%d (%d in queue): %s", len(visited), max_pages, len(frontier), item.url
            )

            result = await self._visit(fetcher, item, scan_id)

            if result.status is PageStatus.OK and item.kind == "page" and item.depth < max_depth:
                new_links = await self._expand(result.links, item, seed, frontier, found, max_pages, max_depth)
                if new_links:
                    self.logger.info("Found %d new links on %s", new_links, item.url)

            await self.sink.append_page_result(result)
            await self._report(on_progress, len(visited), len(found), len(frontier))

            if frontier and len(visited) < max_pages and self.config.politeness_delay > 0:
                await asyncio.sleep(self.config.politeness_delay)

        duration = time.monotonic() - start
        self.logger.info(
            "Crawl complete for %s: found %d URLs, scanned %d pages in %.2f s",
            seed,
            len(found),
            len(visited),
            duration,
        )
        return CrawlStats(pages_visited=len(visited), pages_found=len(found), frontier_size=len(frontier))

    async def _visit(self, fetcher: Fetcher, item: FrontierItem, scan_id: str) -> PageResult:
        """Fetch and analyze one page; never raises for page-level problems."""
        try:
            page = await fetcher.fetch(item.url)
            if not page.ok:
                self.logger.warning("Navigation error for %s: %s", item.url, page.error)
                return PageResult(
                    scan_id=scan_id,
                    url=item.url,
                    depth=item.depth,
                    status=PageStatus.ERROR,
                    http_status=page.status,
                    error_message=page.error,
                )
            analysis = await asyncio.wait_for(self.analyzer.analyze(page), timeout=self.config.page_timeout)
        except asyncio.TimeoutError:
            message = f"Analysis timed out after {self.config.page_timeout}s"
            self.logger.warning("%s: %s", message, item.url)
            return PageResult(scan_id, item.url, PageStatus.ERROR, depth=item.depth, error_message=message)
        except Exception as exc:
            self.logger.warning("Error scanning %s: %s", item.url, exc)
            return PageResult(
                scan_id,
                item.url,
                PageStatus.ERROR,
                depth=item.depth,
                error_message=str(exc) or exc.__class__.__name__,
            )

        return PageResult(
            scan_id=scan_id,
            url=item.url,
            depth=item.depth,
            status=PageStatus.OK,
            http_status=page.status,
            violations=list(analysis.violations),
            links=self._resolve_links(item.url, analysis),
        )

    def _resolve_links(self, page_url: str, analysis: Analysis) -> List[str]:
        links: List[str] = []
        for raw in analysis.links:
            try:
                links.append(normalize_url(urljoin(page_url, raw)))
            except ValueError:
                continue
        return remove_duplicates(links)

    async def _expand(
        self,
        links: List[str],
        item: FrontierItem,
        seed: str,
        frontier: Deque[FrontierItem],
        found: Set[str],
        max_pages: int,
        max_depth: int,
    ) -> int:
        added = 0
        for link in links:
            if link in found:
                continue
            if is_valid_for_crawl(link, seed, self.policy):
                kind = "page"
            elif self.config.include_documents and is_document_link(link, seed):
                kind = "document"
            else:
                continue
            found.add(link)
            frontier.append(FrontierItem(link, item.depth + 1, kind))
            added += 1
            if kind == "page":
                await self._requeue(link, max_pages, max_depth)
        return added

    async def _requeue(self, link: str, max_pages: int, max_depth: int) -> None:
        if not (self.config.expand_to_queue and self.seed_queue is not None):
            return
        try:
            await self.seed_queue.enqueue(link, max_pages, max_depth)
        except StoreError as exc:
            self.logger.warning("Could not push %s to the scan queue: %s", link, exc)

    async def _report(self, on_progress: Optional[ProgressCallback], visited: int, found: int, frontier: int) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(visited, found, frontier)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            self.logger.warning("Progress callback failed: %s", exc)
