# File: tests/conftest.py
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

import pytest
import pytest_asyncio

from a11y_scout.config import ScoutConfig
from a11y_scout.crawler.models import Analysis, CrawlStats, PageData, Violation
from a11y_scout.storage.sqlite import SqliteStore


class FakeFetcher:
    """Serves canned pages; unknown URLs get an empty 200 HTML page."""

    def __init__(self, pages: Optional[Dict[str, PageData]] = None) -> None:
        self.pages = pages or {}
        self.calls: List[str] = []

    async def fetch(self, url: str) -> PageData:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is not None:
            return page
        return PageData(url, "<html></html>", status=200, content_type="text/html")


LinkSource = Union[Dict[str, List[str]], Callable[[str], List[str]], Iterable[str]]


class StubAnalyzer:
    """Returns fixed links and one violation per page; raises for chosen URLs."""

    def __init__(
        self,
        links: LinkSource = (),
        fail_on: Iterable[str] = (),
        delay: float = 0.0,
    ) -> None:
        self._links = links
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: List[str] = []

    def links_for(self, url: str) -> List[str]:
        if callable(self._links):
            return list(self._links(url))
        if isinstance(self._links, dict):
            return list(self._links.get(url, []))
        return list(self._links)

    async def analyze(self, page: PageData) -> Analysis:
        self.calls.append(page.url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if any(page.url.endswith(suffix) for suffix in self.fail_on):
            raise RuntimeError(f"analyzer crashed on {page.url}")
        return Analysis(
            violations=[Violation("image-alt", "critical", "Image without alt", ["img"])],
            links=self.links_for(page.url),
        )


class FakeCrawler:
    """Stands in for AsyncCrawler inside the queue processor."""

    def __init__(
        self,
        *,
        error: Optional[BaseException] = None,
        gate: Optional[asyncio.Event] = None,
        start_delay: float = 0.0,
        stats: CrawlStats = CrawlStats(pages_visited=2, pages_found=3, frontier_size=0),
    ) -> None:
        self.error = error
        self.gate = gate
        self.start_delay = start_delay
        self.stats = stats
        self.started = False
        self.closed = False
        self.crawled: List[tuple] = []

    async def start(self) -> "FakeCrawler":
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        self.started = True
        return self

    async def crawl(self, seed_url, max_pages, max_depth, on_progress=None, scan_id=""):
        self.crawled.append((seed_url, max_pages, max_depth, scan_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if on_progress is not None:
            on_progress(self.stats.pages_visited, self.stats.pages_found, self.stats.frontier_size)
        return self.stats

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "scout.db"


@pytest.fixture()
def config(db_path: Path) -> ScoutConfig:
    """Fast configuration for tests: no politeness delay, short timeouts."""
    return ScoutConfig(
        database=str(db_path),
        max_pages=10,
        max_depth=2,
        page_timeout=2.0,
        politeness_delay=0.0,
        startup_timeout=1.0,
        retry_times=0,
        max_concurrent_scans=2,
        max_attempts=3,
        poll_interval=0.05,
        reconcile_interval=0.05,
    )


@pytest_asyncio.fixture
async def store(db_path: Path):
    async with SqliteStore(db_path) as opened:
        yield opened
