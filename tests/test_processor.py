# File: tests/test_processor.py
from __future__ import annotations

import asyncio

import pytest

from a11y_scout.crawler.crawler import AsyncCrawler
from a11y_scout.crawler.models import PageStatus, ScanStatus, SeedQueueEntry
from a11y_scout.errors import DomainLockedError, StoreError
from a11y_scout.scheduler.processor import QueueProcessor
from a11y_scout.storage.sqlite import SqliteStore
from conftest import FakeCrawler, FakeFetcher, StubAnalyzer


def crawler_factory(**kwargs):
    """Factory building a new FakeCrawler per scan; built crawlers are kept in ``.made``."""
    made: list[FakeCrawler] = []

    def build() -> FakeCrawler:
        crawler = FakeCrawler(**kwargs)
        made.append(crawler)
        return crawler

    build.made = made  # type: ignore[attr-defined]
    return build


async def wait_for_crawls(factory, count: int) -> None:
    """Wait until *count* crawls built by *factory* have entered ``crawl()``."""

    async def _poll():
        while sum(len(c.crawled) for c in factory.made) < count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=5)


async def run_one(processor: QueueProcessor):
    scan_id = await processor.tick()
    await processor.drain()
    return scan_id


# --------------------------------------------------------------------------- #
#                               Outcome handling                              #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_successful_scan_completes_and_dequeues(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    factory = crawler_factory()
    processor = QueueProcessor(config, store, store, factory)

    scan_id = await run_one(processor)

    assert scan_id is not None
    scan = await store.get_scan(scan_id)
    assert scan.status is ScanStatus.COMPLETED
    assert (scan.total_pages_found, scan.pages_scanned) == (3, 2)
    assert await store.list_entries() == []
    assert processor.registry.active_count == 0
    crawler = factory.made[0]
    assert crawler.started and crawler.closed
    assert crawler.crawled == [("https://a.example/", 10, 1, scan_id)]


@pytest.mark.asyncio()
async def test_progress_is_forwarded_with_scan_id(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    events: list[tuple] = []
    processor = QueueProcessor(config, store, store, crawler_factory(), on_progress=lambda *e: events.append(e))

    scan_id = await run_one(processor)

    assert events == [(scan_id, 2, 3, 0)]


@pytest.mark.asyncio()
async def test_failed_scan_stays_queued(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    processor = QueueProcessor(config, store, store, crawler_factory(error=RuntimeError("navigation failed")))

    scan_id = await run_one(processor)

    scan = await store.get_scan(scan_id)
    assert scan.status is ScanStatus.FAILED
    assert scan.error_message == "navigation failed"
    assert [e.url for e in await store.list_entries()] == ["https://a.example/"]
    assert processor.registry.failures("https://a.example/") == 1
    assert processor.registry.active_count == 0

    results = await store.get_page_results(scan_id)
    assert [(r.url, r.status) for r in results] == [("https://a.example/", PageStatus.FAILED)]


@pytest.mark.asyncio()
async def test_url_dropped_after_max_attempts(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    factory = crawler_factory(error=RuntimeError("unreachable"))
    processor = QueueProcessor(config, store, store, factory)

    scan_ids = []
    for attempt in range(1, 4):
        scan_ids.append(await run_one(processor))
        queued = [e.url for e in await store.list_entries()]
        assert queued == ([] if attempt == 3 else ["https://a.example/"])

    assert await processor.tick() is None
    assert len(factory.made) == 3
    for scan_id in scan_ids:
        results = await store.get_page_results(scan_id)
        assert results[0].status is PageStatus.FAILED
        assert (await store.get_scan(scan_id)).status is ScanStatus.FAILED


@pytest.mark.asyncio()
async def test_entry_with_exhausted_attempts_is_quarantined(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    factory = crawler_factory()
    processor = QueueProcessor(config, store, store, factory)
    for _ in range(3):
        processor.registry.record_failure("https://a.example/")

    assert await processor.tick() is None

    assert await store.list_entries() == []
    assert factory.made == []
    [scan] = await store.list_scans()
    assert scan.status is ScanStatus.FAILED
    assert scan.error_message.startswith("Failed after 3 attempts")
    [result] = await store.get_page_results(scan.scan_id)
    assert result.status is PageStatus.FAILED
    assert result.url == "https://a.example/"


@pytest.mark.asyncio()
async def test_failures_are_counted_per_normalized_url(config, store):
    await store.enqueue("https://A.example/docs/", 10, 1)
    factory = crawler_factory(error=RuntimeError("unreachable"))
    processor = QueueProcessor(config, store, store, factory)

    await run_one(processor)
    assert processor.registry.failures("https://a.example/docs") == 1

    processor.registry.record_failure("https://a.example/docs")
    processor.registry.record_failure("https://a.example/docs")
    assert await processor.tick() is None

    assert await store.list_entries() == []
    assert len(factory.made) == 1
    scans = await store.list_scans()
    assert scans[0].error_message.startswith("Failed after 3 attempts")


@pytest.mark.asyncio()
async def test_success_resets_failure_count(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    processor = QueueProcessor(config, store, store, crawler_factory())
    processor.registry.record_failure("https://a.example/")

    await run_one(processor)

    assert processor.registry.failures("https://a.example/") == 0


@pytest.mark.asyncio()
async def test_startup_timeout_fails_scan(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    quick = config.model_copy(update={"startup_timeout": 0.05})
    factory = crawler_factory(start_delay=1.0)
    processor = QueueProcessor(quick, store, store, factory)

    scan_id = await run_one(processor)

    scan = await store.get_scan(scan_id)
    assert scan.status is ScanStatus.FAILED
    assert "startup timed out" in scan.error_message
    assert factory.made[0].crawled == []
    assert factory.made[0].closed
    assert processor.registry.failures("https://a.example/") == 1
    assert processor.registry.active_count == 0


# --------------------------------------------------------------------------- #
#                          Concurrency and locking                            #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_same_domain_never_crawled_concurrently(config, store):
    gate = asyncio.Event()
    factory = crawler_factory(gate=gate)
    processor = QueueProcessor(config, store, store, factory)
    await store.enqueue("https://a.example/one", 10, 1)
    await store.enqueue("https://a.example/two", 10, 1)

    first = await processor.tick()
    assert first is not None
    await wait_for_crawls(factory, 1)
    assert await processor.tick() is None
    assert len(factory.made) == 1

    await store.enqueue("https://b.example/", 10, 1)
    assert await processor.tick() is not None
    await wait_for_crawls(factory, 2)
    assert [c.crawled[0][0] for c in factory.made] == ["https://a.example/one", "https://b.example/"]

    gate.set()
    await processor.drain()
    assert await run_one(processor) is not None

    assert factory.made[-1].crawled[0][0] == "https://a.example/two"
    assert await store.list_entries() == []


@pytest.mark.asyncio()
async def test_concurrency_cap(config, store):
    gate = asyncio.Event()
    single = config.model_copy(update={"max_concurrent_scans": 1})
    processor = QueueProcessor(single, store, store, crawler_factory(gate=gate))
    await store.enqueue("https://a.example/", 10, 1)
    await store.enqueue("https://b.example/", 10, 1)

    assert await processor.tick() is not None
    assert await processor.tick() is None
    assert processor.in_flight == 1

    gate.set()
    await processor.drain()
    assert await run_one(processor) is not None
    assert await store.list_entries() == []


@pytest.mark.asyncio()
async def test_scan_now_refuses_locked_domain(config, store):
    processor = QueueProcessor(config, store, store, crawler_factory())
    processor.registry.acquire("a.example", "other-scan")

    with pytest.raises(DomainLockedError):
        await processor.scan_now(SeedQueueEntry("https://a.example/", 5, 1))


@pytest.mark.asyncio()
async def test_reconcile_releases_stale_locks(config, store):
    processor = QueueProcessor(config, store, store, crawler_factory())
    await store.create_scan("live", "https://live.example/")
    processor.registry.acquire("live.example", "live")
    processor.registry.acquire("ghost.example", "gone")

    released = await processor.reconcile()

    assert released == ["ghost.example"]
    assert processor.registry.locked() == {"live.example": "live"}


# --------------------------------------------------------------------------- #
#                              Store failures                                 #
# --------------------------------------------------------------------------- #


class UnreadableQueue(SqliteStore):
    async def peek_batch(self, n):
        raise StoreError("database is locked")


class StatusWriteFails(SqliteStore):
    async def set_scan_status(self, scan_id, status, **kwargs):
        raise StoreError("disk I/O error")


@pytest.mark.asyncio()
async def test_store_error_does_not_break_tick(config, db_path):
    async with UnreadableQueue(db_path) as broken:
        processor = QueueProcessor(config, broken, broken, crawler_factory())
        assert await processor.tick() is None
        assert await processor.tick() is None


@pytest.mark.asyncio()
async def test_lock_released_when_outcome_cannot_be_recorded(config, db_path):
    async with StatusWriteFails(db_path) as broken:
        await broken.enqueue("https://a.example/", 10, 1)
        processor = QueueProcessor(config, broken, broken, crawler_factory())

        assert await run_one(processor) is not None
        assert processor.registry.active_count == 0


# --------------------------------------------------------------------------- #
#                             End to end with loop                            #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_scan_now_runs_real_crawler(config, store):
    analyzer = StubAnalyzer({"https://example.com/": ["/a", "/b", "/a", "https://other.com/c"]})
    processor = QueueProcessor(
        config, store, store, lambda: AsyncCrawler(config, store, analyzer, fetcher=FakeFetcher())
    )

    scan_id = await processor.scan_now(SeedQueueEntry("https://example.com", 3, 1))

    scan = await store.get_scan(scan_id)
    assert scan.status is ScanStatus.COMPLETED
    assert scan.total_pages_found == 3
    results = await store.get_page_results(scan_id)
    assert [r.url for r in results] == [
        "https://example.com/",
        "https://example.com/a",
        "https://example.com/b",
    ]
    assert all(r.scan_id == scan_id for r in results)


async def _until_queue_empty(store):
    while await store.list_entries():
        await asyncio.sleep(0.01)


@pytest.mark.asyncio()
async def test_run_processes_queue_until_stopped(config, store):
    await store.enqueue("https://a.example/", 10, 1)
    await store.enqueue("https://b.example/", 10, 1)
    processor = QueueProcessor(config, store, store, crawler_factory())
    stop = asyncio.Event()

    runner = asyncio.create_task(processor.run(stop))
    await asyncio.wait_for(_until_queue_empty(store), timeout=5)
    stop.set()
    await asyncio.wait_for(runner, timeout=5)

    scans = await store.list_scans()
    assert sorted(s.url for s in scans) == ["https://a.example/", "https://b.example/"]
    assert all(s.status is ScanStatus.COMPLETED for s in scans)
    assert processor.in_flight == 0
