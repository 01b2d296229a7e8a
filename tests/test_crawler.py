# File: tests/test_crawler.py
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import web

from a11y_scout.crawler.crawler import AsyncCrawler
from a11y_scout.crawler.models import CrawlStats, PageData, PageStatus
from a11y_scout.errors import StoreError
from a11y_scout.storage.sqlite import SqliteStore
from conftest import FakeFetcher, StubAnalyzer

SEED = "https://example.com/"


def make_crawler(config, store, analyzer, fetcher=None, **kwargs) -> AsyncCrawler:
    return AsyncCrawler(config, store, analyzer, fetcher=fetcher or FakeFetcher(), **kwargs)


async def crawl_site(config, store, analyzer, *, max_pages, max_depth, scan_id="scan-1", **kwargs):
    crawler = make_crawler(config, store, analyzer, **kwargs)
    async with crawler:
        stats = await asyncio.wait_for(
            crawler.crawl(SEED, max_pages, max_depth, scan_id=scan_id), timeout=10
        )
    return stats, await store.get_page_results(scan_id)


def tree_links(url: str) -> list[str]:
    """Every page links to two children: /x -> /x0, /x1."""
    path = url.split("example.com", 1)[1].rstrip("/") or ""
    return [f"{path}/0", f"{path}/1"]


# --------------------------------------------------------------------------- #
#                                 Traversal                                   #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_breadth_first_with_duplicates_and_foreign_links(config, store):
    analyzer = StubAnalyzer({SEED: ["/a", "/b", "/a", "https://other.com/c"]})
    progress: list[tuple[int, int, int]] = []

    crawler = make_crawler(config, store, analyzer)
    async with crawler:
        stats = await crawler.crawl(
            SEED, 3, 1, on_progress=lambda *args: progress.append(args), scan_id="scan-1"
        )
    results = await store.get_page_results("scan-1")

    assert [r.url for r in results] == [
        "https://example.com/",
        "https://example.com/a",
        "https://example.com/b",
    ]
    assert [r.depth for r in results] == [0, 1, 1]
    assert all(r.status is PageStatus.OK for r in results)
    assert "https://other.com/c" not in analyzer.calls
    assert stats == CrawlStats(pages_visited=3, pages_found=3, frontier_size=0)
    assert [p[0] for p in progress] == [1, 2, 3]


@pytest.mark.asyncio()
async def test_page_cap_is_respected(config, store):
    stats, results = await crawl_site(config, store, StubAnalyzer(tree_links), max_pages=5, max_depth=10)

    assert len(results) == 5
    assert len({r.url for r in results}) == 5
    assert stats.pages_visited == 5
    assert stats.pages_found >= stats.pages_visited


@pytest.mark.asyncio()
async def test_depth_limit(config, store):
    _, results = await crawl_site(config, store, StubAnalyzer(tree_links), max_pages=100, max_depth=2)

    assert max(r.depth for r in results) == 2
    # 1 + 2 + 4 pages of a binary tree
    assert len(results) == 7


@pytest.mark.asyncio()
async def test_depth_zero_visits_only_seed(config, store):
    analyzer = StubAnalyzer(tree_links)
    stats, results = await crawl_site(config, store, analyzer, max_pages=10, max_depth=0)

    assert [r.url for r in results] == [SEED]
    assert stats.pages_found == 1


@pytest.mark.asyncio()
async def test_equivalent_links_are_visited_once(config, store):
    analyzer = StubAnalyzer(
        {SEED: ["/a", "/a/", "/a#section", "HTTPS://EXAMPLE.COM/a", "https://example.com/a?x=1"]}
    )
    _, results = await crawl_site(config, store, analyzer, max_pages=10, max_depth=1)

    assert [r.url for r in results] == [SEED, "https://example.com/a", "https://example.com/a?x=1"]


@pytest.mark.asyncio()
async def test_filtered_links_are_not_followed(config, store):
    analyzer = StubAnalyzer(
        {
            SEED: [
                "/logo.png",
                "/files/data.csv",
                "/reports/summary",
                "/report_2024",
                "mailto:info@example.com",
                "https://sub.example.com/",
                "/ok",
            ]
        }
    )
    _, results = await crawl_site(config, store, analyzer, max_pages=10, max_depth=1)

    assert [r.url for r in results] == [SEED, "https://example.com/ok"]


@pytest.mark.asyncio()
async def test_seed_is_attempted_even_if_it_fails_admission(config, store):
    seed = "https://example.com/reports/index"
    crawler = make_crawler(config, store, StubAnalyzer())
    async with crawler:
        stats = await crawler.crawl(seed, 5, 1, scan_id="scan-1")

    results = await store.get_page_results("scan-1")
    assert [r.url for r in results] == [seed]
    assert stats.pages_visited == 1


# --------------------------------------------------------------------------- #
#                               Page failures                                 #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_analyzer_error_is_recorded_and_crawl_continues(config, store):
    analyzer = StubAnalyzer({SEED: ["/broken", "/fine"]}, fail_on=["/broken"])
    _, results = await crawl_site(config, store, analyzer, max_pages=10, max_depth=1)

    by_url = {r.url: r for r in results}
    broken = by_url["https://example.com/broken"]
    assert broken.status is PageStatus.ERROR
    assert "analyzer crashed" in broken.error_message
    assert broken.violations == []
    assert by_url["https://example.com/fine"].status is PageStatus.OK


@pytest.mark.asyncio()
async def test_fetch_error_is_recorded_without_analysis(config, store):
    fetcher = FakeFetcher(
        {"https://example.com/missing": PageData("https://example.com/missing", "", status=404, error="HTTP 404")}
    )
    analyzer = StubAnalyzer({SEED: ["/missing", "/next"]})
    _, results = await crawl_site(config, store, analyzer, max_pages=10, max_depth=1, fetcher=fetcher)

    missing = next(r for r in results if r.url.endswith("/missing"))
    assert missing.status is PageStatus.ERROR
    assert missing.http_status == 404
    assert missing.error_message == "HTTP 404"
    assert "https://example.com/missing" not in analyzer.calls
    assert any(r.url.endswith("/next") for r in results)


@pytest.mark.asyncio()
async def test_slow_analysis_times_out(config, store):
    slow = config.model_copy(update={"page_timeout": 0.05})
    analyzer = StubAnalyzer(delay=0.5)
    _, results = await crawl_site(slow, store, analyzer, max_pages=1, max_depth=0)

    assert results[0].status is PageStatus.ERROR
    assert "timed out" in results[0].error_message


@pytest.mark.asyncio()
async def test_failing_progress_callback_does_not_stop_crawl(config, store):
    def explode(*_):
        raise ValueError("listener bug")

    crawler = make_crawler(config, store, StubAnalyzer({SEED: ["/a"]}))
    async with crawler:
        stats = await crawler.crawl(SEED, 5, 1, on_progress=explode, scan_id="scan-1")

    assert stats.pages_visited == 2


@pytest.mark.asyncio()
async def test_async_progress_callback_is_awaited(config, store):
    seen: list[int] = []

    async def listener(visited, found, frontier):
        await asyncio.sleep(0)
        seen.append(visited)

    crawler = make_crawler(config, store, StubAnalyzer({SEED: ["/a"]}))
    async with crawler:
        await crawler.crawl(SEED, 5, 1, on_progress=listener, scan_id="scan-1")

    assert seen == [1, 2]


class BrokenSink(SqliteStore):
    async def append_page_result(self, result):
        raise StoreError("disk full")


@pytest.mark.asyncio()
async def test_store_failure_aborts_crawl(config, tmp_path):
    async with BrokenSink(tmp_path / "broken.db") as sink:
        crawler = make_crawler(config, sink, StubAnalyzer())
        async with crawler:
            with pytest.raises(StoreError):
                await crawler.crawl(SEED, 5, 1, scan_id="scan-1")


@pytest.mark.asyncio()
async def test_crawl_requires_start(config, store):
    crawler = AsyncCrawler(config, store, StubAnalyzer())
    with pytest.raises(RuntimeError):
        await crawler.crawl(SEED, 1, 0)


# --------------------------------------------------------------------------- #
#                              Optional features                              #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_documents_are_analyzed_when_enabled(config, store):
    pdf_url = "https://example.com/files/guide.pdf"
    fetcher = FakeFetcher(
        {pdf_url: PageData(pdf_url, b"%PDF-1.4", status=200, content_type="application/pdf")}
    )
    analyzer = StubAnalyzer({SEED: ["/files/guide.pdf"], pdf_url: ["/never-followed"]})
    with_docs = config.model_copy(update={"include_documents": True})

    _, results = await crawl_site(with_docs, store, analyzer, max_pages=10, max_depth=3, fetcher=fetcher)

    assert [r.url for r in results] == [SEED, pdf_url]
    assert pdf_url in analyzer.calls


@pytest.mark.asyncio()
async def test_documents_are_skipped_by_default(config, store):
    analyzer = StubAnalyzer({SEED: ["/files/guide.pdf"]})
    _, results = await crawl_site(config, store, analyzer, max_pages=10, max_depth=3)

    assert [r.url for r in results] == [SEED]


@pytest.mark.asyncio()
async def test_discovered_links_pushed_to_queue_when_enabled(config, store):
    expanding = config.model_copy(update={"expand_to_queue": True})
    analyzer = StubAnalyzer({SEED: ["/a", "https://other.com/x"]})

    await crawl_site(expanding, store, analyzer, max_pages=10, max_depth=1, seed_queue=store)

    assert [e.url for e in await store.list_entries()] == ["https://example.com/a"]


@pytest.mark.asyncio()
async def test_discovered_links_not_queued_by_default(config, store):
    await crawl_site(config, store, StubAnalyzer({SEED: ["/a"]}), max_pages=10, max_depth=1, seed_queue=store)

    assert await store.list_entries() == []


# --------------------------------------------------------------------------- #
#                         Real HTTP through aiohttp                           #
# --------------------------------------------------------------------------- #


async def _serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        await runner.cleanup()


@pytest_asyncio.fixture
async def site_server(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()

    async def handle_root(_):
        return web.Response(
            text='<html><head><title>Home</title></head><body><img src="x.png"><a href="/page1">Page1</a></body></html>',
            content_type="text/html",
        )

    app.router.add_get("/", handle_root)

    async for url in _serve_app(app, unused_tcp_port):
        yield url


@pytest.mark.asyncio()
async def test_real_session_crawl_of_loopback_seed(config, store, site_server: str):
    # loopback links never pass admission, so only the seed is crawled
    async with AsyncCrawler(config, store) as crawler:
        assert crawler.session is not None
        stats = await crawler.crawl(site_server, 5, 2, scan_id="scan-1")
    assert crawler.session is None

    results = await store.get_page_results("scan-1")
    assert stats.pages_visited == 1
    assert results[0].status is PageStatus.OK
    assert results[0].http_status == 200
    assert results[0].links == [f"{site_server}/page1"]
    assert {v.id for v in results[0].violations} == {"html-has-lang", "image-alt"}
