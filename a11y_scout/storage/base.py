"""Storage interfaces: the durable seed queue and the result sink."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from a11y_scout.crawler.models import PageResult, ScanRecord, ScanStatus, SeedQueueEntry


class SeedQueue(ABC):
    """Persistent table of seed URLs waiting for a crawl to start."""

    @abstractmethod
    async def enqueue(self, url: str, max_pages: int, max_depth: Optional[int] = None) -> None:
        """Insert *url* or update its limits if it is already queued.

        Args:
            url: Seed URL, the uniqueness key.
            max_pages: Page cap for the crawl.
            max_depth: Link depth for the crawl; ``None`` keeps the store default
                (or the current value of an existing entry).
        """

    @abstractmethod
    async def peek_batch(self, n: int) -> List[SeedQueueEntry]:
        """Return up to *n* entries, oldest first, without claiming them."""

    @abstractmethod
    async def remove(self, url: str) -> bool:
        """Delete *url* from the queue. Returns False if it was not queued."""

    @abstractmethod
    async def rename(self, url: str, new_url: str) -> bool:
        """Move the entry of *url* to *new_url*, keeping its limits and position.

        Returns False if *url* is not queued or *new_url* already is.
        """

    @abstractmethod
    async def get(self, url: str) -> Optional[SeedQueueEntry]:
        pass

    @abstractmethod
    async def list_entries(self) -> List[SeedQueueEntry]:
        pass


class ResultSink(ABC):
    """Durable storage of scan status records and per-page results."""

    @abstractmethod
    async def create_scan(self, scan_id: str, url: str, status: ScanStatus = ScanStatus.IN_PROGRESS) -> None:
        """Write the scan-level record of a new scan."""

    @abstractmethod
    async def append_page_result(self, result: PageResult) -> bool:
        """Store *result*. Returns False if the URL already has a result in that scan."""

    @abstractmethod
    async def set_scan_status(
        self,
        scan_id: str,
        status: ScanStatus,
        *,
        error_message: Optional[str] = None,
        total_pages_found: Optional[int] = None,
        pages_scanned: Optional[int] = None,
    ) -> bool:
        """Move a scan to *status*.

        Terminal scans (completed/failed) are never changed; the return value
        tells whether the update was applied.
        """

    @abstractmethod
    async def query_in_progress_scan_ids(self) -> List[str]:
        pass

    @abstractmethod
    async def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        pass

    @abstractmethod
    async def get_page_results(self, scan_id: str) -> List[PageResult]:
        """All page results of a scan in the order they were written."""

    @abstractmethod
    async def list_scans(self, limit: int = 20) -> List[ScanRecord]:
        """Most recent scans first."""

    @abstractmethod
    async def delete_scan(self, scan_id: str) -> bool:
        """Delete a scan record and its page results. Returns False if it did not exist."""
