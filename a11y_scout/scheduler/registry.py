"""Cross-crawl coordination state: per-domain locks and consecutive failure counts.

Owned by the queue processor and only mutated from its event loop, so no
asyncio lock is needed: there is no ``await`` between a check and the
mutation that depends on it.
"""
from __future__ import annotations

from typing import Dict, Optional

from a11y_scout.errors import DomainLockedError
from a11y_scout.logger import get_logger

logger = get_logger("registry")


class DomainRegistry:
    """Domain → scan id locks and URL → consecutive failure counters."""

    def __init__(self) -> None:
        self._locks: Dict[str, str] = {}
        self._failures: Dict[str, int] = {}

    # domain locks -------------------------------------------------------

    @property
    def active_count(self) -> int:
        return len(self._locks)

    def is_locked(self, domain: str) -> bool:
        return domain in self._locks

    def holder(self, domain: str) -> Optional[str]:
        return self._locks.get(domain)

    def locked(self) -> Dict[str, str]:
        """Snapshot of the current locks."""
        return dict(self._locks)

    def acquire(self, domain: str, scan_id: str) -> None:
        holder = self.holder(domain)
        if holder is not None:
            raise DomainLockedError(domain, holder)
        self._locks[domain] = scan_id
        logger.info("Domain %s is now being scanned with scan ID %s", domain, scan_id)

    def release(self, domain: str, scan_id: Optional[str] = None) -> bool:
        """Drop the lock of *domain*; with *scan_id*, only if that scan still holds it."""
        holder = self.holder(domain)
        if holder is None or (scan_id is not None and holder != scan_id):
            return False
        del self._locks[domain]
        logger.info("Domain %s released (scan %s)", domain, holder)
        return True

    # failure tracking ---------------------------------------------------

    def failures(self, url: str) -> int:
        return self._failures.get(url, 0)

    def record_failure(self, url: str) -> int:
        count = self._failures.get(url, 0) + 1
        self._failures[url] = count
        return count

    def reset(self, url: str) -> None:
        self._failures.pop(url, None)
