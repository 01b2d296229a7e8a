"""Exception hierarchy for A11yScout."""
from __future__ import annotations


class ScoutError(Exception):
    """Base class for all errors raised by the package."""


class StoreError(ScoutError):
    """The durable queue or the result store could not complete an operation."""


class DomainLockedError(ScoutError):
    """A crawl for the domain is already running."""

    def __init__(self, domain: str, holder: str) -> None:
        super().__init__(f"domain {domain} is already locked by scan {holder}")
        self.domain = domain
        self.holder = holder


class CrawlStartupError(ScoutError):
    """Crawler resources were not acquired within the startup timeout."""


class SubmissionRejected(ScoutError):
    """A submitted URL cannot be queued."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url!r} rejected: {reason}")
        self.url = url
        self.reason = reason


__all__ = [
    "ScoutError",
    "StoreError",
    "DomainLockedError",
    "CrawlStartupError",
    "SubmissionRejected",
]
