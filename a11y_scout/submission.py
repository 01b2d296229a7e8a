"""URL submission: the path by which users (or the mail gateway) add seeds to the queue.

Submitted text is often pasted from earlier report mails, so the URL can
come with trailing words such as ``Scan``, ``Thank you`` or
``Error: ...`` glued to it. That clean-up belongs here and never in the
admission filter used while crawling.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from a11y_scout.crawler.url_filter import DEFAULT_POLICY, UrlPolicy, should_allow
from a11y_scout.errors import SubmissionRejected
from a11y_scout.logger import get_logger
from a11y_scout.storage.base import SeedQueue
from a11y_scout.utils import normalize_url

logger = get_logger("submission")

GARBAGE_MARKERS = ("Scan", "Thank", "Error:", "pdf-", "csv-")

_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)


def clean_submitted_url(raw: Optional[str]) -> Optional[str]:
    """Extract the URL from submitted text, cutting pasted report text after it."""
    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    match = _URL_RE.search(text)
    if match is None:
        return None
    url = match.group(0)
    cut = min((url.find(marker) for marker in GARBAGE_MARKERS if marker in url), default=-1)
    if cut != -1:
        url = url[:cut]
    url = url.rstrip(".,;:)]}>'\"")
    return url or None


async def submit(
    queue: SeedQueue,
    raw_url: str,
    max_pages: int,
    max_depth: Optional[int] = None,
    policy: UrlPolicy = DEFAULT_POLICY,
) -> str:
    """Validate *raw_url* and upsert it into *queue*. Returns the queued URL."""
    url = clean_submitted_url(raw_url)
    if url is None:
        raise SubmissionRejected(str(raw_url), "no http(s) URL found")
    url = normalize_url(url)
    if not should_allow(url, policy):
        raise SubmissionRejected(url, "URL is not eligible for scanning")
    if max_pages < 1:
        raise SubmissionRejected(url, "max pages must be at least 1")
    if max_depth is not None and max_depth < 0:
        raise SubmissionRejected(url, "max depth must not be negative")

    await queue.enqueue(url, max_pages, max_depth)
    logger.info("URL %s with max pages %d added to scanning queue", url, max_pages)
    return url


@dataclass
class CleanupReport:
    """What :func:`cleanup_queue` changed."""

    removed: List[str] = field(default_factory=list)
    merged: List[str] = field(default_factory=list)
    renamed: Dict[str, str] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.removed or self.merged or self.renamed)


async def cleanup_queue(queue: SeedQueue, policy: UrlPolicy = DEFAULT_POLICY) -> CleanupReport:
    """Drop queued URLs that are no longer eligible and fold duplicate spellings.

    Entries are grouped by their normalized URL; the oldest entry of a group
    survives under the normalized key and the others are deleted.
    """
    report = CleanupReport()
    kept: Dict[str, str] = {}
    for entry in await queue.list_entries():
        if not should_allow(entry.url, policy):
            await queue.remove(entry.url)
            report.removed.append(entry.url)
            logger.info("Removed ineligible URL %s from the queue", entry.url)
            continue
        key = normalize_url(entry.url)
        if key in kept:
            await queue.remove(entry.url)
            report.merged.append(entry.url)
            logger.info("Removed duplicate queue entry %s (same as %s)", entry.url, kept[key])
            continue
        kept[key] = entry.url

    for key, url in kept.items():
        if url != key and await queue.rename(url, key):
            report.renamed[url] = key
    return report
