"""
Admission rules for URLs submitted to the queue or discovered while crawling.

Both predicates are pure and fail closed: anything that raises while being
inspected is rejected.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Tuple
from urllib.parse import urlsplit

from a11y_scout.logger import get_logger

__all__ = (
    "UrlPolicy",
    "DEFAULT_POLICY",
    "should_allow",
    "is_valid_for_crawl",
    "is_document_link",
)

logger = get_logger("url_filter")

MAX_URL_LENGTH: Final[int] = 500

BLOCKED_EXTENSIONS: Final[Tuple[str, ...]] = (
    "jpg", "jpeg", "png", "gif", "svg", "webp", "ico", "bmp",
    "zip", "rar", "gz", "tar", "7z",
    "doc", "docx", "xls", "xlsx", "ppt", "pptx",
    "woff", "woff2", "ttf", "eot", "otf",
    "css", "js", "json", "xml",
    "mp3", "mp4", "avi", "mov",
    "pdf", "csv",
)

# markers of pages generated by the reporting feature itself
REPORT_MARKERS: Final[Tuple[str, ...]] = ("/reports/", "report_", ".pdf", ".csv")

LOOPBACK_HOSTS: Final[frozenset[str]] = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})

DOCUMENT_EXTENSIONS: Final[Tuple[str, ...]] = (".pdf",)


@dataclass(frozen=True, slots=True)
class UrlPolicy:
    """Tunable limits of the admission filter."""

    max_length: int = MAX_URL_LENGTH
    blocked_extensions: Tuple[str, ...] = BLOCKED_EXTENSIONS
    report_markers: Tuple[str, ...] = REPORT_MARKERS

    def extension_pattern(self) -> re.Pattern[str]:
        return _extension_re(self.blocked_extensions)


DEFAULT_POLICY: Final[UrlPolicy] = UrlPolicy()

_EXT_CACHE: dict[Tuple[str, ...], re.Pattern[str]] = {}


def _extension_re(extensions: Tuple[str, ...]) -> re.Pattern[str]:
    pattern = _EXT_CACHE.get(extensions)
    if pattern is None:
        alternatives = "|".join(re.escape(ext) for ext in extensions)
        pattern = re.compile(rf"\.({alternatives})$", re.IGNORECASE)
        _EXT_CACHE[extensions] = pattern
    return pattern


def _is_loopback(host: str) -> bool:
    return host in LOOPBACK_HOSTS or host.startswith("127.")


def should_allow(url: str, policy: UrlPolicy = DEFAULT_POLICY) -> bool:
    """Return True if *url* may be queued or crawled at all."""
    try:
        if not url or not isinstance(url, str):
            return False
        if len(url) > policy.max_length:
            logger.debug("Rejected (too long, %d chars): %.80s…", len(url), url)
            return False

        parts = urlsplit(url)
        if parts.scheme.lower() not in ("http", "https"):
            return False
        host = (parts.hostname or "").lower()
        if not host:
            return False
        if _is_loopback(host):
            logger.debug("Rejected (loopback host): %s", url)
            return False

        if policy.extension_pattern().search(parts.path):
            logger.debug("Rejected (non-HTML resource): %s", url)
            return False

        lowered = url.lower()
        if any(marker in lowered for marker in policy.report_markers):
            logger.debug("Rejected (report output): %s", url)
            return False
        return True
    except Exception as exc:
        logger.debug("Rejected (unparsable %r): %s", url, exc)
        return False


def _same_host(url: str, origin_url: str) -> bool:
    host = urlsplit(url).hostname
    origin = urlsplit(origin_url).hostname
    return bool(host) and host == origin


def is_valid_for_crawl(url: str, origin_url: str, policy: UrlPolicy = DEFAULT_POLICY) -> bool:
    """:func:`should_allow` plus the same-host restriction of a crawl."""
    try:
        if not should_allow(url, policy):
            return False
        return _same_host(url, origin_url)
    except Exception as exc:
        logger.debug("Rejected (unparsable %r for origin %r): %s", url, origin_url, exc)
        return False


def is_document_link(url: str, origin_url: str) -> bool:
    """True for same-host PDF links, which are analyzed as documents."""
    try:
        parts = urlsplit(url)
        if parts.scheme.lower() not in ("http", "https"):
            return False
        if not parts.path.lower().endswith(DOCUMENT_EXTENSIONS):
            return False
        if "/reports/" in url.lower() or "report_" in url.lower():
            return False
        return _same_host(url, origin_url)
    except Exception:
        return False
