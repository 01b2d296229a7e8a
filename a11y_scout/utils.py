"""a11y_scout.utils: URL canonicalisation and small shared helpers."""

from __future__ import annotations

import secrets
import time
from typing import Collection, List, Sequence
from urllib.parse import urlsplit, urlunsplit

from a11y_scout.logger import get_logger

__all__: Sequence[str] = (
    "normalize_url",
    "extract_domain",
    "generate_scan_id",
    "remove_duplicates",
)

logger = get_logger("utils")


def _lower_host(netloc: str) -> str:
    # userinfo is case-sensitive, host[:port] is not
    userinfo, sep, hostport = netloc.rpartition("@")
    return f"{userinfo}{sep}{hostport.lower()}"


def normalize_url(raw: str) -> str:
    """Canonical identity of *raw* used for de-duplication.

    Lower-cases scheme and host, removes trailing slashes from the path
    (an empty path becomes ``/``), drops the fragment and keeps the query
    untouched. Anything that cannot be parsed as an absolute URL is
    returned unchanged.
    """
    if not isinstance(raw, str):
        return raw
    try:
        parts = urlsplit(raw.strip())
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw

    path = parts.path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), _lower_host(parts.netloc), path, parts.query, ""))


def extract_domain(url: str) -> str:
    """Host name of *url*, or the whole string when it has none."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if not host:
        logger.debug("No host in %r, using it as the domain key", url)
        return url
    return host


def generate_scan_id() -> str:
    """Millisecond timestamp followed by a random suffix."""
    return f"{int(time.time() * 1000)}{secrets.token_hex(3)}"


def remove_duplicates(urls: Collection[str]) -> List[str]:
    """Drop duplicate URLs, keeping the first occurrence order."""
    unique = list(dict.fromkeys(urls))
    removed = len(urls) - len(unique)
    if removed:
        logger.debug("Removed %d duplicate URLs", removed)
    return unique
