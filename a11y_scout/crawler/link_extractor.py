# a11y_scout/crawler/link_extractor.py
"""
Outbound link extraction from HTML pages.
"""
from __future__ import annotations

from typing import List, Union

from bs4 import BeautifulSoup
from bs4.element import Tag

_SKIPPED_SCHEMES = ("mailto:", "javascript:", "tel:", "data:")


def extract_links(html: Union[str, BeautifulSoup]) -> List[str]:
    """
    Return the ``href`` of every ``<a>`` tag in document order.

    Values are returned as written in the markup (possibly relative).
    Empty hrefs, in-page anchors and mailto:/javascript:/tel:/data: links
    are skipped; resolving and filtering is up to the caller.
    """
    soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html or "", "html.parser")
    links: List[str] = []
    for tag in soup.find_all("a", href=True):
        if not isinstance(tag, Tag):
            continue
        href_val = tag.get("href")
        if not isinstance(href_val, str):
            continue
        raw = href_val.strip()
        if not raw or raw.startswith("#"):
            continue
        if raw.lower().startswith(_SKIPPED_SCHEMES):
            continue
        links.append(raw)
    return links
