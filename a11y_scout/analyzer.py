"""a11y_scout.analyzer: page analyzers consumed by the crawler.

The crawler only depends on the :class:`PageAnalyzer` protocol: given a
loaded (or partially loaded) page it returns the accessibility violations
found and the raw outbound links. :class:`BasicAnalyzer` is a small
structural checker so the tool is usable without an external rule engine;
it is not a WCAG implementation.
"""
from __future__ import annotations

import re
from typing import List, Protocol, runtime_checkable

from bs4 import BeautifulSoup
from bs4.element import Tag

from a11y_scout.crawler.link_extractor import extract_links
from a11y_scout.crawler.models import Analysis, PageData, Violation

__all__ = ["PageAnalyzer", "BasicAnalyzer"]

_SNIPPET_LIMIT = 120
_NODE_SAMPLE = 10


@runtime_checkable
class PageAnalyzer(Protocol):
    async def analyze(self, page: PageData) -> Analysis:
        ...


def _snippet(tag: Tag) -> str:
    text = str(tag)
    return text if len(text) <= _SNIPPET_LIMIT else text[: _SNIPPET_LIMIT - 1] + "…"


class BasicAnalyzer:
    """BeautifulSoup-based structural checks plus link extraction."""

    async def analyze(self, page: PageData) -> Analysis:
        if isinstance(page.content, bytes):
            if page.content_type == "application/pdf" or page.url.lower().endswith(".pdf"):
                return Analysis(violations=self.check_pdf(page.content, page.url))
            return Analysis()
        if not page.content:
            return Analysis()

        soup = BeautifulSoup(page.content, "html.parser")
        return Analysis(violations=self.check_html(soup), links=extract_links(soup))

    def check_html(self, soup: BeautifulSoup) -> List[Violation]:
        violations: List[Violation] = []

        html_tag = soup.find("html")
        if not isinstance(html_tag, Tag) or not str(html_tag.get("lang") or "").strip():
            violations.append(
                Violation("html-has-lang", "serious", "The <html> element has no lang attribute.", ["html"])
            )

        title = soup.find("title")
        if not isinstance(title, Tag) or not title.get_text(strip=True):
            violations.append(
                Violation("document-title", "serious", "The document has no non-empty <title>.", ["head"])
            )

        images = [img for img in soup.find_all("img") if isinstance(img, Tag) and img.get("alt") is None]
        if images:
            violations.append(
                Violation(
                    "image-alt",
                    "critical",
                    f"{len(images)} image(s) without an alt attribute.",
                    [_snippet(img) for img in images[:_NODE_SAMPLE]],
                )
            )

        empty_links = [
            a
            for a in soup.find_all("a", href=True)
            if isinstance(a, Tag)
            and not a.get_text(strip=True)
            and not a.get("aria-label")
            and not a.get("title")
            and not any(isinstance(img, Tag) and img.get("alt") for img in a.find_all("img"))
        ]
        if empty_links:
            violations.append(
                Violation(
                    "link-name",
                    "serious",
                    f"{len(empty_links)} link(s) without discernible text.",
                    [_snippet(a) for a in empty_links[:_NODE_SAMPLE]],
                )
            )

        labelled = {
            str(label.get("for"))
            for label in soup.find_all("label")
            if isinstance(label, Tag) and label.get("for")
        }
        unlabeled = [
            field
            for field in soup.find_all(["input", "select", "textarea"])
            if isinstance(field, Tag)
            and str(field.get("type", "")).lower() not in ("hidden", "submit", "button", "reset", "image")
            and str(field.get("id", "")) not in labelled
            and not field.get("aria-label")
            and not field.get("aria-labelledby")
            and not (isinstance(field.parent, Tag) and field.parent.name == "label")
        ]
        if unlabeled:
            violations.append(
                Violation(
                    "label",
                    "critical",
                    f"{len(unlabeled)} form field(s) without a label.",
                    [_snippet(f) for f in unlabeled[:_NODE_SAMPLE]],
                )
            )
        return violations

    def check_pdf(self, data: bytes, url: str) -> List[Violation]:
        violations: List[Violation] = []
        if not re.search(rb"/MarkInfo\s*<<[^>]*/Marked\s+true", data):
            violations.append(
                Violation("pdf-not-tagged", "critical", "PDF is not tagged for assistive technology.", [url])
            )
        if b"/Title" not in data:
            violations.append(Violation("pdf-no-title", "moderate", "PDF has no document title.", [url]))
        return violations
