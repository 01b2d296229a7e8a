# File: a11y_scout/aggregator.py
"""a11y_scout.aggregator: scan summaries built from stored page results."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from a11y_scout.crawler.models import PageResult, PageStatus, ScanRecord

IMPACT_LEVELS: Sequence[str] = ("critical", "serious", "moderate", "minor")


class PageInfo(TypedDict, total=False):
    """One visited page in a summary."""

    url: str
    depth: int
    status: str
    http_status: Optional[int]
    violations: List[Dict[str, Any]]
    violation_count: int
    links: List[str]
    error: Optional[str]


@dataclass(slots=True)
class ScanSummary:
    """Scan status plus per-page results and violation totals."""

    scan_id: str
    url: str
    status: str
    total_pages_found: Optional[int] = None
    pages_scanned: int = 0
    error_pages: int = 0
    error_message: Optional[str] = None
    violations_total: int = 0
    violations_by_impact: Dict[str, int] = field(default_factory=dict)
    violations_by_rule: Dict[str, int] = field(default_factory=dict)
    pages: List[PageInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def json(self, *, pretty: bool = False) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2 if pretty else None)


def _page_info(result: PageResult) -> PageInfo:
    return {
        "url": result.url,
        "depth": result.depth,
        "status": result.status.value,
        "http_status": result.http_status,
        "violations": [v.to_dict() for v in result.violations],
        "violation_count": len(result.violations),
        "links": list(result.links),
        "error": result.error_message,
    }


def summarize(scan: ScanRecord, results: List[PageResult]) -> ScanSummary:
    """Build a :class:`ScanSummary` for *scan* from its page results."""
    by_impact: Counter[str] = Counter({level: 0 for level in IMPACT_LEVELS})
    by_rule: Counter[str] = Counter()
    for result in results:
        for violation in result.violations:
            by_impact[violation.impact] += 1
            by_rule[violation.id] += 1

    visited = [r for r in results if r.status is not PageStatus.FAILED]
    return ScanSummary(
        scan_id=scan.scan_id,
        url=scan.url,
        status=scan.status.value,
        total_pages_found=scan.total_pages_found,
        pages_scanned=scan.pages_scanned if scan.pages_scanned is not None else len(visited),
        error_pages=sum(1 for r in visited if r.status is PageStatus.ERROR),
        error_message=scan.error_message,
        violations_total=sum(by_rule.values()),
        violations_by_impact=dict(by_impact),
        violations_by_rule=dict(by_rule.most_common()),
        pages=[_page_info(r) for r in results],
    )
