"""
Data models shared by the crawler, the stores and the scheduler.
"""
from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanStatus(str, enum.Enum):
    """Lifecycle of one scan: pending → in_progress → completed | failed."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)

    def can_become(self, other: "ScanStatus") -> bool:
        return other in _TRANSITIONS[self]


_TRANSITIONS: Dict[ScanStatus, frozenset[ScanStatus]] = {
    ScanStatus.PENDING: frozenset({ScanStatus.IN_PROGRESS}),
    ScanStatus.IN_PROGRESS: frozenset({ScanStatus.COMPLETED, ScanStatus.FAILED}),
    ScanStatus.COMPLETED: frozenset(),
    ScanStatus.FAILED: frozenset(),
}


class PageStatus(str, enum.Enum):
    """Outcome of a single page: analyzed, errored while analyzing, or scan failed."""

    OK = "ok"
    ERROR = "error"
    FAILED = "failed"


@dataclass(slots=True)
class PageData:
    """A fetched page (text or binary). ``error`` is set when loading failed."""

    url: str
    content: Union[str, bytes] = ""
    status: Optional[int] = None
    content_type: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class FrontierItem:
    url: str
    depth: int
    kind: str = "page"  # "page" | "document"


@dataclass(slots=True)
class Violation:
    """One accessibility rule failure reported by a page analyzer."""

    id: str
    impact: str
    description: str
    nodes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Violation":
        return cls(
            id=str(data.get("id", "")),
            impact=str(data.get("impact", "minor")),
            description=str(data.get("description", "")),
            nodes=[str(n) for n in data.get("nodes", [])],
        )


@dataclass(slots=True)
class Analysis:
    violations: List[Violation] = field(default_factory=list)
    links: List[str] = field(default_factory=list)


@dataclass(slots=True)
class PageResult:
    """Persisted outcome of one visited URL within one scan."""

    scan_id: str
    url: str
    status: PageStatus
    depth: int = 0
    http_status: Optional[int] = None
    violations: List[Violation] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    scanned_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class ScanRecord:
    """Scan-level status row; ``total_pages_found`` is the discovered URL count."""

    scan_id: str
    url: str
    status: ScanStatus
    total_pages_found: Optional[int] = None
    pages_scanned: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class SeedQueueEntry:
    url: str
    max_pages: int
    max_depth: int
    enqueued_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class CrawlStats:
    pages_visited: int
    pages_found: int
    frontier_size: int
