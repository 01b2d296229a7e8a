"""a11y_scout.storage: durable seed queue and result sink."""

from .base import ResultSink, SeedQueue
from .sqlite import SqliteStore

__all__ = ["SeedQueue", "ResultSink", "SqliteStore"]
