"""a11y_scout.scheduler: queue processing with per-domain locking and retry limits."""

from .processor import QueueProcessor
from .registry import DomainRegistry

__all__ = ["QueueProcessor", "DomainRegistry"]
