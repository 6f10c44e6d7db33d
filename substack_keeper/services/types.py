"""
Types for keeper processing.
"""

from datetime import datetime
from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar


T = TypeVar("T")


@dataclass
class QueryResult(Generic[T]):
    """
    Outcome of a read-only chain query.

    A failed query still carries the deterministic default in ``value`` so
    callers that only care about the value can ignore ``ok``.
    """
    value: T
    ok: bool = True
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return not self.ok

    @classmethod
    def success(cls, value: T) -> "QueryResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, default: T, error: str) -> "QueryResult[T]":
        return cls(value=default, ok=False, error=error)


@dataclass(frozen=True)
class Plan:
    """Merchant-defined recurring charge template."""
    id: int
    merchant: str
    amount: int
    interval_blocks: int
    active: bool
    subscriber_count: int


@dataclass(frozen=True)
class Subscription:
    """A subscriber's enrollment in a plan, with the price snapshot taken at subscribe time."""
    subscriber: str
    plan_id: int
    active: bool
    plan_amount: int
    plan_interval: int


@dataclass(frozen=True)
class DueCharge:
    """A charge found due during one keeper cycle. Never persisted."""
    subscriber: str
    plan_id: int
    amount: int


@dataclass(frozen=True)
class ChargeRequest:
    """Charge tuple submitted to the engine contract."""
    subscriber: str
    plan_id: int


@dataclass
class SubmissionResult:
    """Result of a submitted charge transaction."""
    success: bool
    txid: Optional[str] = None
    error: Optional[str] = None
    nonce: Optional[int] = None


@dataclass
class ScanStats:
    """Statistics for one due-charge scan."""
    total_plans: int = 0
    plans_scanned: int = 0
    plans_skipped: int = 0
    subscribers_checked: int = 0
    due_found: int = 0
    query_failures: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class CycleReport:
    """Outcome of one keeper cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    block_height: int = 0
    candidates: int = 0
    profitable: int = 0
    attempted: int = 0
    executed: int = 0
    failed: int = 0
    txids: List[str] = field(default_factory=list)
    scan_stats: Optional[ScanStats] = None
    error: Optional[str] = None

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
