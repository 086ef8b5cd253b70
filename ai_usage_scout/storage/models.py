"""
Data models for extracted usage data.

Defines the immutable records produced by a successful dashboard fetch.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class CreditEvent:
    """One row of the credits usage history table.

    Rows are parsed independently; a row that cannot be parsed never
    produces a partial event.
    """
    timestamp: date
    service: str
    credits_used: float
    raw_cells: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceUsage:
    """Credits consumed by a single service on one day."""
    service: str
    credits_used: float


@dataclass(frozen=True)
class DailyBreakdown:
    """Per-service credit usage for one calendar day."""
    day: date
    services: Tuple[ServiceUsage, ...]
    total_credits_used: float

    def __post_init__(self):
        """Validate totals are not negative."""
        if self.total_credits_used < 0:
            raise ValueError("total_credits_used cannot be negative")


@dataclass(frozen=True)
class UsageSnapshot:
    """Final result of a dashboard fetch.

    Built exactly once per successful fetch. There is no partial form:
    a fetch either returns a complete snapshot or raises.
    """
    signed_in_identity: Optional[str]
    remaining_percent: Optional[float]
    credit_events: Tuple[CreditEvent, ...]
    daily_breakdown: Tuple[DailyBreakdown, ...]
    purchase_url: Optional[str]
    updated_at: datetime


@dataclass(frozen=True)
class ProbeResult:
    """Page state reported by the lightweight probe operation."""
    location: Optional[str]
    login_required: bool = False
    workspace_picker: bool = False
    anti_automation_challenge: bool = False
    signed_in_identity: Optional[str] = None
    raw_text: Optional[str] = field(default=None, repr=False)
    timed_out: bool = False
