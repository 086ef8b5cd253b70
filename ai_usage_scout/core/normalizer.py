"""
Snapshot normalization.

Turns the ad-hoc structures scraped from the dashboard into a typed
UsageSnapshot. Everything here is pure: no I/O, no clock reads.

Rules:
1. Primary metric - "N% remaining" (or "N% used") near the metric label
2. Credit events - one per table row with >= 3 cells; bad rows are skipped
3. Daily breakdown - chart aggregates when present, else bucketed events
4. Purchase URL - first purchase-intent link on the expected host
"""

import re
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse

from .prober import ProbeSnapshot, PurchaseLinkCandidate
from ai_usage_scout.storage.models import (
    CreditEvent,
    DailyBreakdown,
    ServiceUsage,
    UsageSnapshot,
)

MAX_BREAKDOWN_DAYS = 30
PRIMARY_METRIC_LABEL = "code review"
# Lines after the label that may still hold its percentage
PRIMARY_METRIC_LOOKAHEAD = 4

_PERCENT_RE = re.compile(r"(\d{1,3}(?:\.\d+)?)\s*%\s*(remaining|left|used)", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"[-+]?\d[\d,]*(?:\.\d+)?|[-+]?\.\d+")
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%m/%d/%Y",
    "%m/%d/%y",
)
_BILLING_PATH_MARKERS = ("billing", "usage", "credits")
_PURCHASE_VERBS = ("buy", "add", "purchase", "top up", "top-up")


def parse_remaining_percent(text: Optional[str], label: str = PRIMARY_METRIC_LABEL) -> Optional[float]:
    """Find the remaining percentage of the primary metric in page text.

    Args:
        text: Visible page text
        label: Case-insensitive label that introduces the metric

    Returns:
        Remaining percent clamped to [0, 100], or None if absent
    """
    if not text:
        return None

    lines = [line.strip() for line in text.splitlines()]
    label = label.lower()
    for index, line in enumerate(lines):
        if label not in line.lower():
            continue
        window = " ".join(lines[index:index + PRIMARY_METRIC_LOOKAHEAD + 1])
        match = _PERCENT_RE.search(window)
        if not match:
            continue
        value = float(match.group(1))
        if match.group(2).lower() == "used":
            value = 100.0 - value
        return max(0.0, min(100.0, value))
    return None


def parse_credit_events(rows: Iterable[Sequence[str]]) -> List[CreditEvent]:
    """Parse credits usage history rows, newest first.

    Rows are [date, service, amount, ...]. A row that fails to parse is
    skipped without affecting the others.
    """
    events = []
    for row in rows:
        if len(row) < 3:
            continue
        day = parse_day(row[0])
        service = row[1].strip()
        amount = parse_amount(row[2])
        if day is None or not service or amount is None:
            continue
        events.append(CreditEvent(
            timestamp=day,
            service=service,
            credits_used=amount,
            raw_cells=tuple(row)
        ))
    # sorted() is stable, so same-day rows keep table order
    return sorted(events, key=lambda e: e.timestamp, reverse=True)


def parse_day(raw: str) -> Optional[date]:
    """Parse a table or chart date cell into a calendar date."""
    value = raw.strip()
    if not value:
        return None
    # ISO timestamps carry a time part we don't need
    iso = re.match(r"^(\d{4}-\d{2}-\d{2})", value)
    if iso:
        value = iso.group(1)
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_amount(raw: str) -> Optional[float]:
    """Parse an amount cell such as '1,234.5 credits'."""
    match = _AMOUNT_RE.search(raw)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def make_daily_breakdown(events: Iterable[CreditEvent], max_days: int = MAX_BREAKDOWN_DAYS) -> List[DailyBreakdown]:
    """Bucket credit events by calendar day and service.

    Only consumption counts; refunds and grants (non-positive amounts) are
    left out of the breakdown.
    """
    totals: Dict[date, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for event in events:
        if event.credits_used <= 0:
            continue
        totals[event.timestamp][event.service] += event.credits_used
    return _build_breakdown(totals, max_days)


def parse_chart_breakdown(raw: Any, max_days: int = MAX_BREAKDOWN_DAYS) -> List[DailyBreakdown]:
    """Build the daily breakdown from chart aggregates.

    Accepts either {day: {service: value}} or a list of
    {"day": ..., "services": [{"service": ..., "creditsUsed": ...}]}.
    Non-numeric and non-positive values are ignored.
    """
    totals: Dict[date, Dict[str, float]] = defaultdict(lambda: defaultdict(float))

    for day_raw, services in _chart_items(raw):
        if not isinstance(day_raw, str):
            continue
        day = parse_day(day_raw)
        if day is None:
            continue
        for service_raw, value in services:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                continue
            service = display_service_name(service_raw)
            if service:
                totals[day][service] += float(value)

    return _build_breakdown(totals, max_days)


def display_service_name(raw: Any) -> str:
    """Map a chart series key such as 'github_code_review' to a display name."""
    key = "" if raw is None else str(raw).strip()
    if not key:
        return key
    if key.upper() == key and len(key) <= 6:
        return key
    lower = key.lower()
    if lower == "cli":
        return "CLI"
    if "github" in lower and "review" in lower:
        return "GitHub Code Review"
    words = re.sub(r"[_-]+", " ", lower).split()
    return " ".join(w.upper() if len(w) <= 2 else w.capitalize() for w in words)


def select_purchase_url(
    candidates: Sequence[PurchaseLinkCandidate],
    base_url: Optional[str],
    expected_host: str
) -> Optional[str]:
    """Pick the credits purchase link among scraped candidates.

    Candidates near the credits balance come first, then any link whose
    label shows purchase intent, then links whose href mentions credits or
    billing. Whatever is picked must resolve to the expected host and a
    billing, usage or credits path.
    """
    near_balance = [c for c in candidates if c.near_balance]
    ordered = (
        [c for c in near_balance if purchase_label_matches(c.label)]
        + [c for c in candidates if purchase_label_matches(c.label)]
        + [c for c in candidates if re.search(r"credits|billing", c.href, re.IGNORECASE)]
    )
    for candidate in ordered:
        url = normalize_purchase_url(candidate.href, base_url, expected_host)
        if url:
            return url
    return None


def purchase_label_matches(label: str) -> bool:
    """Whether a link label reads like "buy credits" or "add more"."""
    lower = label.strip().lower()
    if not lower:
        return False
    if "add more" in lower:
        return True
    if "credit" not in lower:
        return False
    return any(verb in lower for verb in _PURCHASE_VERBS)


def normalize_purchase_url(href: str, base_url: Optional[str], expected_host: str) -> Optional[str]:
    """Resolve href and accept it only on the expected host's billing paths."""
    href = href.strip()
    if not href or href.lower().startswith(("javascript:", "mailto:", "data:")):
        return None
    try:
        absolute = urljoin(base_url or f"https://{expected_host}/", href)
        parsed = urlparse(absolute)
        host = (parsed.hostname or "").lower()
    except ValueError:
        # Malformed authority, e.g. an unbalanced IPv6 bracket
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    expected = expected_host.lower()
    if host != expected and not host.endswith("." + expected):
        return None
    path = parsed.path.lower()
    if not any(marker in path for marker in _BILLING_PATH_MARKERS):
        return None
    return absolute


def normalize_snapshot(
    snapshot: ProbeSnapshot,
    updated_at: datetime,
    expected_host: str
) -> UsageSnapshot:
    """Build the final UsageSnapshot from one probe snapshot.

    Args:
        snapshot: Probe snapshot of the tick that finished the fetch
        updated_at: Timestamp recorded on the result
        expected_host: Host the purchase URL must resolve to

    Returns:
        Complete, immutable UsageSnapshot
    """
    events = parse_credit_events(snapshot.table_rows)
    breakdown = parse_chart_breakdown(snapshot.chart_aggregates_raw)
    if not breakdown:
        breakdown = make_daily_breakdown(events)

    return UsageSnapshot(
        signed_in_identity=snapshot.signed_in_identity,
        remaining_percent=parse_remaining_percent(snapshot.raw_text),
        credit_events=tuple(events),
        daily_breakdown=tuple(breakdown),
        purchase_url=select_purchase_url(snapshot.purchase_link_raw, snapshot.location, expected_host),
        updated_at=updated_at
    )


def _chart_items(raw: Any) -> Iterable[Tuple[Any, List[Tuple[Any, Any]]]]:
    if isinstance(raw, Mapping):
        for day, services in raw.items():
            if isinstance(services, Mapping):
                yield day, list(services.items())
    elif isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, Mapping):
                continue
            services = entry.get("services")
            if not isinstance(services, list):
                continue
            yield entry.get("day"), [
                (s.get("service"), s.get("creditsUsed"))
                for s in services if isinstance(s, Mapping)
            ]


def _build_breakdown(totals: Mapping[date, Mapping[str, float]], max_days: int) -> List[DailyBreakdown]:
    days = sorted(totals, reverse=True)[:max_days]
    breakdown = []
    for day in days:
        services = sorted(
            (ServiceUsage(service=name, credits_used=value) for name, value in totals[day].items()),
            key=lambda s: (-s.credits_used, s.service)
        )
        breakdown.append(DailyBreakdown(
            day=day,
            services=tuple(services),
            total_credits_used=sum(s.credits_used for s in services)
        ))
    return breakdown
