"""
Page prober: one structured capture of page state per polling tick.

The prober is the boundary between the polling loop and the rendering
backend. Whatever happens inside the page, it returns a fully populated
ProbeSnapshot; a probe that cannot run reports an auth wall so that the
caller re-authenticates instead of trusting garbage data.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from ..browser.probe_script import PROBE_SCRIPT
from .session import RenderSession

lib_logger = logging.getLogger("ai_usage_scout")

_AUTH_STATUS_RE = re.compile(r'"authStatus"\s*:\s*"([A-Za-z_]+)"')
_BOOTSTRAP_EMAIL_RE = re.compile(r'"email"\s*:\s*"([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})"')


@dataclass(frozen=True)
class ScrollMetrics:
    """Scroll position of the page when the probe ran."""
    scroll_y: float = 0.0
    scroll_height: float = 0.0
    viewport_height: float = 0.0


@dataclass(frozen=True)
class PurchaseLinkCandidate:
    """A link or button that might lead to the credits purchase flow."""
    label: str
    href: str
    near_balance: bool = False


@dataclass(frozen=True)
class ProbeSnapshot:
    """Immutable capture of page state at a single polling tick."""
    location: Optional[str] = None
    login_required: bool = False
    workspace_picker: bool = False
    anti_automation_challenge: bool = False
    raw_text: Optional[str] = field(default=None, repr=False)
    raw_markup: Optional[str] = field(default=None, repr=False)
    signed_in_identity: Optional[str] = None
    table_rows: Tuple[Tuple[str, ...], ...] = ()
    chart_aggregates_raw: Any = None
    chart_aggregate_debug: Optional[str] = None
    scroll_metrics: ScrollMetrics = field(default_factory=ScrollMetrics)
    section_header_present: bool = False
    section_header_in_viewport: bool = False
    did_auto_scroll_this_tick: bool = False
    purchase_link_raw: Tuple[PurchaseLinkCandidate, ...] = ()

    @classmethod
    def login_wall(cls) -> "ProbeSnapshot":
        """Snapshot reported when the probe routine itself failed."""
        return cls(login_required=True)


class PageProber(ABC):
    """Capability that captures one ProbeSnapshot from a live session."""

    @abstractmethod
    async def execute_probe(self, session: RenderSession) -> ProbeSnapshot:
        """Capture the current page state. Never raises for page failures."""


class ScriptPageProber(PageProber):
    """Prober that evaluates an in-page extraction script."""

    def __init__(self, script: str = PROBE_SCRIPT):
        self.script = script

    async def execute_probe(self, session: RenderSession) -> ProbeSnapshot:
        try:
            payload = await session.evaluate(self.script)
        except Exception as e:
            lib_logger.warning(f"Probe script failed: {type(e).__name__}: {e}")
            return ProbeSnapshot.login_wall()
        return snapshot_from_payload(payload)


def snapshot_from_payload(payload: Any) -> ProbeSnapshot:
    """Convert the raw probe script result into a ProbeSnapshot.

    Missing or mistyped fields fall back to their defaults. A result that
    is not a mapping at all means the script did not run as expected.
    """
    if not isinstance(payload, Mapping):
        return ProbeSnapshot.login_wall()

    raw_markup = _string(payload.get("rawMarkup"))
    login_required = _flag(payload.get("loginRequired"))

    signed_in = _string(payload.get("signedInIdentity"))
    signed_in = signed_in.strip() if signed_in else None
    if not signed_in and raw_markup:
        signed_in = parse_bootstrap_email(raw_markup)

    if raw_markup:
        auth_status = parse_bootstrap_auth_status(raw_markup)
        # A logged-out shell can render without any visible auth inputs
        if auth_status is not None and auth_status.lower() != "logged_in":
            login_required = True

    scroll = payload.get("scroll")
    scroll = scroll if isinstance(scroll, Mapping) else {}

    return ProbeSnapshot(
        location=_string(payload.get("location")),
        login_required=login_required,
        workspace_picker=_flag(payload.get("workspacePicker")),
        anti_automation_challenge=_flag(payload.get("challenge")),
        raw_text=_string(payload.get("rawText")),
        raw_markup=raw_markup,
        signed_in_identity=signed_in or None,
        table_rows=_rows(payload.get("tableRows")),
        chart_aggregates_raw=_chart(payload.get("chartAggregates")),
        chart_aggregate_debug=_string(payload.get("chartDebug")),
        scroll_metrics=ScrollMetrics(
            scroll_y=_number(scroll.get("y")),
            scroll_height=_number(scroll.get("height")),
            viewport_height=_number(scroll.get("viewport")),
        ),
        section_header_present=_flag(payload.get("sectionHeaderPresent")),
        section_header_in_viewport=_flag(payload.get("sectionHeaderInViewport")),
        did_auto_scroll_this_tick=_flag(payload.get("didAutoScroll")),
        purchase_link_raw=_purchase_links(payload.get("purchaseLinks")),
    )


def parse_bootstrap_auth_status(markup: str) -> Optional[str]:
    """Auth status embedded in the client bootstrap JSON, if any."""
    match = _AUTH_STATUS_RE.search(markup)
    return match.group(1) if match else None


def parse_bootstrap_email(markup: str) -> Optional[str]:
    """Signed-in e-mail embedded in the client bootstrap JSON, if any."""
    match = _BOOTSTRAP_EMAIL_RE.search(markup)
    return match.group(1).lower() if match else None


def _flag(value: Any) -> bool:
    return value if isinstance(value, bool) else False


def _string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _rows(value: Any) -> Tuple[Tuple[str, ...], ...]:
    if not isinstance(value, list):
        return ()
    rows = []
    for row in value:
        if isinstance(row, list) and all(isinstance(cell, str) for cell in row):
            rows.append(tuple(row))
    return tuple(rows)


def _chart(value: Any) -> Any:
    # The script may hand back its cached aggregates as a JSON string
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if isinstance(value, (dict, list)) and value:
        return value
    return None


def _purchase_links(value: Any) -> Tuple[PurchaseLinkCandidate, ...]:
    if not isinstance(value, list):
        return ()
    links = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        href = _string(item.get("href"))
        if not href:
            continue
        links.append(PurchaseLinkCandidate(
            label=_string(item.get("label")) or "",
            href=href,
            near_balance=_flag(item.get("nearBalance")),
        ))
    return tuple(links)

