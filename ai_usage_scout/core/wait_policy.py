"""
Lazy-history wait heuristic.

Decides whether the navigator should keep waiting for the credits history
section to render. The section is often virtualized or lazy-loaded below
the fold, so its absence on one tick says little about the next.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_HEADER_VISIBLE_GRACE = 2.5
DEFAULT_DASHBOARD_SIGNAL_GRACE = 6.5


@dataclass(frozen=True)
class HistoryWaitContext:
    """Inputs of the wait heuristic. Times are monotonic seconds."""
    now: float
    first_dashboard_signal_at: Optional[float]
    section_header_visible_at: Optional[float]
    section_header_present: bool
    section_header_in_viewport: bool
    did_auto_scroll_this_tick: bool


def should_wait_for_history(
    context: HistoryWaitContext,
    header_visible_grace: float = DEFAULT_HEADER_VISIBLE_GRACE,
    dashboard_signal_grace: float = DEFAULT_DASHBOARD_SIGNAL_GRACE
) -> bool:
    """Return True while the credits history may still appear.

    Rules, first match wins:
    1. The page auto-scrolled this tick: wait for the scroll to settle
    2. Header visible: wait header_visible_grace from when it became visible
    3. Some dashboard signal seen: wait dashboard_signal_grace from then
    4. Nothing seen yet: don't wait, the outer deadline governs

    Args:
        context: Observations of the current tick
        header_visible_grace: Seconds to wait once the header is on screen
        dashboard_signal_grace: Seconds to wait after the first dashboard signal

    Returns:
        Whether to wait before the next poll
    """
    if context.did_auto_scroll_this_tick:
        return True

    if context.section_header_present and context.section_header_in_viewport:
        if context.section_header_visible_at is None:
            return True
        return context.now - context.section_header_visible_at < header_visible_grace

    if context.first_dashboard_signal_at is not None:
        return context.now - context.first_dashboard_signal_at < dashboard_signal_grace

    return False
