"""
Tests for the lazy-history wait heuristic.
"""
from ai_usage_scout.core.wait_policy import HistoryWaitContext, should_wait_for_history


def context(**overrides) -> HistoryWaitContext:
    values = dict(
        now=10.0,
        first_dashboard_signal_at=None,
        section_header_visible_at=None,
        section_header_present=False,
        section_header_in_viewport=False,
        did_auto_scroll_this_tick=False,
    )
    values.update(overrides)
    return HistoryWaitContext(**values)


class TestShouldWaitForHistory:
    """Test the wait rules in priority order."""

    def test_auto_scroll_always_waits(self):
        """A scroll this tick wins over every other rule."""
        assert should_wait_for_history(context(
            did_auto_scroll_this_tick=True,
            first_dashboard_signal_at=0.0,
        ))

    def test_visible_header_without_timestamp_waits(self):
        """A header just seen on screen is waited for."""
        assert should_wait_for_history(context(
            section_header_present=True,
            section_header_in_viewport=True,
        ))

    def test_visible_header_grace(self):
        """The header grace is measured from when it became visible."""
        inside = context(
            section_header_present=True,
            section_header_in_viewport=True,
            section_header_visible_at=8.0,
        )
        boundary = context(
            section_header_present=True,
            section_header_in_viewport=True,
            section_header_visible_at=7.5,
        )
        assert should_wait_for_history(inside)
        assert not should_wait_for_history(boundary)

    def test_header_rule_ignores_dashboard_signal(self):
        """Once the header is visible the longer signal grace no longer applies."""
        assert not should_wait_for_history(context(
            section_header_present=True,
            section_header_in_viewport=True,
            section_header_visible_at=0.0,
            first_dashboard_signal_at=9.0,
        ))

    def test_offscreen_header_uses_signal_grace(self):
        """A header below the fold falls through to the signal rule."""
        assert should_wait_for_history(context(
            section_header_present=True,
            section_header_in_viewport=False,
            first_dashboard_signal_at=4.0,
        ))

    def test_dashboard_signal_grace(self):
        """The signal grace is strict at its boundary."""
        assert should_wait_for_history(context(first_dashboard_signal_at=4.0))
        assert not should_wait_for_history(context(first_dashboard_signal_at=3.5))

    def test_nothing_seen_does_not_wait(self):
        """Without any signal the outer deadline governs."""
        assert not should_wait_for_history(context())

    def test_custom_graces(self):
        """Grace periods are configurable."""
        ctx = context(first_dashboard_signal_at=9.0)
        assert not should_wait_for_history(ctx, dashboard_signal_grace=0.5)
        assert should_wait_for_history(ctx, dashboard_signal_grace=2.0)
