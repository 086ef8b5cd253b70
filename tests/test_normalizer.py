"""
Tests for snapshot normalization.
"""
from datetime import date, datetime, timedelta

import pytest

from ai_usage_scout.core.normalizer import (
    display_service_name,
    make_daily_breakdown,
    normalize_purchase_url,
    normalize_snapshot,
    parse_amount,
    parse_chart_breakdown,
    parse_credit_events,
    parse_day,
    parse_remaining_percent,
    purchase_label_matches,
    select_purchase_url,
)
from ai_usage_scout.core.prober import ProbeSnapshot, PurchaseLinkCandidate
from ai_usage_scout.storage.models import CreditEvent

BASE_URL = "https://chatgpt.com/codex/settings/usage"


class TestRemainingPercent:
    """Test primary metric extraction."""

    def test_remaining_after_label(self):
        """The percentage following the label is used."""
        text = "Plan usage\n10% remaining\nCode review\n42% remaining"
        assert parse_remaining_percent(text) == 42.0

    def test_used_is_converted(self):
        """'N% used' is reported as 100 - N remaining."""
        assert parse_remaining_percent("Code review\n30% used") == 70.0

    def test_left_synonym(self):
        """'left' reads the same as 'remaining'."""
        assert parse_remaining_percent("Code Review: 12.5% left") == 12.5

    def test_value_is_clamped(self):
        """Out of range values are clamped."""
        assert parse_remaining_percent("Code review\n120% remaining") == 100.0
        assert parse_remaining_percent("Code review\n130% used") == 0.0

    def test_absent_metric(self):
        """No label or no percentage yields None."""
        assert parse_remaining_percent(None) is None
        assert parse_remaining_percent("Usage\n50% remaining") is None
        assert parse_remaining_percent("Code review\nLoading") is None

    def test_percentage_beyond_lookahead_ignored(self):
        """A percentage far below the label belongs to something else."""
        text = "Code review\na\nb\nc\nd\ne\n50% remaining"
        assert parse_remaining_percent(text) is None


class TestCreditEvents:
    """Test credits history parsing."""

    def test_rows_sorted_newest_first(self):
        """Events are ordered by date descending."""
        rows = [
            ("Oct 1, 2026", "CLI", "5"),
            ("Oct 3, 2026", "Cloud Tasks", "1,250.5 credits"),
        ]
        events = parse_credit_events(rows)
        assert [e.timestamp for e in events] == [date(2026, 10, 3), date(2026, 10, 1)]
        assert events[0].credits_used == 1250.5
        assert events[0].raw_cells == ("Oct 3, 2026", "Cloud Tasks", "1,250.5 credits")

    def test_same_day_rows_keep_table_order(self):
        """Sorting is stable within a day."""
        rows = [
            ("2026-10-02", "A", "1"),
            ("2026-10-02", "B", "2"),
        ]
        assert [e.service for e in parse_credit_events(rows)] == ["A", "B"]

    def test_bad_rows_skipped(self):
        """Short or unparseable rows are skipped individually."""
        rows = [
            ("Oct 1, 2026", "CLI"),
            ("not a date", "CLI", "5"),
            ("Oct 1, 2026", "  ", "5"),
            ("Oct 1, 2026", "CLI", "n/a"),
            ("Oct 2, 2026", "CLI", "7"),
        ]
        events = parse_credit_events(rows)
        assert len(events) == 1
        assert events[0].credits_used == 7.0

    @pytest.mark.parametrize("raw,expected", [
        ("2026-10-02", date(2026, 10, 2)),
        ("2026-10-02T13:45:00Z", date(2026, 10, 2)),
        ("Oct 2, 2026", date(2026, 10, 2)),
        ("October 2, 2026", date(2026, 10, 2)),
        ("2 Oct 2026", date(2026, 10, 2)),
        ("10/02/2026", date(2026, 10, 2)),
        ("yesterday", None),
        ("", None),
    ])
    def test_parse_day(self, raw, expected):
        """Supported date formats."""
        assert parse_day(raw) == expected

    def test_parse_amount(self):
        """Amount cells tolerate separators and units."""
        assert parse_amount("1,234.5 credits") == 1234.5
        assert parse_amount("-3") == -3.0
        assert parse_amount("none") is None


class TestDailyBreakdown:
    """Test daily breakdown construction."""

    def test_tie_ordered_by_name(self):
        """Equal credits sort by service name; totals add up."""
        events = [
            CreditEvent(date(2026, 10, 2), "B", 5.0),
            CreditEvent(date(2026, 10, 2), "A", 5.0),
        ]
        breakdown = make_daily_breakdown(events)
        assert len(breakdown) == 1
        assert [s.service for s in breakdown[0].services] == ["A", "B"]
        assert breakdown[0].total_credits_used == 10.0

    def test_same_service_is_summed(self):
        """Several events of one service on one day are merged."""
        events = [
            CreditEvent(date(2026, 10, 2), "CLI", 2.0),
            CreditEvent(date(2026, 10, 2), "CLI", 3.0),
        ]
        breakdown = make_daily_breakdown(events)
        assert breakdown[0].services[0].credits_used == 5.0

    def test_capped_to_most_recent_thirty_days(self):
        """Only the 30 most recent days are kept, newest first."""
        start = date(2026, 9, 1)
        events = [CreditEvent(start + timedelta(days=i), "CLI", 1.0) for i in range(40)]
        breakdown = make_daily_breakdown(events)
        assert len(breakdown) == 30
        assert breakdown[0].day == start + timedelta(days=39)
        assert breakdown[-1].day == start + timedelta(days=10)

    def test_non_positive_amounts_excluded(self):
        """Refunds do not show up as usage."""
        events = [
            CreditEvent(date(2026, 10, 2), "CLI", 4.0),
            CreditEvent(date(2026, 10, 2), "Refund", -4.0),
        ]
        breakdown = make_daily_breakdown(events)
        assert [s.service for s in breakdown[0].services] == ["CLI"]

    def test_chart_mapping_form(self):
        """Chart aggregates keyed by day and series."""
        raw = {"2026-10-02": {"cli": 2, "github_code_review": 3, "bogus": "x", "zero": 0}}
        breakdown = parse_chart_breakdown(raw)
        assert [(s.service, s.credits_used) for s in breakdown[0].services] == [
            ("GitHub Code Review", 3.0),
            ("CLI", 2.0),
        ]

    def test_chart_list_form(self):
        """Chart aggregates as a list of days."""
        raw = [{"day": "2026-10-02", "services": [{"service": "cloud_tasks", "creditsUsed": 1.5}]}]
        breakdown = parse_chart_breakdown(raw)
        assert breakdown[0].day == date(2026, 10, 2)
        assert breakdown[0].services[0].service == "Cloud Tasks"

    def test_chart_capped_to_most_recent_thirty_days(self):
        """Chart input is capped to the 30 most recent days in both forms."""
        start = date(2026, 9, 1)
        days = [(start + timedelta(days=i)).isoformat() for i in range(40)]
        mapping_form = {day: {"cli": 1} for day in days}
        list_form = [{"day": day, "services": [{"service": "cli", "creditsUsed": 1}]} for day in days]

        for raw in (mapping_form, list_form):
            breakdown = parse_chart_breakdown(raw)
            assert len(breakdown) == 30
            assert breakdown[0].day == start + timedelta(days=39)
            assert breakdown[-1].day == start + timedelta(days=10)

    def test_chart_garbage(self):
        """Unusable chart data yields no breakdown."""
        assert parse_chart_breakdown(None) == []
        assert parse_chart_breakdown({"not a day": {"cli": 1}}) == []
        assert parse_chart_breakdown([1, 2, 3]) == []

    @pytest.mark.parametrize("raw,expected", [
        ("cli", "CLI"),
        ("github_code_review", "GitHub Code Review"),
        ("cloud-tasks", "Cloud Tasks"),
        ("API", "API"),
        ("", ""),
    ])
    def test_display_service_name(self, raw, expected):
        """Series keys map to display names."""
        assert display_service_name(raw) == expected


class TestPurchaseUrl:
    """Test purchase link selection and safety filtering."""

    def test_relative_link_resolved(self):
        """Relative hrefs resolve against the page location."""
        assert normalize_purchase_url("/codex/settings/credits", BASE_URL, "chatgpt.com") == \
            "https://chatgpt.com/codex/settings/credits"

    def test_subdomain_accepted(self):
        """Subdomains of the expected host are allowed."""
        url = "https://pay.chatgpt.com/billing/checkout"
        assert normalize_purchase_url(url, BASE_URL, "chatgpt.com") == url

    @pytest.mark.parametrize("href", [
        "https://evil.example.com/billing",
        "https://chatgpt.com.evil.com/billing",
        "https://notchatgpt.com/billing",
        "https://chatgpt.com/settings/profile",
        "javascript:alert(1)",
        "mailto:billing@chatgpt.com",
        "",
    ])
    def test_unsafe_links_rejected(self, href):
        """Foreign hosts, non-billing paths and script links are rejected."""
        assert normalize_purchase_url(href, BASE_URL, "chatgpt.com") is None

    def test_malformed_link_rejected(self):
        """A link urllib cannot parse is rejected, not raised."""
        assert normalize_purchase_url("https://[chatgpt.com/credits", BASE_URL, "chatgpt.com") is None

    def test_malformed_link_falls_through(self):
        """A malformed first match does not hide the next candidate."""
        candidates = [
            PurchaseLinkCandidate("Buy credits", "https://[chatgpt.com/credits"),
            PurchaseLinkCandidate("Add credits", "/billing/credits"),
        ]
        assert select_purchase_url(candidates, BASE_URL, "chatgpt.com") == \
            "https://chatgpt.com/billing/credits"

    def test_label_matching(self):
        """Purchase intent is read from the label."""
        assert purchase_label_matches("Buy credits")
        assert purchase_label_matches("Add more")
        assert purchase_label_matches("Top up credits")
        assert not purchase_label_matches("Credits")
        assert not purchase_label_matches("Buy now")

    def test_near_balance_preferred(self):
        """A matching link next to the balance wins."""
        candidates = [
            PurchaseLinkCandidate("Buy credits", "/billing/a"),
            PurchaseLinkCandidate("Buy credits", "/billing/b", near_balance=True),
        ]
        assert select_purchase_url(candidates, BASE_URL, "chatgpt.com") == "https://chatgpt.com/billing/b"

    def test_href_fallback(self):
        """Without a matching label an href mentioning credits is used."""
        candidates = [
            PurchaseLinkCandidate("Settings", "/settings"),
            PurchaseLinkCandidate("Manage", "/codex/settings/credits"),
        ]
        assert select_purchase_url(candidates, BASE_URL, "chatgpt.com") == \
            "https://chatgpt.com/codex/settings/credits"

    def test_unsafe_candidate_skipped(self):
        """An unsafe first match falls through to the next candidate."""
        candidates = [
            PurchaseLinkCandidate("Buy credits", "https://evil.example.com/billing"),
            PurchaseLinkCandidate("Add credits", "/billing/credits"),
        ]
        assert select_purchase_url(candidates, BASE_URL, "chatgpt.com") == \
            "https://chatgpt.com/billing/credits"

    def test_no_candidates(self):
        """No candidates means no purchase URL."""
        assert select_purchase_url([], BASE_URL, "chatgpt.com") is None


class TestNormalizeSnapshot:
    """Test the full normalization of one probe snapshot."""

    def test_chart_preferred_over_events(self):
        """Chart aggregates win over bucketed history rows."""
        snapshot = ProbeSnapshot(
            location=BASE_URL,
            raw_text="Code review\n64% remaining",
            signed_in_identity="dev@example.com",
            table_rows=(("2026-10-02", "CLI", "9"),),
            chart_aggregates_raw={"2026-10-02": {"cli": 4}},
        )
        updated_at = datetime(2026, 10, 17, 9, 30)

        result = normalize_snapshot(snapshot, updated_at, "chatgpt.com")

        assert result.remaining_percent == 64.0
        assert result.signed_in_identity == "dev@example.com"
        assert len(result.credit_events) == 1
        assert result.daily_breakdown[0].total_credits_used == 4.0
        assert result.purchase_url is None
        assert result.updated_at == updated_at

    def test_events_bucketed_without_chart(self):
        """History rows feed the breakdown when there is no chart."""
        snapshot = ProbeSnapshot(table_rows=(("2026-10-02", "CLI", "9"),))
        result = normalize_snapshot(snapshot, datetime(2026, 10, 17), "chatgpt.com")
        assert result.daily_breakdown[0].total_credits_used == 9.0
