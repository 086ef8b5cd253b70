"""
Navigation and polling loop.

Drives the page prober against a leased session until the dashboard has
hydrated, an interstitial ends the fetch, or the deadline passes.

Tick order:
1. Deadline check - on expiry the fetch times out with the last page text
2. Workspace picker - intermediate UI state, wait and retry
3. Route drift - the SPA wandered off; reload the dashboard and retry
4. Auth wall - terminal
5. Anti-automation challenge - terminal
6. Data signals - wait for history/chart hydration, or finish

Deadlines are checked between operations only, so a fetch can overrun by
one in-flight probe or navigation call.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Awaitable, Callable, Optional

from .errors import AuthenticationRequired, AutomationChallengeDetected, FetchTimeout
from .normalizer import (
    normalize_snapshot,
    parse_chart_breakdown,
    parse_credit_events,
    parse_remaining_percent,
)
from .prober import PageProber, ProbeSnapshot
from .session import RenderSession
from .wait_policy import HistoryWaitContext, should_wait_for_history
from ai_usage_scout.config.loader import TargetConfig, TimingConfig
from ai_usage_scout.storage.diagnostics import DiagnosticSink
from ai_usage_scout.storage.models import ProbeResult, UsageSnapshot

lib_logger = logging.getLogger("ai_usage_scout")

LogCallback = Callable[[str], None]


class LoopState(Enum):
    """States of one fetch."""
    NAVIGATING = auto()
    PROBING = auto()
    WAITING = auto()
    FORCE_NAVIGATE = auto()
    FAIL_AUTH = auto()
    FAIL_CHALLENGE = auto()
    DONE = auto()
    TIMED_OUT = auto()


@dataclass
class FetchRun:
    """Mutable bookkeeping of a single fetch. Times are clock seconds."""
    state: LoopState = LoopState.NAVIGATING
    polls: int = 0
    last_text: Optional[str] = None
    last_markup: Optional[str] = None
    last_location: Optional[str] = None
    last_flags: Optional[tuple] = None
    metric_first_seen_at: Optional[float] = None
    first_dashboard_signal_at: Optional[float] = None
    section_header_visible_at: Optional[float] = None
    last_chart_debug: Optional[str] = None
    last_purchase_count: int = 0

    def remember(self, snapshot: ProbeSnapshot) -> None:
        self.polls += 1
        self.last_text = snapshot.raw_text or self.last_text
        self.last_markup = snapshot.raw_markup or self.last_markup


class DashboardNavigator:
    """Polling state machine over a leased rendering session."""

    def __init__(
        self,
        prober: PageProber,
        target: Optional[TargetConfig] = None,
        timing: Optional[TimingConfig] = None,
        diagnostics: Optional[DiagnosticSink] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = datetime.now
    ):
        """Initialize the navigator.

        Args:
            prober: Capability that captures one snapshot per tick
            target: Dashboard route to keep the session on
            timing: Poll intervals and grace periods
            diagnostics: Sink for failure artifacts when debug dumps are requested
            clock: Monotonic time source for deadlines and grace periods
            sleep: Coroutine used to suspend between ticks
            now: Wall clock for the snapshot timestamp
        """
        self.prober = prober
        self.target = target or TargetConfig()
        self.timing = timing or TimingConfig()
        self.diagnostics = diagnostics
        self._clock = clock
        self._sleep = sleep
        self._now = now
        self.last_run: Optional[FetchRun] = None

    async def fetch_dashboard(
        self,
        session: RenderSession,
        timeout: Optional[float] = None,
        debug_dump: bool = False,
        log: Optional[LogCallback] = None
    ) -> UsageSnapshot:
        """Poll the session until a complete usage snapshot can be built.

        Args:
            session: Leased session, already navigated to the dashboard
            timeout: Seconds before giving up (defaults to timing.fetch_timeout)
            debug_dump: Persist the last page state on failure
            log: Optional callback receiving per-fetch trace messages

        Returns:
            Complete UsageSnapshot

        Raises:
            AuthenticationRequired: If the page shows an auth wall
            AutomationChallengeDetected: If an anti-automation page blocks access
            FetchTimeout: If the deadline passes first
        """
        emit = _emitter(log)
        run = FetchRun()
        self.last_run = run
        deadline = self._clock() + (timeout if timeout is not None else self.timing.fetch_timeout)

        while self._clock() < deadline:
            run.state = LoopState.PROBING
            snapshot = await self.prober.execute_probe(session)
            run.remember(snapshot)
            self._trace_transition(run, snapshot, emit)

            if await self._handle_interstitial(run, snapshot, session, debug_dump, emit):
                continue

            now = self._clock()
            remaining = parse_remaining_percent(snapshot.raw_text)
            has_events = bool(parse_credit_events(snapshot.table_rows))
            has_chart = bool(parse_chart_breakdown(snapshot.chart_aggregates_raw))

            if remaining is not None and run.metric_first_seen_at is None:
                run.metric_first_seen_at = now
            if run.first_dashboard_signal_at is None and (
                    remaining is not None or has_chart or snapshot.section_header_present):
                run.first_dashboard_signal_at = now
            if (snapshot.section_header_present and snapshot.section_header_in_viewport
                    and run.section_header_visible_at is None):
                run.section_header_visible_at = now
            self._trace_signals(run, snapshot, remaining, has_chart, emit)

            if remaining is None and not has_events and not has_chart:
                wait = should_wait_for_history(
                    HistoryWaitContext(
                        now=now,
                        first_dashboard_signal_at=run.first_dashboard_signal_at,
                        section_header_visible_at=run.section_header_visible_at,
                        section_header_present=snapshot.section_header_present,
                        section_header_in_viewport=snapshot.section_header_in_viewport,
                        did_auto_scroll_this_tick=snapshot.did_auto_scroll_this_tick,
                    ),
                    header_visible_grace=self.timing.header_visible_grace,
                    dashboard_signal_grace=self.timing.dashboard_signal_grace,
                )
                if snapshot.did_auto_scroll_this_tick:
                    emit("Auto-scroll to credits history requested; waiting")
                    interval = self.timing.scroll_wait
                elif wait:
                    interval = self.timing.history_wait_interval
                else:
                    interval = self.timing.poll_interval
                await self._wait(run, interval)
                continue

            # The chart hydrates after the metric text; give it a moment
            if remaining is not None and not has_chart:
                if now - run.metric_first_seen_at < self.timing.chart_hydration_grace:
                    await self._wait(run, self.timing.history_wait_interval)
                    continue

            run.state = LoopState.DONE
            result = normalize_snapshot(snapshot, self._now(), self.target.expected_host)
            emit(
                f"Dashboard ready after {run.polls} poll(s): "
                f"events={len(result.credit_events)} days={len(result.daily_breakdown)}"
            )
            return result

        run.state = LoopState.TIMED_OUT
        emit(f"Dashboard fetch timed out after {run.polls} poll(s)")
        self._dump(run, debug_dump, emit)
        raise FetchTimeout(run.last_text)

    async def probe(
        self,
        session: RenderSession,
        timeout: Optional[float] = None,
        log: Optional[LogCallback] = None
    ) -> ProbeResult:
        """Return the first stable, non-interstitial page state.

        Does not wait for data hydration. On deadline the result carries the
        last seen location and text with timed_out set; it does not raise.

        Raises:
            AuthenticationRequired: If the page shows an auth wall
            AutomationChallengeDetected: If an anti-automation page blocks access
        """
        emit = _emitter(log)
        run = FetchRun()
        self.last_run = run
        deadline = self._clock() + (timeout if timeout is not None else self.timing.probe_timeout)

        while self._clock() < deadline:
            run.state = LoopState.PROBING
            snapshot = await self.prober.execute_probe(session)
            run.remember(snapshot)
            run.last_location = snapshot.location or run.last_location

            if await self._handle_interstitial(run, snapshot, session, False, emit):
                continue

            run.state = LoopState.DONE
            return ProbeResult(
                location=snapshot.location,
                login_required=snapshot.login_required,
                workspace_picker=snapshot.workspace_picker,
                anti_automation_challenge=snapshot.anti_automation_challenge,
                signed_in_identity=snapshot.signed_in_identity,
                raw_text=snapshot.raw_text
            )

        run.state = LoopState.TIMED_OUT
        emit(f"Probe timed out (location={run.last_location})")
        return ProbeResult(location=run.last_location, raw_text=run.last_text, timed_out=True)

    async def _handle_interstitial(
        self,
        run: FetchRun,
        snapshot: ProbeSnapshot,
        session: RenderSession,
        debug_dump: bool,
        emit: LogCallback
    ) -> bool:
        """Act on interstitial states. Returns True when the tick is over."""
        if snapshot.workspace_picker:
            await self._wait(run, self.timing.workspace_wait)
            return True

        if self._has_drifted(snapshot.location):
            run.state = LoopState.FORCE_NAVIGATE
            emit(f"Left dashboard route ({snapshot.location}); reloading")
            try:
                await session.navigate(self.target.url, wait_for_load=False)
            except Exception as e:
                lib_logger.warning(f"Forced navigation failed: {type(e).__name__}: {e}")
            await self._wait(run, self.timing.force_navigate_wait)
            return True

        if snapshot.login_required:
            run.state = LoopState.FAIL_AUTH
            self._dump(run, debug_dump, emit)
            raise AuthenticationRequired()

        if snapshot.anti_automation_challenge:
            run.state = LoopState.FAIL_CHALLENGE
            self._dump(run, debug_dump, emit)
            raise AutomationChallengeDetected()

        return False

    def _has_drifted(self, location: Optional[str]) -> bool:
        return location is not None and self.target.route_marker not in location

    async def _wait(self, run: FetchRun, seconds: float) -> None:
        run.state = LoopState.WAITING
        await self._sleep(seconds)

    def _dump(self, run: FetchRun, debug_dump: bool, emit: LogCallback) -> None:
        if not debug_dump or self.diagnostics is None:
            return
        if not run.last_markup and not run.last_text:
            return
        self.diagnostics.dump(run.last_markup, run.last_text, emit)

    def _trace_transition(self, run: FetchRun, snapshot: ProbeSnapshot, emit: LogCallback) -> None:
        flags = (
            snapshot.login_required,
            snapshot.workspace_picker,
            snapshot.anti_automation_challenge,
        )
        if snapshot.location == run.last_location and flags == run.last_flags:
            return
        run.last_location = snapshot.location
        run.last_flags = flags
        emit(
            f"location={snapshot.location} login={flags[0]} "
            f"workspace={flags[1]} challenge={flags[2]}"
        )

    def _trace_signals(
        self,
        run: FetchRun,
        snapshot: ProbeSnapshot,
        remaining: Optional[float],
        has_chart: bool,
        emit: LogCallback
    ) -> None:
        debug = snapshot.chart_aggregate_debug
        if remaining is not None and not has_chart and debug and debug != run.last_chart_debug:
            run.last_chart_debug = debug
            emit(f"usage chart debug: {debug}")
        count = len(snapshot.purchase_link_raw)
        if count != run.last_purchase_count:
            run.last_purchase_count = count
            emit(f"purchase link candidates: {count}")


def _emitter(log: Optional[LogCallback]) -> LogCallback:
    def emit(message: str) -> None:
        lib_logger.debug(message)
        if log is not None:
            log(f"[scout] {message}")
    return emit

