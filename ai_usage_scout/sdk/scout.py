"""
Usage scout facade.

Ties the session pool and the navigator together behind the two calls a
host application needs: fetch the dashboard, or probe what the page shows.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Hashable, Optional

from ..browser.playwright_backend import PlaywrightSessionFactory
from ..browser.scope import ScopeProvider, StorageStateScopeProvider, normalize_identity_key
from ..config.loader import ScoutConfig, default_config
from ..core.navigator import DashboardNavigator, LogCallback
from ..core.pool import SessionPool
from ..core.prober import PageProber, ScriptPageProber
from ..core.session import SessionFactory
from ..storage.diagnostics import DiagnosticSink
from ..storage.models import ProbeResult, UsageSnapshot

lib_logger = logging.getLogger("ai_usage_scout")


class UsageScout:
    """Fetches usage dashboards for any number of identities.

    One resident rendering session is kept per identity and reused across
    fetches; concurrent fetches for the same identity each get their own
    session. String identity keys are compared case-insensitively. Must be
    used from a single event loop.
    """

    def __init__(
        self,
        config: Optional[ScoutConfig] = None,
        factory: Optional[SessionFactory] = None,
        scopes: Optional[ScopeProvider] = None,
        prober: Optional[PageProber] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = datetime.now
    ):
        """Initialize the scout.

        Args:
            config: Scout configuration (defaults to the built-in one)
            factory: Session factory (defaults to a Playwright factory)
            scopes: Credential scopes (defaults to storage-state files in
                config.browser.storage_dir)
            prober: Page prober (defaults to the bundled probe script)
            clock: Monotonic time source shared by pool and navigator
            sleep: Coroutine used to suspend between polls
            now: Wall clock for snapshot timestamps
        """
        self.config = config or default_config()
        self.scopes = scopes or StorageStateScopeProvider(str(self.config.browser.storage_path))
        self.factory = factory or PlaywrightSessionFactory(
            self.scopes,
            headless=self.config.browser.headless,
            viewport_width=self.config.browser.viewport_width,
            viewport_height=self.config.browser.viewport_height
        )
        self.pool = SessionPool(
            self.factory,
            idle_timeout=self.config.timing.idle_timeout,
            clock=clock
        )
        self.navigator = DashboardNavigator(
            prober or ScriptPageProber(),
            target=self.config.target,
            timing=self.config.timing,
            diagnostics=DiagnosticSink(self.config.diagnostics.directory),
            clock=clock,
            sleep=sleep,
            now=now
        )

    async def fetch_dashboard(
        self,
        identity_key: Hashable,
        timeout: Optional[float] = None,
        debug_dump: bool = False,
        log: Optional[LogCallback] = None
    ) -> UsageSnapshot:
        """Fetch a complete usage snapshot for identity_key.

        Args:
            identity_key: Account identity whose credential scope is used
            timeout: Seconds before giving up (defaults to timing.fetch_timeout)
            debug_dump: Persist the last page state on failure
            log: Optional callback receiving trace messages

        Returns:
            Complete UsageSnapshot

        Raises:
            SessionSetupFailed: If no session could be set up
            AuthenticationRequired: If the dashboard shows an auth wall
            AutomationChallengeDetected: If an anti-automation page blocks access
            FetchTimeout: If the dashboard did not hydrate in time
        """
        identity_key = normalize_identity_key(identity_key)
        async with self.pool.lease(identity_key, self.config.target.url) as lease:
            if lease.ephemeral:
                lib_logger.info("Resident session busy; fetching on an ephemeral session")
            return await self.navigator.fetch_dashboard(
                lease.session,
                timeout=timeout,
                debug_dump=debug_dump,
                log=log
            )

    async def probe(
        self,
        identity_key: Hashable,
        timeout: Optional[float] = None,
        log: Optional[LogCallback] = None
    ) -> ProbeResult:
        """Report the first stable page state for identity_key.

        Raises:
            SessionSetupFailed: If no session could be set up
            AuthenticationRequired: If the dashboard shows an auth wall
            AutomationChallengeDetected: If an anti-automation page blocks access
        """
        identity_key = normalize_identity_key(identity_key)
        async with self.pool.lease(identity_key, self.config.target.url) as lease:
            return await self.navigator.probe(lease.session, timeout=timeout, log=log)

    async def invalidate(self, identity_key: Hashable, clear_credentials: bool = False) -> bool:
        """Drop the resident session of identity_key, e.g. after a re-login.

        Args:
            identity_key: Account identity
            clear_credentials: Also forget the stored credential scope

        Returns:
            True if a resident session was destroyed
        """
        identity_key = normalize_identity_key(identity_key)
        evicted = await self.pool.evict(identity_key)
        if clear_credentials and self.scopes.clear(identity_key):
            lib_logger.info("Cleared stored credentials")
        return evicted

    async def close(self) -> None:
        """Destroy all sessions and shut the rendering backend down."""
        await self.pool.close()
        await self.factory.close()

    async def __aenter__(self) -> "UsageScout":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_scout(config: Optional[ScoutConfig] = None) -> UsageScout:
    """Create a UsageScout backed by Playwright."""
    return UsageScout(config)
