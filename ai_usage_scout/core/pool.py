"""
Session pool keyed by account identity.

Amortizes rendering-session setup per identity while guaranteeing that at
most one caller drives a resident session at a time.

Policy:
1. One resident session per identity, created lazily on first acquire
2. A busy resident session is never shared or waited on; the caller gets
   an ephemeral session that is destroyed on release
3. Idle resident sessions are pruned opportunistically on acquire/release
4. A session that fails setup never stays in the pool

The registry is only mutated from the event-loop thread, so no lock is
taken. A pool must not be shared between event loops or threads.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Hashable, Optional

from .errors import SessionSetupFailed
from .session import RenderSession, SessionFactory

lib_logger = logging.getLogger("ai_usage_scout")

DEFAULT_IDLE_TIMEOUT = 10 * 60


@dataclass
class SessionEntry:
    """Resident session bookkeeping. Owned exclusively by the pool."""
    session: Optional[RenderSession]
    created_at: float
    last_used_at: float
    busy: bool = False
    closed: bool = False

    async def destroy(self) -> None:
        """Close the session exactly once."""
        if self.closed:
            return
        self.closed = True
        if self.session is not None:
            await _close_quietly(self.session)


@dataclass
class Lease:
    """Exclusive use of a session for one fetch."""
    identity_key: Hashable
    session: RenderSession
    ephemeral: bool
    _entry: Optional[SessionEntry] = field(default=None, repr=False)
    released: bool = False


class SessionPool:
    """Pool of rendering sessions, one resident session per identity."""

    def __init__(
        self,
        factory: SessionFactory,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize the pool.

        Args:
            factory: Session-construction primitive of the hosting environment
            idle_timeout: Seconds a free resident session may stay unused
            clock: Monotonic time source, in seconds
        """
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")
        self.factory = factory
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._entries: Dict[Hashable, SessionEntry] = {}

    @property
    def resident_count(self) -> int:
        return len(self._entries)

    def is_resident(self, identity_key: Hashable) -> bool:
        return identity_key in self._entries

    async def acquire(self, identity_key: Hashable, target_url: str) -> Lease:
        """Lease a session for identity_key, navigated to target_url.

        Never waits for another fetch of the same identity: when the
        resident session is busy an ephemeral session is built instead.

        Raises:
            SessionSetupFailed: If the session cannot be created or navigated
        """
        now = self._clock()
        await self.prune(now)

        entry = self._entries.get(identity_key)
        if entry is not None and entry.busy:
            lib_logger.debug("Resident session busy; using an ephemeral session")
            return await self._acquire_ephemeral(identity_key, target_url)

        if entry is not None:
            entry.busy = True
            entry.last_used_at = now
            try:
                await entry.session.navigate(target_url)
            except asyncio.CancelledError:
                await self._discard(identity_key, entry)
                raise
            except Exception as e:
                lib_logger.warning(f"Re-navigation of resident session failed; evicting it: {e}")
                await self._discard(identity_key, entry)
                raise SessionSetupFailed(identity_key, e) from e
            return Lease(identity_key=identity_key, session=entry.session, ephemeral=False, _entry=entry)

        # Register before the first await so a concurrent acquire sees it busy
        entry = SessionEntry(session=None, created_at=now, last_used_at=now, busy=True)
        self._entries[identity_key] = entry
        try:
            entry.session = await self.factory.create(identity_key)
            if entry.closed:
                # destroy() already ran while the session was still missing
                await _close_quietly(entry.session)
                raise RuntimeError("session evicted during setup")
            await entry.session.navigate(target_url)
        except asyncio.CancelledError:
            await self._discard(identity_key, entry)
            raise
        except Exception as e:
            lib_logger.warning(f"Rendering session setup failed: {type(e).__name__}: {e}")
            await self._discard(identity_key, entry)
            raise SessionSetupFailed(identity_key, e) from e

        lib_logger.debug(f"Created resident session ({self.resident_count} resident)")
        return Lease(identity_key=identity_key, session=entry.session, ephemeral=False, _entry=entry)

    async def release(self, lease: Lease) -> None:
        """Return a lease. Ephemeral sessions are destroyed immediately."""
        if lease.released:
            return
        lease.released = True

        if lease.ephemeral:
            await _close_quietly(lease.session)
        elif lease._entry is not None and not lease._entry.closed:
            lease._entry.busy = False
            lease._entry.last_used_at = self._clock()

        await self.prune(self._clock())

    async def prune(self, now: float) -> int:
        """Destroy free resident sessions idle for longer than idle_timeout.

        Busy entries are never touched, however old.

        Returns:
            Number of sessions destroyed
        """
        expired = [
            (key, entry) for key, entry in self._entries.items()
            if not entry.busy and now - entry.last_used_at > self.idle_timeout
        ]
        for key, entry in expired:
            del self._entries[key]
            await entry.destroy()
        if expired:
            lib_logger.debug(f"Pruned {len(expired)} idle session(s)")
        return len(expired)

    async def evict(self, identity_key: Hashable) -> bool:
        """Force-destroy the resident session for identity_key, busy or not.

        Returns:
            True if a resident session existed
        """
        entry = self._entries.pop(identity_key, None)
        if entry is None:
            return False
        await entry.destroy()
        lib_logger.debug("Evicted resident session")
        return True

    async def close(self) -> None:
        """Destroy every resident session."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            await entry.destroy()

    @asynccontextmanager
    async def lease(self, identity_key: Hashable, target_url: str) -> AsyncIterator[Lease]:
        """Acquire a lease for the duration of a with-block."""
        lease = await self.acquire(identity_key, target_url)
        try:
            yield lease
        finally:
            await self.release(lease)

    async def _acquire_ephemeral(self, identity_key: Hashable, target_url: str) -> Lease:
        session = None
        try:
            session = await self.factory.create(identity_key)
            await session.navigate(target_url)
        except asyncio.CancelledError:
            if session is not None:
                await _close_quietly(session)
            raise
        except Exception as e:
            if session is not None:
                await _close_quietly(session)
            raise SessionSetupFailed(identity_key, e) from e
        return Lease(identity_key=identity_key, session=session, ephemeral=True)

    async def _discard(self, identity_key: Hashable, entry: SessionEntry) -> None:
        if self._entries.get(identity_key) is entry:
            del self._entries[identity_key]
        await entry.destroy()


async def _close_quietly(session: RenderSession) -> None:
    try:
        await session.close()
    except Exception as e:
        lib_logger.warning(f"Failed to close rendering session: {type(e).__name__}: {e}")
