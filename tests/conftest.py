"""
Shared fakes for driving the scout without a browser.
"""

from typing import List, Optional

import pytest

from ai_usage_scout.core.prober import PageProber, ProbeSnapshot
from ai_usage_scout.core.session import RenderSession, SessionFactory

DASHBOARD_URL = "https://chatgpt.com/codex/settings/usage"


class FakeClock:
    """Monotonic clock whose sleep advances time instead of blocking."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeSession(RenderSession):
    """In-memory session recording navigations and closes."""

    def __init__(self, identity_key, serial: int, fail_navigate: bool = False):
        self.identity_key = identity_key
        self.serial = serial
        self.fail_navigate = fail_navigate
        self.navigations: List[tuple] = []
        self.close_calls = 0
        self._location: Optional[str] = None

    @property
    def location(self) -> Optional[str]:
        return self._location

    async def navigate(self, url: str, wait_for_load: bool = True) -> None:
        self.navigations.append((url, wait_for_load))
        if self.fail_navigate:
            raise ConnectionError("navigation failed")
        self._location = url

    async def evaluate(self, script: str):
        return None

    async def close(self) -> None:
        self.close_calls += 1

    @property
    def closed(self) -> bool:
        return self.close_calls > 0


class FakeFactory(SessionFactory):
    """Session factory handing out numbered FakeSessions."""

    def __init__(self):
        self.created: List[FakeSession] = []
        self.fail_create = False
        self.fail_navigate = False
        self.close_calls = 0

    async def create(self, identity_key) -> RenderSession:
        if self.fail_create:
            raise RuntimeError("browser unavailable")
        session = FakeSession(identity_key, len(self.created), fail_navigate=self.fail_navigate)
        self.created.append(session)
        return session

    async def close(self) -> None:
        self.close_calls += 1


class ScriptedProber(PageProber):
    """Returns scripted snapshots in order, repeating the last one."""

    def __init__(self, snapshots: List[ProbeSnapshot]):
        self.snapshots = list(snapshots)
        self.calls = 0

    async def execute_probe(self, session: RenderSession) -> ProbeSnapshot:
        index = min(self.calls, len(self.snapshots) - 1)
        self.calls += 1
        return self.snapshots[index]


@pytest.fixture
def clock():
    """Fake monotonic clock starting at zero."""
    return FakeClock()


@pytest.fixture
def factory():
    """Fake session factory."""
    return FakeFactory()
