"""
Rendering session capability.

The core only needs a handful of operations from a headless rendering
backend; everything engine-specific lives behind these interfaces.
"""

from abc import ABC, abstractmethod
from typing import Any, Hashable, Optional


class RenderSession(ABC):
    """A live page inside an isolated credential scope."""

    @property
    @abstractmethod
    def location(self) -> Optional[str]:
        """Current URL of the page, or None before the first navigation."""

    @abstractmethod
    async def navigate(self, url: str, wait_for_load: bool = True) -> None:
        """Load url.

        With wait_for_load the call returns once the document has loaded and
        raises on navigation failure. Without it the call returns as soon as
        the navigation has been committed.
        """

    @abstractmethod
    async def evaluate(self, script: str) -> Any:
        """Run script in the page and return its JSON-compatible result."""

    @abstractmethod
    async def close(self) -> None:
        """Destroy the session and its rendering surface."""


class SessionFactory(ABC):
    """Session-construction primitive supplied by the hosting environment."""

    @abstractmethod
    async def create(self, identity_key: Hashable) -> RenderSession:
        """Construct a new session bound to the identity's isolated scope."""

    async def close(self) -> None:
        """Release resources shared by the sessions this factory built."""
