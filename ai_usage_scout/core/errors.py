"""
Error taxonomy for dashboard extraction.

Every terminal outcome of a fetch other than a finished snapshot is one
of these exceptions.
"""

from typing import Hashable, Optional


class ScoutError(Exception):
    """Base class for all extraction failures."""


class AuthenticationRequired(ScoutError):
    """The page shows an auth wall, or the probe routine could not run."""
    def __init__(self, message: str = "Dashboard access requires login."):
        super().__init__(message)


class AutomationChallengeDetected(ScoutError):
    """An anti-automation interstitial blocks the dashboard."""
    def __init__(self, message: str = "Anti-automation challenge detected in rendering session."):
        super().__init__(message)


class FetchTimeout(ScoutError):
    """The deadline elapsed before the dashboard finished hydrating."""
    def __init__(self, last_raw_text: Optional[str] = None):
        self.last_raw_text = last_raw_text or ""
        sample = self.last_raw_text[:200]
        super().__init__(f"Dashboard data not found before deadline. Body sample: {sample}")


class SessionSetupFailed(ScoutError):
    """A rendering session could not be constructed or navigated."""
    def __init__(self, identity_key: Hashable, cause: Optional[BaseException] = None):
        self.identity_key = identity_key
        self.cause = cause
        detail = f": {type(cause).__name__}: {cause}" if cause is not None else ""
        super().__init__(f"Failed to set up rendering session{detail}")
