"""
Isolated credential scopes.

Each identity gets its own browser context built from its own Playwright
storage-state file, so sessions of different accounts never share cookies.
The files are written by the credential collaborator; this module only
reads and clears them.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Hashable

lib_logger = logging.getLogger("ai_usage_scout")


def normalize_identity_key(identity_key: Hashable) -> Hashable:
    """Canonical form of an identity key. E-mail style strings are case-insensitive."""
    if isinstance(identity_key, str):
        return identity_key.strip().lower()
    return identity_key


class ScopeProvider(ABC):
    """Supplies the isolated storage scope of an identity."""

    @abstractmethod
    def isolated_scope(self, identity_key: Hashable) -> Dict[str, Any]:
        """Keyword arguments for a new browser context bound to identity_key."""

    def clear(self, identity_key: Hashable) -> bool:
        """Forget stored credentials for identity_key. Returns True if any existed."""
        return False


class StorageStateScopeProvider(ScopeProvider):
    """Scope provider backed by one storage-state JSON file per identity."""

    def __init__(self, directory: str):
        self.directory = Path(directory).expanduser()

    def path_for(self, identity_key: Hashable) -> Path:
        """Storage-state path of identity_key. Keys are hashed, never stored in clear."""
        key = str(normalize_identity_key(identity_key))
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest[:16]}.json"

    def isolated_scope(self, identity_key: Hashable) -> Dict[str, Any]:
        path = self.path_for(identity_key)
        if not path.exists():
            lib_logger.debug(f"No stored session state at {path}; using an empty scope")
            return {}
        return {"storage_state": str(path)}

    def clear(self, identity_key: Hashable) -> bool:
        path = self.path_for(identity_key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
