"""
SDK for AI Usage Scout.

Provides programmatic access to dashboard extraction.
"""

from .scout import UsageScout, build_scout

__all__ = ["UsageScout", "build_scout"]
