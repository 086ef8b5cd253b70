"""
Core modules for AI Usage Scout.

This package contains the session pool, the polling navigator, the page
prober and the snapshot normalizer.
"""
