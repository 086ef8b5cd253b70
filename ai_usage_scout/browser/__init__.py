"""
Browser-side pieces: the probe script, credential scopes and the
Playwright backend.

The Playwright backend is imported explicitly from
ai_usage_scout.browser.playwright_backend.
"""
