"""
AI Usage Scout.

Headless extraction of usage, credits and billing data from a logged-in
AI service dashboard.
"""
