"""Configuration loading for AI Usage Scout."""
