"""Result models and diagnostic artifacts."""
