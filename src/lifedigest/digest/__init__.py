"""Digest orchestration: digesters, coordinator and background worker."""
