"""Thin HTTP clients for external AI services."""
