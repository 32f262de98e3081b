"""Adapters for external services."""
