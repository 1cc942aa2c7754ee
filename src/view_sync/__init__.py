"""Resilient view-count synchronization and caching layer."""

__version__ = "0.1.0"
