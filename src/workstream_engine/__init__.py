"""Workstream clustering and incremental-assignment engine."""

__version__ = "0.1.0"
