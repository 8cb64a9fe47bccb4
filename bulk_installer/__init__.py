"""Bulk plugin installer with per-plugin recovery and whole-batch rollback."""

__version__ = "1.0.0"
