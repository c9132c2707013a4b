"""Partitioned metrics aggregation engine for advertising insights."""

__version__ = "0.1.0"
