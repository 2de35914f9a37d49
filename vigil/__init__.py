"""Vigil: staleness detection and cascading invalidation for decisions."""

__version__ = "0.1.0"
