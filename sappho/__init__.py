"""Sappho backup and restore engine."""

__version__ = "1.0.0"
