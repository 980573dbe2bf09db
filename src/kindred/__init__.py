"""Kindred - session response engine for companion chat."""

__version__ = "0.1.0"
