"""Compass: guided crisis-support conversation flows."""

__version__ = "0.1.0"
