"""Pagewatch - webpage value monitoring engine."""

__version__ = "1.0.0"
