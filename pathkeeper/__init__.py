"""Pathkeeper - Pathfinder 2e campaign manager."""

__version__ = "0.1.0"
