"""Foodbank client import and backup/restore core."""

__version__ = "0.1.0"
