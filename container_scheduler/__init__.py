"""Cron-driven container action scheduler."""

__version__ = "1.0.0"
