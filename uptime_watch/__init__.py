"""Endpoint availability monitor with Telegram alerts and statistics queries."""

__version__ = "0.1.0"
