"""Wallet Tracker: personal finance ledger API."""

__version__ = "1.0.0"
