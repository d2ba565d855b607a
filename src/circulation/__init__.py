"""Circulation: lending ledger for physical library books."""

__version__ = "0.1.0"
