"""Chama contribution-cycle ledger and balance reconciliation backend."""

__version__ = "0.1.0"
