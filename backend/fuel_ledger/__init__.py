"""Fuel ledger and reconciliation backend."""

__version__ = "0.1.0"
