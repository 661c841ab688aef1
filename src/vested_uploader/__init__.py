"""Batch uploader of vested balances to an ink! vesting contract."""

__version__ = "0.1.0"
