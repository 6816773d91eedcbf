"""Collateral-backed installment credit core."""

__version__ = "0.3.0"
