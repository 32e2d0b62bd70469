"""Charity draw settlement and billing reconciliation."""

__version__ = "0.1.0"
