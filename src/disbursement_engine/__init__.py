"""Batch disbursement engine with gateway reconciliation."""

__version__ = "0.1.0"
