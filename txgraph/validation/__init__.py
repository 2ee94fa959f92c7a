"""Validation package."""

from txgraph.validation.validator import TransactionValidator

__all__ = ["TransactionValidator"]
