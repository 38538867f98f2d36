"""Bulk course catalog import: parse, validate, reconcile and commit."""

__version__ = "0.3.0"
