"""Recurwise: transaction classification and recurring payment detection."""

__version__ = "0.1.0"
