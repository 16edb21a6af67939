"""Stripe subscription to Ghost membership reconciliation service."""

__version__ = "0.1.0"
