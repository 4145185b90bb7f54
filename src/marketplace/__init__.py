"""marketplace - cart, order and stock reconciliation service."""

__version__ = "0.1.0"
