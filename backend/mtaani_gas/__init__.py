"""Mtaani Gas order fulfillment backend."""

__version__ = "1.0.0"
