"""Storefront order fulfillment service."""

__version__ = "1.0.0"
