"""
Database package.

- base: declarative base, mixins and portable column types
- connection: async engine and session management
- models: ORM models for the fulfillment pipeline
"""

__all__ = []
