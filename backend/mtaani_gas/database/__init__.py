"""
Database package.

- base: declarative base and mixins
- connection: async engine and session management
- models: ORM models for users, catalog, cart, orders and payments
"""

__all__ = []
