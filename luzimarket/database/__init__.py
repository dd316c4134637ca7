"""
Database package.

- base: declarative base and model mixins
- connection: async engine, session factory and FastAPI dependency
- models: ORM models for orders, ledger, inventory and settlement records
"""

__all__ = []
