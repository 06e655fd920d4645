"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations.
"""

from iap.models.subscription import Platform, StoreEnvironment, Subscription

__all__ = [
    "Subscription",
    "Platform",
    "StoreEnvironment",
]
