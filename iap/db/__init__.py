"""
Database Module
===============

Provides database engine/session management and the base model.
"""

from iap.db.base import Base
from iap.db.session import close_db, create_engine, create_session_factory, init_db

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]
