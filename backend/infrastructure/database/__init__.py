"""Database engine, sessions and schema setup."""

from .connection import async_session_maker, close_db, engine, get_db, get_db_context, init_db
from .models import Base, PaymentTransaction, Story, User

__all__ = [
    "Base",
    "User",
    "Story",
    "PaymentTransaction",
    "engine",
    "async_session_maker",
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
]
