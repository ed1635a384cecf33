"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin, as_utc, utcnow
from .compensation import CompensationEvent, CompensationEventType, CompensationStatus
from .payment import PaymentAuditLog, PaymentStatus, PaymentTransaction
from .story import Story
from .user import DEFAULT_STARTING_CREDITS, User

__all__ = [
    "Base",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    "User",
    "DEFAULT_STARTING_CREDITS",
    "Story",
    "PaymentTransaction",
    "PaymentAuditLog",
    "PaymentStatus",
    "CompensationEvent",
    "CompensationEventType",
    "CompensationStatus",
]
