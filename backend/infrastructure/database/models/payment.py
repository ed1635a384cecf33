"""
Payment transaction and audit log database models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, utcnow


class PaymentStatus(str, Enum):
    """Transaction and audit statuses written by this service.

    PayPal order statuses (APPROVED, CANCELLED, ...) and ``HTTP_ERROR_<code>``
    values are stored verbatim alongside these.
    """

    COMPLETED = "COMPLETED"
    CREDITS_RECOVERED = "CREDITS_RECOVERED"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    JSON_PARSE_ERROR = "JSON_PARSE_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class PaymentTransaction(Base, TimestampMixin):
    """A payment order seen by the service, successful or not."""

    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity provider subject of the payer
    user_id: Mapped[str] = mapped_column(String(50), nullable=False)

    order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    capture_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    amount: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)

    raw_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    """
    Structure for credited orders:
    {
        "packageId": 2,
        "packageName": "Popular Pack",
        "credits": 7,
        "requestId": "1a2b3c4d",
        "provider": "paypal" | "polar",
        ...provider data
    }
    """

    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    audit_logs: Mapped[list["PaymentAuditLog"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_payment_transactions_user_id", "user_id"),
        Index("ix_payment_transactions_status", "status"),
        Index("ix_payment_transactions_verified_at", "verified_at"),
        Index("ix_payment_transactions_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PaymentTransaction(order_id={self.order_id}, status={self.status})>"


class PaymentAuditLog(Base):
    """Status transition recorded against a payment transaction."""

    __tablename__ = "payment_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    transaction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("payment_transactions.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )

    previous_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(50), nullable=False)
    """Values: 'system', 'paypal', 'polar', 'recovery_system'"""
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    transaction: Mapped[PaymentTransaction] = relationship(back_populates="audit_logs")

    __table_args__ = (
        Index("ix_payment_audit_logs_transaction_id", "transaction_id"),
        Index("ix_payment_audit_logs_new_status", "new_status"),
        Index("ix_payment_audit_logs_occurred_at", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentAuditLog(transaction_id={self.transaction_id}, "
            f"{self.previous_status} -> {self.new_status})>"
        )
