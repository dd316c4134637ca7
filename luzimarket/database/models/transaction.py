"""
Vendor ledger transaction model.

Transactions are append-only. After insert only ``status`` and
``completed_at`` change (a refund reversal is confirmed asynchronously by the
gateway webhook).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel, JSONType, enum_column


class TransactionType(str, Enum):
    """Kind of ledger entry."""

    SALE = "sale"
    REFUND = "refund"
    PAYOUT = "payout"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    """Settlement status of a ledger entry."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(BaseModel):
    """
    Immutable vendor ledger entry.

    Attributes:
        vendor_id: Vendor whose balance changed
        order_id: Order the entry relates to, if any
        type: Entry kind
        amount: Signed amount (negative for refunds and payouts)
        currency: ISO 4217 currency code
        status: Settlement status
        description: Human-readable description
        metadata_: Additional context
        stripe_charge_id: Gateway payment reference for sales
        stripe_refund_id: Gateway refund reference for refunds
        stripe_payout_id: Gateway payout reference for payouts
        balance_transaction: ``{"before": {...}, "after": {...}}`` snapshots
        completed_at: When the entry reached ``completed``
    """

    __tablename__ = "transactions"

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Vendor whose balance changed",
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Related order",
    )

    type: Mapped[TransactionType] = mapped_column(
        enum_column(TransactionType, "transaction_type"),
        nullable=False,
        comment="Entry kind",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Signed amount",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="MXN",
        comment="ISO 4217 currency code",
    )

    status: Mapped[TransactionStatus] = mapped_column(
        enum_column(TransactionStatus, "transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING,
        comment="Settlement status",
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Human-readable description",
    )

    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="Additional context",
    )

    stripe_charge_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway payment reference",
    )

    stripe_refund_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Gateway refund reference",
    )

    stripe_payout_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway payout reference",
    )

    balance_transaction: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Balance snapshot before and after the entry",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the entry was completed",
    )

    __table_args__ = (
        Index("ix_transactions_vendor_created", "vendor_id", "created_at"),
        Index("ix_transactions_vendor_type", "vendor_id", "type"),
    )
