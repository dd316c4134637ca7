"""
Refund settlement progress.

Each approved cancellation gets one row recording which settlement steps
have completed. Every step stamps its column in the same database
transaction as its own effects, so an interrupted approval can be resumed
without repeating finished work.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel


class RefundSettlement(BaseModel):
    """
    Settlement steps of one approved cancellation.

    Attributes:
        order_id: Approved order (one settlement per order)
        vendor_id: Vendor whose balance is reversed
        refund_id: Gateway refund identifier, when a refund was issued
        amount: Amount refunded and reversed
        requires_refund: Payment had been captured, so money is returned
        approved_by: Actor who approved the cancellation
        gateway_refunded_at: Gateway refund created
        stock_restored_at: Ordered quantities returned to stock
        balance_reversed_at: Vendor balance reversal recorded
        completed_at: All steps finished
        last_error: Error from the last failed step
    """

    __tablename__ = "refund_settlements"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Approved order",
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Vendor whose balance is reversed",
    )

    refund_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway refund identifier",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Amount refunded",
    )

    requires_refund: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Captured payment is returned to the customer",
    )

    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    gateway_refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    stock_restored_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    balance_reversed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None
