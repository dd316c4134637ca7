"""
Order models for the marketplace order lifecycle.

An order is one customer purchase from one vendor. Its lifecycle is carried by
four correlated columns (fulfillment status, payment status, cancellation
status and refund status); the legal combinations and the transitions between
them are owned by ``luzimarket.services.orders``, never by direct assignment
from request handlers.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel, JSONType, enum_column


class OrderStatus(str, Enum):
    """
    Fulfillment status of an order.

    Attributes:
        PENDING: Created, awaiting payment
        PAID: Payment captured
        SHIPPED: Vendor handed the parcel to a carrier
        DELIVERED: Carrier reported delivery
        CANCELLED: Cancelled before any payment was captured
        REFUNDED: Cancelled after payment, money returned (or being returned)
    """

    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid order status: {value}. Valid values are: {valid_values}"
            )


class PaymentStatus(str, Enum):
    """Payment status as reported by the payment gateway."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    REFUNDED = "refunded"
    FAILED = "failed"


class CancellationStatus(str, Enum):
    """Approval workflow state of a cancellation request."""

    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefundStatus(str, Enum):
    """Gateway confirmation state of an issued refund."""

    NONE = "none"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Order(BaseModel):
    """
    Customer order placed with a single vendor.

    Attributes:
        id: Unique order identifier (UUID)
        order_number: Human-readable order number shown to customers
        vendor_id: Vendor fulfilling the order
        user_id: Registered customer (mutually exclusive with guest_email)
        guest_email: Guest checkout email (mutually exclusive with user_id)
        customer_email: Address used for notifications
        customer_name: Name used in notifications
        subtotal: Items subtotal
        tax: Tax amount
        shipping: Shipping amount
        total: Amount charged to the customer
        currency: ISO 4217 currency code
        status: Fulfillment status
        payment_status: Payment status
        cancellation_status: Cancellation approval state
        refund_status: Refund confirmation state
        payment_intent_id: Gateway payment intent (set once)
        refund_id: Gateway refund (set at most once)
        cancellation_reason: Reason supplied with the cancellation request
        cancelled_by: Actor who requested the cancellation
        cancelled_at: When the cancellation was approved
        refunded_at: When the gateway confirmed the refund
        notes: Operator notes
        tracking_number: Carrier tracking number
        carrier: Carrier code
        tracking_url: Public carrier tracking URL
        shipped_at: When tracking was added
        estimated_delivery_date: Carrier estimate
        actual_delivery_date: When delivery was recorded
        tracking_history: Append-only list of carrier events
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Vendor fulfilling the order",
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
        comment="Registered customer identifier",
    )

    guest_email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Guest checkout email",
    )

    customer_email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Notification email address",
    )

    customer_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Customer display name",
    )

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Items subtotal",
    )

    tax: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Tax amount",
    )

    shipping: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Shipping amount",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Amount charged to the customer",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="MXN",
        comment="ISO 4217 currency code",
    )

    # Lifecycle
    status: Mapped[OrderStatus] = mapped_column(
        enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Fulfillment status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus, "order_payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Payment status",
    )

    cancellation_status: Mapped[CancellationStatus] = mapped_column(
        enum_column(CancellationStatus, "cancellation_status"),
        nullable=False,
        default=CancellationStatus.NONE,
        comment="Cancellation approval state",
    )

    refund_status: Mapped[RefundStatus] = mapped_column(
        enum_column(RefundStatus, "refund_status"),
        nullable=False,
        default=RefundStatus.NONE,
        comment="Refund confirmation state",
    )

    # Gateway linkage
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Gateway payment intent identifier",
    )

    refund_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Gateway refund identifier",
    )

    # Cancellation details
    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Reason supplied with the cancellation request",
    )

    cancelled_by: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Actor who requested the cancellation",
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the cancellation was approved",
    )

    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the gateway confirmed the refund",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Operator notes",
    )

    # Shipping
    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Carrier tracking number",
    )

    carrier: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Carrier code",
    )

    tracking_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Public carrier tracking URL",
    )

    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When tracking was added",
    )

    estimated_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Carrier delivery estimate",
    )

    actual_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When delivery was recorded",
    )

    tracking_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Append-only carrier events",
    )

    __table_args__ = (
        Index("ix_orders_vendor_status", "vendor_id", "status"),
        Index("ix_orders_cancellation_status", "cancellation_status"),
        CheckConstraint(
            "(user_id IS NULL) <> (guest_email IS NULL)",
            name="ck_orders_user_xor_guest",
        ),
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
    )

    @property
    def notification_email(self) -> Optional[str]:
        """Address customer notifications go to."""
        return self.customer_email or self.guest_email

    def link_payment_intent(self, payment_intent_id: str) -> None:
        """
        Attach the gateway payment intent.

        Raises:
            ValueError: If a different intent is already linked
        """
        if self.payment_intent_id and self.payment_intent_id != payment_intent_id:
            raise ValueError(
                f"Order {self.order_number} is already linked to payment intent "
                f"{self.payment_intent_id}"
            )
        self.payment_intent_id = payment_intent_id

    def link_refund(self, refund_id: str) -> None:
        """
        Attach the gateway refund.

        Raises:
            ValueError: If a different refund is already linked
        """
        if self.refund_id and self.refund_id != refund_id:
            raise ValueError(
                f"Order {self.order_number} already has refund {self.refund_id}"
            )
        self.refund_id = refund_id

    def append_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note


class OrderItem(BaseModel):
    """
    Line item of an order.

    Attributes:
        order_id: Parent order
        product_id: Ordered product
        quantity: Units ordered
        price: Unit price at checkout
        total: Line total
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Parent order identifier",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Ordered product identifier",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Units ordered",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Unit price at checkout",
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Line total",
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )


class OrderStatusHistory(BaseModel):
    """
    Audit trail of applied lifecycle transitions.

    Attributes:
        order_id: Order the transition was applied to
        event: Lifecycle event name
        from_state: Composite state before the transition
        to_state: Composite state after the transition
        changed_by: Actor identifier (user, vendor, admin or "stripe-webhook")
        reason: Optional free-text reason
        metadata_: Additional context
    """

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Order identifier",
    )

    event: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Lifecycle event name",
    )

    from_state: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Composite state before the transition",
    )

    to_state: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Composite state after the transition",
    )

    changed_by: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Actor who triggered the transition",
    )

    reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Reason for the transition",
    )

    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="Additional context",
    )

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )
