"""Shipping label model."""

import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel, JSONType


class ShippingLabel(BaseModel):
    """
    Purchased shipping label. Immutable once created.

    Attributes:
        order_id: Shipped order
        vendor_id: Vendor that bought the label
        carrier: Carrier code
        service_type: Carrier service level
        label_url: Printable label URL
        tracking_number: Tracking number printed on the label
        cost: Label cost
        weight: Parcel weight in kilograms
        dimensions: ``{"length", "width", "height"}`` in centimeters
    """

    __tablename__ = "shipping_labels"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Shipped order",
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        comment="Vendor that bought the label",
    )

    carrier: Mapped[str] = mapped_column(String(50), nullable=False)
    service_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    label_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Label cost",
    )

    weight: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=8, scale=3),
        nullable=True,
        comment="Parcel weight in kilograms",
    )

    dimensions: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Parcel dimensions in centimeters",
    )
