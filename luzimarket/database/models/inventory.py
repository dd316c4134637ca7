"""
Inventory alert model.

One alert per (vendor, product, alert type). The periodic sweep stamps
``last_triggered_at`` whenever it notifies, which debounces repeat
notifications for the configured cooldown.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel, enum_column


class AlertType(str, Enum):
    """Condition an inventory alert watches for."""

    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class InventoryAlert(BaseModel):
    """
    Vendor-configured stock threshold watch.

    Attributes:
        vendor_id: Owning vendor
        product_id: Watched product
        alert_type: Low stock or out of stock
        threshold: Units at or below which a low-stock alert fires
        is_active: Alert participates in the sweep
        last_triggered_at: Last notification time (debounce marker)
    """

    __tablename__ = "inventory_alerts"

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning vendor",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        comment="Watched product",
    )

    alert_type: Mapped[AlertType] = mapped_column(
        enum_column(AlertType, "inventory_alert_type"),
        nullable=False,
        comment="Watched condition",
    )

    threshold: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=5,
        comment="Low-stock threshold in units",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Alert participates in the sweep",
    )

    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last notification time",
    )

    __table_args__ = (
        UniqueConstraint(
            "vendor_id",
            "product_id",
            "alert_type",
            name="uq_inventory_alerts_vendor_product_type",
        ),
        CheckConstraint("threshold >= 0", name="ck_inventory_alerts_threshold"),
    )
