"""
Product model.

Only the stock-related columns used by settlement and inventory
reconciliation are mapped; the catalog owns the rest.
"""

import uuid

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel


class Product(BaseModel):
    """
    Sellable product.

    Attributes:
        vendor_id: Owning vendor
        name: Product name
        stock: Units on hand
        is_active: Product is listed in the storefront
    """

    __tablename__ = "products"

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning vendor",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name",
    )

    stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units on hand",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Listed in the storefront",
    )

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )
