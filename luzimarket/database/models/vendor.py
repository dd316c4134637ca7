"""
Vendor and vendor balance models.

The vendor row itself is owned by the storefront; only the columns the
settlement core reads are mapped here. ``VendorBalance`` is the three-way
split running balance that the ledger service mutates together with an
immutable ``Transaction`` row.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel, utcnow


class Vendor(BaseModel):
    """
    Marketplace vendor.

    Attributes:
        business_name: Public store name
        email: Contact email for notifications
        enable_auto_deactivate: Deactivate products automatically at zero stock
        is_active: Vendor account is active
    """

    __tablename__ = "vendors"

    business_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Public store name",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Vendor contact email",
    )

    enable_auto_deactivate: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Deactivate products automatically when stock reaches zero",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Vendor account is active",
    )


class VendorBalance(BaseModel):
    """
    Running balance of a vendor.

    Attributes:
        vendor_id: Owning vendor (one row per vendor)
        available_balance: Withdrawable now; may go negative after refunds
        pending_balance: Earned but not yet cleared
        reserved_balance: Held back (disputes)
        currency: ISO 4217 currency code
        last_updated: Time of the last ledger mutation
    """

    __tablename__ = "vendor_balances"

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Owning vendor",
    )

    available_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Withdrawable balance",
    )

    pending_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Earned but not yet cleared",
    )

    reserved_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Held back for disputes",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="MXN",
        comment="ISO 4217 currency code",
    )

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Time of the last ledger mutation",
    )

    def snapshot(self) -> dict[str, str]:
        """Balance split as decimal strings, for ledger before/after records."""
        return {
            "available": str(self.available_balance),
            "pending": str(self.pending_balance),
            "reserved": str(self.reserved_balance),
        }
