"""Vendor balance, payout and inventory alert schemas."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from luzimarket.database.models.inventory import AlertType


class PayoutRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payout_id: Optional[str] = Field(None, max_length=255)


class InventoryAlertUpsert(BaseModel):
    """
    Create or update the alert of one (product, alert type) pair.

    A missing threshold keeps the stored one, or the configured default
    for a new alert.
    """

    product_id: UUID
    alert_type: AlertType = AlertType.LOW_STOCK
    threshold: Optional[int] = Field(None, ge=0, le=100000)
    is_active: bool = True

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "product_id": "5d1f1c7e-3f7a-4d55-8a53-0c1b9a3f2e10",
                    "alert_type": "low_stock",
                    "threshold": 5,
                }
            ]
        }
    }
