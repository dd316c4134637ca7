"""Shipping and tracking schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class TrackingInfo(BaseModel):
    """Tracking details a vendor attaches when shipping an order."""

    tracking_number: str = Field(..., min_length=1, max_length=100)
    carrier: str = Field(..., min_length=2, max_length=50)
    tracking_url: Optional[str] = Field(None, max_length=500)
    estimated_delivery_date: Optional[datetime] = None

    @field_validator("carrier")
    @classmethod
    def normalize_carrier(cls, v: str) -> str:
        return v.strip().lower()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "tracking_number": "1Z12345E0205271688",
                    "carrier": "ups",
                    "estimated_delivery_date": "2026-10-20T18:00:00Z",
                }
            ]
        }
    }


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class TrackingUpdate(BaseModel):
    """Carrier event appended to an order's tracking history."""

    status: str = Field(..., min_length=1, max_length=100)
    location: str = Field("", max_length=255)
    description: str = Field("", max_length=500)
    coordinates: Optional[Coordinates] = None


class Dimensions(BaseModel):
    length: Decimal = Field(..., gt=0)
    width: Decimal = Field(..., gt=0)
    height: Decimal = Field(..., gt=0)
    unit: str = Field("cm", max_length=10)


class ShippingLabelCreate(BaseModel):
    """Purchased shipping label."""

    carrier: str = Field(..., min_length=2, max_length=50)
    service_type: str = Field(..., min_length=1, max_length=100)
    label_url: str = Field(..., min_length=1, max_length=500)
    tracking_number: Optional[str] = Field(None, max_length=100)
    cost: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    weight: Optional[Decimal] = Field(None, gt=0)
    dimensions: Optional[Dimensions] = None

    @field_validator("carrier")
    @classmethod
    def normalize_carrier(cls, v: str) -> str:
        return v.strip().lower()
