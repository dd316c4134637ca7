"""Cancellation and refund request schemas."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


MAX_NOTES_LENGTH = 500


class CancellationRequest(BaseModel):
    """Customer or vendor request to cancel an order."""

    reason: str = Field(..., min_length=3, max_length=500)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("El motivo debe tener al menos 3 caracteres")
        return v


class CancellationApproval(BaseModel):
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)


class CancellationRejection(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)
