"""
Service result envelope.

Every public settlement operation returns a ``ServiceResult`` instead of
raising across the service boundary. Routers translate the ``code`` to an
HTTP status.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Failure codes carried by an unsuccessful ServiceResult."""

    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    NOT_FOUND = "NOT_FOUND"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    STATE_CONFLICT = "STATE_CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.ORDER_NOT_FOUND: 404,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PRECONDITION_FAILED: 400,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INSUFFICIENT_BALANCE: 400,
    ErrorCode.STATE_CONFLICT: 409,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.GATEWAY_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}


class ServiceResult(BaseModel):
    """Discriminated result of a service operation."""

    success: bool = Field(..., description="Whether the operation succeeded")
    message: Optional[str] = Field(None, description="User-facing success message")
    error: Optional[str] = Field(None, description="User-facing error message")
    code: Optional[ErrorCode] = Field(None, description="Failure code")
    data: dict[str, Any] = Field(default_factory=dict, description="Payload")

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> "ServiceResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(
        cls, error: str, code: ErrorCode = ErrorCode.INTERNAL_ERROR, **data: Any
    ) -> "ServiceResult":
        return cls(success=False, error=error, code=code, data=data)

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return HTTP_STATUS_BY_CODE.get(self.code or ErrorCode.INTERNAL_ERROR, 500)
