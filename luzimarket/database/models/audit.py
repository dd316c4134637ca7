"""Audit log model for security and payment relevant events."""

from enum import Enum
from typing import Any, Optional

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel, JSONType, enum_column


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditLog(BaseModel):
    """
    Append-only audit record.

    Attributes:
        action: Dotted action name, e.g. ``refund.failed``
        category: Event family, e.g. ``payment``
        severity: Severity level
        user_id: Actor identifier
        user_type: Actor role or ``system``
        user_email: Actor email when known
        ip: Source address, or a symbolic source such as ``stripe-webhook``
        resource_type: Affected resource kind
        resource_id: Affected resource identifier
        details: Structured context
        error_message: Error text for failure events
    """

    __tablename__ = "audit_logs"

    action: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    severity: Mapped[AuditSeverity] = mapped_column(
        enum_column(AuditSeverity, "audit_severity"),
        nullable=False,
        default=AuditSeverity.INFO,
    )

    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    details: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_action_created", "action", "created_at"),
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
    )
