"""
Audit logger for security and payment relevant events.

Entries are added to the caller's session so they commit (or roll back)
together with the change they describe, and are mirrored to the structured
log at a level matching their severity.
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.logging import get_logger
from luzimarket.database.models.audit import AuditLog, AuditSeverity

logger = get_logger(__name__)

_LOG_METHODS = {
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """Writes audit rows through the request's session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def log(
        self,
        action: str,
        category: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        user_id: Optional[str] = None,
        user_type: Optional[str] = None,
        user_email: Optional[str] = None,
        ip: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> AuditLog:
        """
        Record an audit entry.

        Args:
            action: Dotted action name, e.g. ``refund.failed``
            category: Event category (``payment``, ``order``, ...)
            severity: Entry severity
            user_id: Acting or affected user
            user_type: ``user``, ``guest``, ``vendor``, ``admin`` or ``system``
            user_email: Email of the user
            ip: Client address, or a source tag such as ``stripe-webhook``
            resource_type: Kind of resource affected
            resource_id: Identifier of the resource
            details: Additional context
            error_message: Error text for failure entries

        Returns:
            The pending AuditLog row
        """
        entry = AuditLog(
            action=action,
            category=category,
            severity=severity,
            user_id=user_id,
            user_type=user_type,
            user_email=user_email,
            ip=ip,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            error_message=error_message,
        )
        self.session.add(entry)

        getattr(logger, _LOG_METHODS[severity])(
            "Audit event",
            action=action,
            category=category,
            severity=severity.value,
            resource_type=resource_type,
            resource_id=resource_id,
            error_message=error_message,
        )
        return entry
