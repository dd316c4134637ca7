"""Processed gateway webhook events."""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database.base import BaseModel


class ProcessedWebhookEvent(BaseModel):
    """
    Gateway event that has been applied.

    The unique ``event_id`` rejects redelivery of an event whose effects
    were already committed.

    Attributes:
        event_id: Gateway event identifier
        event_type: Gateway event type
        result: Short outcome label (``applied``, ``skipped``, ``ignored``)
    """

    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Gateway event identifier",
    )

    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Gateway event type",
    )

    result: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Outcome label",
    )
