"""
Shipping service.

Vendors attach tracking to paid orders (``paid -> shipped``), carriers feed
tracking events into an append-only history, and delivery is recorded either
from a "delivered" carrier event or explicitly by the vendor.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.logging import get_logger
from luzimarket.database.base import utcnow
from luzimarket.database.models.order import Order
from luzimarket.database.models.shipping import ShippingLabel
from luzimarket.schemas.common import ErrorCode, ServiceResult
from luzimarket.schemas.shipping import ShippingLabelCreate, TrackingInfo, TrackingUpdate
from luzimarket.services.notifications.email import EmailSender
from luzimarket.services.orders.enums import OrderEvent
from luzimarket.services.orders.repository import OrderRepository, OrderRepositoryError
from luzimarket.services.orders.state_machine import (
    OrderStateMachine,
    StateTransitionError,
)
from luzimarket.services.shipping.tracking import (
    generate_tracking_url,
    normalize_tracking_number,
    validate_tracking_number,
)

logger = get_logger(__name__)

PUBLIC_TRACKING_FIELDS = (
    "order_number",
    "status",
    "tracking_number",
    "carrier",
    "tracking_url",
    "shipped_at",
    "estimated_delivery_date",
    "actual_delivery_date",
    "tracking_history",
)


def _public_tracking(order: Order) -> dict[str, Any]:
    data = order.to_dict()
    return {key: data.get(key) for key in PUBLIC_TRACKING_FIELDS}


class ShippingService:
    """Tracking, delivery and shipping label operations."""

    def __init__(self, session: AsyncSession, email_sender: Optional[EmailSender] = None):
        self.session = session
        self.orders = OrderRepository(session)
        self.state_machine = OrderStateMachine(session)
        self.email_sender = email_sender

    async def add_tracking(
        self, order_id: uuid.UUID, vendor_id: uuid.UUID, info: TrackingInfo
    ) -> ServiceResult:
        """
        Attach tracking to a paid order and mark it shipped.

        Args:
            order_id: Order to ship
            vendor_id: Vendor performing the action (must own the order)
            info: Tracking details

        Returns:
            ServiceResult with the tracking URL and public tracking data
        """
        if not validate_tracking_number(info.tracking_number, info.carrier):
            return ServiceResult.fail(
                "Formato de número de rastreo inválido", ErrorCode.VALIDATION_ERROR
            )

        tracking_number = normalize_tracking_number(info.tracking_number)
        tracking_url = info.tracking_url or generate_tracking_url(
            tracking_number, info.carrier
        )

        try:
            order = await self.orders.get_by_id(order_id, for_update=True)
            if order is None or order.vendor_id != vendor_id:
                await self.session.rollback()
                return ServiceResult.fail(
                    "Orden no encontrada", ErrorCode.ORDER_NOT_FOUND
                )

            try:
                self.state_machine.apply_transition(
                    order,
                    OrderEvent.SHIP,
                    actor=str(vendor_id),
                    metadata={"tracking_number": tracking_number, "carrier": info.carrier},
                )
            except StateTransitionError as e:
                current_status = order.status.value
                await self.session.rollback()
                logger.warning(
                    "Tracking rejected for order state",
                    order_id=str(order_id),
                    current_state=e.current_state.value if e.current_state else None,
                )
                return ServiceResult.fail(
                    f"No se puede enviar una orden con estado: {current_status}",
                    ErrorCode.STATE_CONFLICT,
                )

            order.tracking_number = tracking_number
            order.carrier = info.carrier
            order.tracking_url = tracking_url
            order.shipped_at = utcnow()
            order.estimated_delivery_date = info.estimated_delivery_date
            await self.session.commit()

        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Failed to add tracking", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail(
                "Error al agregar la información de rastreo", ErrorCode.INTERNAL_ERROR
            )

        logger.info(
            "Tracking added",
            order_id=str(order_id),
            carrier=info.carrier,
            tracking_number=tracking_number,
        )

        if self.email_sender:
            await self.email_sender.send(
                order.notification_email,
                "order_shipped",
                {
                    "customer_name": order.customer_name or "Cliente",
                    "order_number": order.order_number,
                    "tracking_number": tracking_number,
                    "carrier": info.carrier,
                    "tracking_url": tracking_url,
                    "estimated_delivery_date": info.estimated_delivery_date,
                },
            )

        return ServiceResult.ok(
            "Información de rastreo agregada",
            tracking_url=tracking_url,
            tracking=_public_tracking(order),
        )

    async def update_tracking_history(
        self,
        order_id: uuid.UUID,
        update: TrackingUpdate,
        vendor_id: Optional[uuid.UUID] = None,
    ) -> ServiceResult:
        """
        Append a carrier event to the order's tracking history.

        A status containing "delivered" marks a shipped order delivered.
        """
        delivered_now = False
        try:
            order = await self.orders.get_by_id(order_id, for_update=True)
            if order is None or (vendor_id is not None and order.vendor_id != vendor_id):
                await self.session.rollback()
                return ServiceResult.fail(
                    "Orden no encontrada", ErrorCode.ORDER_NOT_FOUND
                )

            now = utcnow()
            entry = update.model_dump(exclude_none=True)
            entry["timestamp"] = now.isoformat()
            # reassign so the JSON column is flagged dirty
            order.tracking_history = [*(order.tracking_history or []), entry]

            if "delivered" in update.status.lower() and self.state_machine.can_apply(
                order, OrderEvent.DELIVER
            ):
                self.state_machine.apply_transition(
                    order,
                    OrderEvent.DELIVER,
                    actor=str(vendor_id) if vendor_id else "carrier",
                    reason=update.description or None,
                )
                order.actual_delivery_date = now
                delivered_now = True

            await self.session.commit()

        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Failed to update tracking history",
                order_id=str(order_id),
                error=str(e),
            )
            return ServiceResult.fail(
                "Error al actualizar el historial de rastreo", ErrorCode.INTERNAL_ERROR
            )

        if delivered_now:
            await self._notify_delivered(order)

        return ServiceResult.ok(
            "Historial de rastreo actualizado",
            history=order.tracking_history,
            delivered=delivered_now,
        )

    async def mark_delivered(
        self, order_id: uuid.UUID, vendor_id: uuid.UUID
    ) -> ServiceResult:
        """Record delivery of a shipped order."""
        try:
            order = await self.orders.get_by_id(order_id, for_update=True)
            if order is None or order.vendor_id != vendor_id:
                await self.session.rollback()
                return ServiceResult.fail(
                    "Orden no encontrada", ErrorCode.ORDER_NOT_FOUND
                )

            try:
                self.state_machine.apply_transition(
                    order, OrderEvent.DELIVER, actor=str(vendor_id)
                )
            except StateTransitionError:
                current_status = order.status.value
                await self.session.rollback()
                return ServiceResult.fail(
                    f"No se puede marcar como entregada una orden con estado: "
                    f"{current_status}",
                    ErrorCode.STATE_CONFLICT,
                )

            order.actual_delivery_date = utcnow()
            await self.session.commit()

        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Failed to mark order delivered", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail(
                "Error al marcar la orden como entregada", ErrorCode.INTERNAL_ERROR
            )

        await self._notify_delivered(order)
        return ServiceResult.ok(
            "Orden marcada como entregada", tracking=_public_tracking(order)
        )

    async def create_shipping_label(
        self, order_id: uuid.UUID, vendor_id: uuid.UUID, label_data: ShippingLabelCreate
    ) -> ServiceResult:
        try:
            order = await self.orders.get_by_id(order_id)
            if order is None or order.vendor_id != vendor_id:
                return ServiceResult.fail(
                    "Orden no encontrada", ErrorCode.ORDER_NOT_FOUND
                )

            label = ShippingLabel(
                order_id=order_id,
                vendor_id=vendor_id,
                carrier=label_data.carrier,
                service_type=label_data.service_type,
                label_url=label_data.label_url,
                tracking_number=label_data.tracking_number,
                cost=label_data.cost if label_data.cost is not None else 0,
                weight=label_data.weight,
                dimensions=(
                    label_data.dimensions.model_dump(mode="json")
                    if label_data.dimensions
                    else None
                ),
            )
            self.session.add(label)
            await self.session.commit()

        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Failed to create shipping label", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail(
                "Error al crear la guía de envío", ErrorCode.INTERNAL_ERROR
            )

        logger.info(
            "Shipping label created",
            order_id=str(order_id),
            label_id=str(label.id),
            carrier=label.carrier,
        )
        return ServiceResult.ok("Guía de envío creada", label=label.to_dict())

    async def get_shipping_labels(
        self, order_id: uuid.UUID, vendor_id: uuid.UUID
    ) -> ServiceResult:
        try:
            result = await self.session.execute(
                select(ShippingLabel)
                .where(
                    ShippingLabel.order_id == order_id,
                    ShippingLabel.vendor_id == vendor_id,
                )
                .order_by(ShippingLabel.created_at)
            )
            labels = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch shipping labels", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail(
                "Error al obtener las guías de envío", ErrorCode.INTERNAL_ERROR, labels=[]
            )
        return ServiceResult.ok(labels=[label.to_dict() for label in labels])

    async def get_order_tracking(self, order_number: str) -> ServiceResult:
        """Public tracking lookup by order number."""
        try:
            order = await self.orders.get_by_order_number(order_number)
        except OrderRepositoryError:
            return ServiceResult.fail(
                "Error al obtener la información de rastreo", ErrorCode.INTERNAL_ERROR
            )
        if order is None:
            return ServiceResult.fail("Orden no encontrada", ErrorCode.ORDER_NOT_FOUND)
        return ServiceResult.ok(tracking=_public_tracking(order))

    async def _notify_delivered(self, order: Order) -> None:
        if self.email_sender is None:
            return
        await self.email_sender.send(
            order.notification_email,
            "order_delivered",
            {
                "customer_name": order.customer_name or "Cliente",
                "order_number": order.order_number,
                "delivered_at": order.actual_delivery_date,
            },
        )


def get_shipping_service(
    session: AsyncSession, email_sender: Optional[EmailSender] = None
) -> ShippingService:
    return ShippingService(session, email_sender)
