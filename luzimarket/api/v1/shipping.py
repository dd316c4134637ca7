"""Vendor shipping endpoints: tracking, delivery and shipping labels."""

from uuid import UUID

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from luzimarket.api.deps import DatabaseSession, Mailer, VendorActor, VendorOrAdmin
from luzimarket.api.responses import result_response
from luzimarket.core.logging import get_logger
from luzimarket.schemas.shipping import ShippingLabelCreate, TrackingInfo, TrackingUpdate
from luzimarket.services.shipping.service import ShippingService

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["shipping"])


@router.post(
    "/{order_id}/tracking",
    summary="Add tracking",
    description="Attach carrier tracking to a paid order and mark it shipped",
)
async def add_tracking(
    order_id: UUID,
    info: TrackingInfo,
    actor: VendorActor,
    db: DatabaseSession,
    email_sender: Mailer,
) -> JSONResponse:
    logger.info(
        "Adding tracking",
        order_id=str(order_id),
        vendor_id=str(actor.vendor_id),
        carrier=info.carrier,
    )
    service = ShippingService(db, email_sender)
    result = await service.add_tracking(order_id, actor.vendor_id, info)
    return result_response(result)


@router.post(
    "/{order_id}/tracking/events",
    summary="Append tracking event",
    description="Append a carrier event; a delivered status completes the order",
)
async def add_tracking_event(
    order_id: UUID,
    update: TrackingUpdate,
    actor: VendorOrAdmin,
    db: DatabaseSession,
    email_sender: Mailer,
) -> JSONResponse:
    service = ShippingService(db, email_sender)
    result = await service.update_tracking_history(
        order_id, update, vendor_id=None if actor.is_admin else actor.vendor_id
    )
    return result_response(result)


@router.post("/{order_id}/delivered", summary="Mark delivered")
async def mark_delivered(
    order_id: UUID,
    actor: VendorActor,
    db: DatabaseSession,
    email_sender: Mailer,
) -> JSONResponse:
    service = ShippingService(db, email_sender)
    result = await service.mark_delivered(order_id, actor.vendor_id)
    return result_response(result)


@router.post("/{order_id}/shipping-labels", summary="Record shipping label")
async def create_shipping_label(
    order_id: UUID,
    label: ShippingLabelCreate,
    actor: VendorActor,
    db: DatabaseSession,
) -> JSONResponse:
    service = ShippingService(db)
    result = await service.create_shipping_label(order_id, actor.vendor_id, label)
    return result_response(result)


@router.get("/{order_id}/shipping-labels", summary="List shipping labels")
async def list_shipping_labels(
    order_id: UUID,
    actor: VendorActor,
    db: DatabaseSession,
) -> JSONResponse:
    service = ShippingService(db)
    result = await service.get_shipping_labels(order_id, actor.vendor_id)
    return result_response(result)
