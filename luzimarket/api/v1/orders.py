"""
Order payment and cancellation endpoints.

Customers create the payment intent and request cancellation; the owning
vendor or an admin approves or rejects it; admins resume an approval whose
settlement was interrupted.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse

from luzimarket.api.deps import (
    ROLE_VENDOR,
    AdminActor,
    CurrentActor,
    DatabaseSession,
    Mailer,
    Stripe,
    VendorOrAdmin,
    customer_scope,
)
from luzimarket.api.responses import result_response
from luzimarket.core.logging import get_logger
from luzimarket.schemas.refunds import (
    CancellationApproval,
    CancellationRejection,
    CancellationRequest,
)
from luzimarket.services.payments.service import PaymentService
from luzimarket.services.refunds.service import RefundService

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/{order_id}/payment-intent",
    summary="Create payment intent",
    description="Create or reuse the Stripe payment intent of an order awaiting payment",
)
async def create_payment_intent(
    order_id: UUID,
    actor: CurrentActor,
    db: DatabaseSession,
    stripe_client: Stripe,
) -> JSONResponse:
    service = PaymentService(db, stripe_client)
    result = await service.create_payment_intent(order_id, user_id=customer_scope(actor))
    return result_response(result)


@router.post(
    "/{order_id}/cancellation",
    summary="Request cancellation",
    description="Ask the vendor to cancel an order that has not shipped",
)
async def request_cancellation(
    order_id: UUID,
    request: CancellationRequest,
    actor: CurrentActor,
    db: DatabaseSession,
    stripe_client: Stripe,
    email_sender: Mailer,
) -> JSONResponse:
    logger.info("Cancellation requested", order_id=str(order_id), actor_id=actor.id)

    service = RefundService(db, stripe_client, email_sender)
    if actor.role == ROLE_VENDOR:
        result = await service.request_refund(
            order_id, request.reason, requested_by=actor.id, vendor_id=actor.vendor_id
        )
    else:
        result = await service.request_refund(
            order_id, request.reason, requested_by=actor.id, user_id=customer_scope(actor)
        )
    return result_response(result)


@router.post(
    "/{order_id}/cancellation/approve",
    summary="Approve cancellation",
    description="Approve a pending cancellation; paid orders are refunded in full",
)
async def approve_cancellation(
    order_id: UUID,
    actor: VendorOrAdmin,
    db: DatabaseSession,
    stripe_client: Stripe,
    email_sender: Mailer,
    approval: Optional[CancellationApproval] = Body(None),
) -> JSONResponse:
    service = RefundService(db, stripe_client, email_sender)
    result = await service.approve_refund(
        order_id,
        approved_by=actor.id,
        notes=approval.notes if approval else None,
        vendor_id=None if actor.is_admin else actor.vendor_id,
    )
    return result_response(result)


@router.post(
    "/{order_id}/cancellation/reject",
    summary="Reject cancellation",
)
async def reject_cancellation(
    order_id: UUID,
    rejection: CancellationRejection,
    actor: VendorOrAdmin,
    db: DatabaseSession,
    stripe_client: Stripe,
    email_sender: Mailer,
) -> JSONResponse:
    service = RefundService(db, stripe_client, email_sender)
    result = await service.reject_refund(
        order_id,
        rejected_by=actor.id,
        reason=rejection.reason,
        vendor_id=None if actor.is_admin else actor.vendor_id,
    )
    return result_response(result)


@router.post(
    "/{order_id}/cancellation/resume",
    summary="Resume approval settlement",
    description="Finish stock restoration and balance reversal of an interrupted approval",
)
async def resume_cancellation(
    order_id: UUID,
    actor: AdminActor,
    db: DatabaseSession,
    stripe_client: Stripe,
    email_sender: Mailer,
) -> JSONResponse:
    logger.info("Resuming approval", order_id=str(order_id), actor_id=actor.id)

    service = RefundService(db, stripe_client, email_sender)
    result = await service.resume_approval(order_id)
    return result_response(result)
