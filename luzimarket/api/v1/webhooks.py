"""
Stripe webhook endpoint.

The body is read raw: signature verification needs the exact bytes Stripe
signed.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from luzimarket.api.deps import DatabaseSession, Mailer, Stripe
from luzimarket.core.logging import get_logger
from luzimarket.services.webhooks.dispatcher import WebhookDispatcher

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/stripe",
    summary="Handle Stripe webhook",
    description="Verify and apply a Stripe event to the order lifecycle",
)
async def stripe_webhook(
    request: Request,
    db: DatabaseSession,
    stripe_client: Stripe,
    email_sender: Mailer,
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
) -> JSONResponse:
    payload = await request.body()
    logger.info("Received Stripe webhook", payload_bytes=len(payload))

    dispatcher = WebhookDispatcher(db, stripe_client, email_sender)
    status_code, body = await dispatcher.handle(payload, stripe_signature)
    return JSONResponse(status_code=status_code, content=body)
