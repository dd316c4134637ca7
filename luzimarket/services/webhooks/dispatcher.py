"""
Stripe webhook dispatcher.

Verifies the signature of a gateway event, drops redeliveries of events
already applied, routes the event to the order lifecycle and commits its
effects together with the processed-event row. Customer and admin emails go
out only after that commit.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.logging import get_logger
from luzimarket.database.models.audit import AuditSeverity
from luzimarket.database.models.order import Order
from luzimarket.database.models.vendor import Vendor
from luzimarket.database.models.webhook import ProcessedWebhookEvent
from luzimarket.services.audit.logger import AuditLogger
from luzimarket.services.ledger.service import LedgerError, VendorBalanceLedger
from luzimarket.services.notifications.email import EmailSender
from luzimarket.services.orders.enums import OrderEvent
from luzimarket.services.orders.repository import OrderRepository, OrderRepositoryError
from luzimarket.services.orders.state_machine import (
    OrderStateMachine,
    StateTransitionError,
)
from luzimarket.services.payments.stripe_client import StripeClient, StripeClientError
from luzimarket.services.refunds.service import RefundService

logger = get_logger(__name__)

WEBHOOK_ACTOR = "stripe-webhook"

REFUND_EVENT_TYPES = frozenset(
    {"refund.created", "refund.updated", "charge.refund.updated"}
)


@dataclass
class PendingEmail:
    template_name: str
    context: dict[str, Any]
    to: Optional[str] = None
    admin: bool = False


@dataclass
class DispatchOutcome:
    """Result label of one event plus the emails to send after commit."""

    result: str
    emails: list[PendingEmail] = field(default_factory=list)


class WebhookDispatcher:
    """
    Applies verified Stripe events to orders.

    Attributes:
        session: Database session; one commit per event
        stripe_client: Used for signature verification
        email_sender: Notification sender (optional)
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_client: Optional[StripeClient] = None,
        email_sender: Optional[EmailSender] = None,
    ):
        self.session = session
        self.stripe_client = stripe_client or StripeClient()
        self.email_sender = email_sender
        self.orders = OrderRepository(session)
        self.state_machine = OrderStateMachine(session)
        self.ledger = VendorBalanceLedger(session)
        self.audit = AuditLogger(session)
        self.refunds = RefundService(session, self.stripe_client, email_sender)

    async def handle(
        self, payload: bytes, signature: Optional[str]
    ) -> tuple[int, dict[str, Any]]:
        """
        Process one webhook delivery.

        Args:
            payload: Raw request body, exactly as received
            signature: ``Stripe-Signature`` header value

        Returns:
            HTTP status code and JSON body
        """
        if not signature:
            logger.warning("Webhook received without signature")
            return 400, {"error": "Missing Stripe signature"}

        if not self.stripe_client.webhook_secret:
            logger.error("Webhook secret not configured")
            return 500, {"error": "Webhook secret not configured"}

        try:
            event = self.stripe_client.construct_webhook_event(payload, signature)
        except StripeClientError as e:
            return 400, {"error": f"Webhook Error: {e}"}

        try:
            if await self._already_processed(event.id):
                logger.info(
                    "Duplicate webhook event ignored",
                    event_id=event.id,
                    event_type=event.type,
                )
                return 200, {"received": True, "duplicate": True}

            outcome = await self.dispatch(event)
            self.session.add(
                ProcessedWebhookEvent(
                    event_id=event.id,
                    event_type=event.type,
                    result=outcome.result,
                )
            )
            await self.session.commit()

        except IntegrityError:
            # concurrent delivery of the same event committed first
            await self.session.rollback()
            logger.info("Webhook event applied concurrently", event_id=event.id)
            return 200, {"received": True, "duplicate": True}

        except (
            SQLAlchemyError,
            LedgerError,
            OrderRepositoryError,
            StateTransitionError,
        ) as e:
            await self.session.rollback()
            logger.error(
                "Webhook handler failed",
                event_id=event.id,
                event_type=event.type,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 500, {"error": "Webhook handler failed"}

        logger.info(
            "Webhook event processed",
            event_id=event.id,
            event_type=event.type,
            result=outcome.result,
        )

        await self._send_emails(outcome.emails)
        return 200, {"received": True}

    async def dispatch(self, event: stripe.Event) -> DispatchOutcome:
        """Route an event by type. Nothing here commits."""
        event_type = event.type
        data = event.data.object

        if event_type == "payment_intent.succeeded":
            return await self._handle_payment_succeeded(data)
        if event_type == "payment_intent.processing":
            return await self._handle_payment_processing(data)
        if event_type == "payment_intent.payment_failed":
            return await self._handle_payment_failed(data)
        if event_type in REFUND_EVENT_TYPES:
            return await self._handle_refund_update(data)
        if event_type == "refund.failed":
            return await self._handle_refund_failed(data)

        logger.info("Unhandled webhook event type", event_type=event_type, event_id=event.id)
        return DispatchOutcome("ignored")

    async def _already_processed(self, event_id: str) -> bool:
        result = await self.session.execute(
            select(ProcessedWebhookEvent.id).where(
                ProcessedWebhookEvent.event_id == event_id
            )
        )
        return result.scalar_one_or_none() is not None

    async def _find_order(self, payment_intent: Any) -> Optional[Order]:
        order = await self.orders.get_by_payment_intent(
            payment_intent["id"], for_update=True
        )
        if order is not None:
            return order

        metadata = payment_intent.get("metadata") or {}
        order_id = metadata.get("orderId") or metadata.get("order_id")
        if not order_id:
            return None
        try:
            order_uuid = uuid.UUID(str(order_id))
        except ValueError:
            logger.warning(
                "Payment intent metadata has an invalid order id",
                payment_intent_id=payment_intent["id"],
                order_id=order_id,
            )
            return None

        order = await self.orders.get_by_id(order_uuid, for_update=True)
        if order is not None and order.payment_intent_id is None:
            order.link_payment_intent(payment_intent["id"])
        elif order is not None and order.payment_intent_id != payment_intent["id"]:
            logger.warning(
                "Payment intent does not match the order's linked intent",
                order_id=str(order.id),
                payment_intent_id=payment_intent["id"],
            )
            return None
        return order

    # Payment events

    async def _handle_payment_succeeded(self, payment_intent: Any) -> DispatchOutcome:
        order = await self._find_order(payment_intent)
        if order is None:
            logger.warning(
                "No order for succeeded payment intent",
                payment_intent_id=payment_intent["id"],
            )
            return DispatchOutcome("skipped")

        if not self.state_machine.can_apply(order, OrderEvent.PAYMENT_SUCCEEDED):
            logger.info(
                "Payment success already applied",
                order_id=str(order.id),
                status=order.status.value,
                payment_status=order.payment_status.value,
            )
            return DispatchOutcome("skipped")

        self.state_machine.apply_transition(
            order,
            OrderEvent.PAYMENT_SUCCEEDED,
            actor=WEBHOOK_ACTOR,
            metadata={"payment_intent_id": payment_intent["id"]},
        )
        await self.ledger.credit(
            order.vendor_id,
            order.total,
            order.id,
            order.order_number,
            payment_intent_id=payment_intent["id"],
        )
        self.audit.log(
            action="payment.succeeded",
            category="payment",
            user_id=str(order.user_id) if order.user_id else None,
            user_type="user" if order.user_id else "guest",
            user_email=order.guest_email,
            ip=WEBHOOK_ACTOR,
            resource_type="order",
            resource_id=str(order.id),
            details={
                "paymentIntentId": payment_intent["id"],
                "amount": str(order.total),
                "currency": order.currency,
            },
        )

        emails = [
            PendingEmail(
                "order_confirmation",
                {
                    "customer_name": order.customer_name or "Cliente",
                    "order_number": order.order_number,
                    "total": order.total,
                    "currency": order.currency,
                },
                to=order.notification_email,
            )
        ]
        vendor = await self.session.get(Vendor, order.vendor_id)
        if vendor is not None:
            emails.append(
                PendingEmail(
                    "vendor_new_order",
                    {
                        "business_name": vendor.business_name,
                        "order_number": order.order_number,
                        "total": order.total,
                        "currency": order.currency,
                    },
                    to=vendor.email,
                )
            )
        return DispatchOutcome("applied", emails)

    async def _handle_payment_processing(self, payment_intent: Any) -> DispatchOutcome:
        order = await self._find_order(payment_intent)
        if order is None or not self.state_machine.can_apply(
            order, OrderEvent.PAYMENT_PROCESSING
        ):
            return DispatchOutcome("skipped")

        self.state_machine.apply_transition(
            order, OrderEvent.PAYMENT_PROCESSING, actor=WEBHOOK_ACTOR
        )
        return DispatchOutcome("applied")

    async def _handle_payment_failed(self, payment_intent: Any) -> DispatchOutcome:
        order = await self._find_order(payment_intent)
        if order is None:
            logger.warning(
                "No order for failed payment intent",
                payment_intent_id=payment_intent["id"],
            )
            return DispatchOutcome("skipped")

        if not self.state_machine.can_apply(order, OrderEvent.PAYMENT_FAILED):
            logger.info(
                "Payment failure not applicable",
                order_id=str(order.id),
                payment_status=order.payment_status.value,
            )
            return DispatchOutcome("skipped")

        last_error = payment_intent.get("last_payment_error") or {}
        failure_message = last_error.get("message")

        self.state_machine.apply_transition(
            order,
            OrderEvent.PAYMENT_FAILED,
            actor=WEBHOOK_ACTOR,
            reason=failure_message,
        )
        self.audit.log(
            action="payment.failed",
            category="payment",
            severity=AuditSeverity.WARNING,
            user_id=str(order.user_id) if order.user_id else None,
            user_type="user" if order.user_id else "guest",
            user_email=order.guest_email,
            ip=WEBHOOK_ACTOR,
            resource_type="order",
            resource_id=str(order.id),
            details={
                "paymentIntentId": payment_intent["id"],
                "failureCode": last_error.get("code"),
                "amount": str(order.total),
            },
            error_message=failure_message,
        )

        return DispatchOutcome(
            "applied",
            [
                PendingEmail(
                    "payment_failed",
                    {
                        "customer_name": order.customer_name or "Cliente",
                        "order_number": order.order_number,
                        "total": order.total,
                        "currency": order.currency,
                        "failure_message": failure_message,
                    },
                    to=order.notification_email,
                )
            ],
        )

    # Refund events

    async def _handle_refund_update(self, refund: Any) -> DispatchOutcome:
        refund_status = refund.get("status")
        if refund_status == "succeeded":
            order = await self.refunds.confirm_refund(refund["id"])
            if order is None:
                return DispatchOutcome("skipped")
            context = {
                "customer_name": order.customer_name or "Cliente",
                "order_number": order.order_number,
                "amount": order.total,
                "currency": order.currency,
                "refund_id": order.refund_id,
            }
            return DispatchOutcome(
                "applied",
                [PendingEmail("refund_processed", context, to=order.notification_email)],
            )
        if refund_status in ("failed", "canceled"):
            return await self._handle_refund_failed(refund)

        logger.info(
            "Refund update without final status",
            refund_id=refund["id"],
            refund_status=refund_status,
        )
        return DispatchOutcome("ignored")

    async def _handle_refund_failed(self, refund: Any) -> DispatchOutcome:
        failure_reason = refund.get("failure_reason")
        order = await self.refunds.record_refund_failure(refund["id"], failure_reason)
        if order is None:
            return DispatchOutcome("skipped")
        return DispatchOutcome(
            "applied",
            [
                PendingEmail(
                    "refund_failed_admin",
                    {
                        "order_number": order.order_number,
                        "refund_id": refund["id"],
                        "reason": failure_reason,
                    },
                    admin=True,
                )
            ],
        )

    async def _send_emails(self, emails: list[PendingEmail]) -> None:
        if self.email_sender is None:
            return
        for email in emails:
            if email.admin:
                await self.email_sender.send_admin_alert(email.template_name, email.context)
            else:
                await self.email_sender.send(email.to, email.template_name, email.context)


def get_webhook_dispatcher(
    session: AsyncSession,
    stripe_client: Optional[StripeClient] = None,
    email_sender: Optional[EmailSender] = None,
) -> WebhookDispatcher:
    return WebhookDispatcher(session, stripe_client, email_sender)
