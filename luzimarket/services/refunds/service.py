"""
Refund and cancellation approval workflow.

A customer (or vendor) requests cancellation, the vendor or an admin approves
or rejects it, and the gateway later confirms the refund by webhook.

Approval is a persisted saga. The gateway refund happens first; if it fails
the order is left untouched. On success the order transition and a
``RefundSettlement`` row commit together, then stock restoration and the
vendor balance reversal each commit with their own step timestamp. An
approval interrupted after the gateway call is completed by
``resume_approval``, which only runs the steps that have not finished.
"""

import asyncio
import uuid
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.logging import get_logger
from luzimarket.database.base import utcnow
from luzimarket.database.models.audit import AuditSeverity
from luzimarket.database.models.order import (
    CancellationStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
)
from luzimarket.database.models.refund import RefundSettlement
from luzimarket.database.models.vendor import Vendor
from luzimarket.schemas.common import ErrorCode, ServiceResult
from luzimarket.schemas.refunds import MAX_NOTES_LENGTH
from luzimarket.services.audit.logger import AuditLogger
from luzimarket.services.inventory.service import InventoryError, InventoryReconciler
from luzimarket.services.ledger.service import LedgerError, VendorBalanceLedger
from luzimarket.services.notifications.email import EmailSender
from luzimarket.services.orders.enums import OrderEvent
from luzimarket.services.orders.repository import OrderRepository, OrderRepositoryError
from luzimarket.services.orders.state_machine import (
    OrderStateMachine,
    StateTransitionError,
)
from luzimarket.services.payments.stripe_client import (
    StripeClient,
    StripeClientError,
    to_cents,
)

logger = get_logger(__name__)

NON_CANCELLABLE_STATUSES = frozenset(
    {
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }
)

MSG_ORDER_NOT_FOUND = "Orden no encontrada"
MSG_NO_PENDING_REQUEST = "No hay solicitud de cancelación pendiente"
MSG_GATEWAY_FAILED = "Error al procesar el reembolso con Stripe"


def refund_idempotency_key(order_id: uuid.UUID) -> str:
    return f"refund-{order_id}"


def _customer_context(order: Order) -> dict[str, Any]:
    return {
        "to": order.notification_email,
        "customer_name": order.customer_name or "Cliente",
        "order_number": order.order_number,
        "amount": order.total,
        "total": order.total,
        "currency": order.currency,
        "refund_id": order.refund_id,
    }


class RefundService:
    """
    Orchestrates cancellation requests, approvals and refund confirmation.

    Attributes:
        session: Request database session; this service commits it
        stripe_client: Gateway adapter used for refunds
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
        self.inventory = InventoryReconciler(session)
        self.audit = AuditLogger(session)

    # Request

    async def request_refund(
        self,
        order_id: uuid.UUID,
        reason: str,
        requested_by: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        vendor_id: Optional[uuid.UUID] = None,
    ) -> ServiceResult:
        """
        Ask the vendor to cancel an order.

        Re-requesting while a request is pending only updates the reason.

        Args:
            order_id: Order to cancel
            reason: Customer supplied reason
            requested_by: Actor identifier
            user_id: When given, the order must belong to this user
            vendor_id: When given, the order must belong to this vendor

        Returns:
            ServiceResult
        """
        try:
            order = await self.orders.get_by_id(order_id, for_update=True)
            if (
                order is None
                or (user_id is not None and order.user_id != user_id)
                or (vendor_id is not None and order.vendor_id != vendor_id)
            ):
                await self.session.rollback()
                return ServiceResult.fail(MSG_ORDER_NOT_FOUND, ErrorCode.ORDER_NOT_FOUND)

            current_status = order.status.value
            if order.status in NON_CANCELLABLE_STATUSES:
                await self.session.rollback()
                return ServiceResult.fail(
                    f"No se puede cancelar una orden con estado: {current_status}",
                    ErrorCode.STATE_CONFLICT,
                )

            try:
                self.state_machine.apply_transition(
                    order,
                    OrderEvent.REQUEST_CANCELLATION,
                    actor=requested_by,
                    reason=reason,
                )
            except StateTransitionError:
                await self.session.rollback()
                return ServiceResult.fail(
                    f"No se puede cancelar una orden con estado: {current_status}",
                    ErrorCode.STATE_CONFLICT,
                )

            order.cancellation_reason = reason
            order.cancelled_by = requested_by

            self.audit.log(
                action="order.cancellation_requested",
                category="order",
                user_id=str(order.user_id) if order.user_id else requested_by,
                user_type="user" if order.user_id else "guest",
                user_email=order.guest_email,
                resource_type="order",
                resource_id=str(order.id),
                details={"reason": reason, "requestedBy": requested_by},
            )

            vendor = await self.session.get(Vendor, order.vendor_id)
            await self.session.commit()

        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Error requesting cancellation", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail(
                "Error al solicitar la cancelación", ErrorCode.INTERNAL_ERROR
            )

        logger.info(
            "Cancellation requested",
            order_id=str(order_id),
            order_number=order.order_number,
            requested_by=requested_by,
        )

        if self.email_sender and vendor is not None:
            await self.email_sender.send(
                vendor.email,
                "cancellation_requested",
                {
                    "business_name": vendor.business_name,
                    "order_number": order.order_number,
                    "reason": reason,
                },
            )

        return ServiceResult.ok(
            "Solicitud de cancelación enviada al vendedor",
            order_id=str(order.id),
            cancellation_status=order.cancellation_status.value,
        )

    # Approve

    async def approve_refund(
        self,
        order_id: uuid.UUID,
        approved_by: str,
        notes: Optional[str] = None,
        vendor_id: Optional[uuid.UUID] = None,
    ) -> ServiceResult:
        """
        Approve a pending cancellation.

        Paid orders are refunded in full at the gateway, transition to
        ``refunded`` with the refund pending confirmation (or succeeded, when
        the gateway settles it immediately), get their stock back and have
        the vendor credit reversed. Unpaid orders transition
        to ``cancelled`` and only get their stock back.

        Args:
            order_id: Order to approve
            approved_by: Vendor or admin identifier
            notes: Optional approval notes
            vendor_id: When given, the order must belong to this vendor

        Returns:
            ServiceResult with ``refund_id`` and settlement progress
        """
        if notes and len(notes) > MAX_NOTES_LENGTH:
            return ServiceResult.fail(
                f"Las notas no pueden exceder {MAX_NOTES_LENGTH} caracteres",
                ErrorCode.VALIDATION_ERROR,
            )

        try:
            order = await self.orders.get_by_id(order_id, for_update=True)
            if order is None or (vendor_id is not None and order.vendor_id != vendor_id):
                await self.session.rollback()
                return ServiceResult.fail(MSG_ORDER_NOT_FOUND, ErrorCode.ORDER_NOT_FOUND)

            if order.cancellation_status != CancellationStatus.REQUESTED:
                await self.session.rollback()
                return ServiceResult.fail(
                    MSG_NO_PENDING_REQUEST, ErrorCode.PRECONDITION_FAILED
                )

            paid = order.payment_status == PaymentStatus.SUCCEEDED
            event = OrderEvent.APPROVE_REFUND if paid else OrderEvent.APPROVE_CANCELLATION

            try:
                self.state_machine.validate_transition(order, event)
            except StateTransitionError as e:
                await self.session.rollback()
                logger.warning(
                    "Approval rejected by state machine",
                    order_id=str(order_id),
                    error=str(e),
                )
                return ServiceResult.fail(
                    MSG_NO_PENDING_REQUEST, ErrorCode.PRECONDITION_FAILED
                )

            refund_id: Optional[str] = None
            refund_status: Optional[str] = None
            if paid:
                if not order.payment_intent_id:
                    await self.session.rollback()
                    return ServiceResult.fail(
                        "La orden no tiene un pago asociado",
                        ErrorCode.PRECONDITION_FAILED,
                    )
                try:
                    refund = await asyncio.to_thread(
                        self.stripe_client.create_refund,
                        payment_intent_id=order.payment_intent_id,
                        amount=to_cents(order.total),
                        reason="requested_by_customer",
                        metadata={
                            "orderId": str(order.id),
                            "orderNumber": order.order_number,
                            "approvedBy": approved_by,
                        },
                        idempotency_key=refund_idempotency_key(order.id),
                    )
                except StripeClientError as e:
                    await self.session.rollback()
                    logger.error(
                        "Stripe refund failed",
                        order_id=str(order_id),
                        error=str(e),
                        error_code=e.code,
                    )
                    return ServiceResult.fail(MSG_GATEWAY_FAILED, ErrorCode.GATEWAY_ERROR)
                refund_id = refund.id
                refund_status = refund.status

            now = utcnow()
            self.state_machine.apply_transition(
                order,
                event,
                actor=approved_by,
                reason=notes,
                metadata={"refund_id": refund_id} if refund_id else None,
            )
            order.cancelled_at = now
            if refund_id:
                order.link_refund(refund_id)
                if refund_status == "succeeded":
                    self.state_machine.apply_transition(
                        order, OrderEvent.REFUND_SUCCEEDED, actor="stripe"
                    )
                    order.refunded_at = now
            if notes:
                order.append_note(notes)

            settlement = RefundSettlement(
                order_id=order.id,
                vendor_id=order.vendor_id,
                refund_id=refund_id,
                amount=order.total,
                requires_refund=paid,
                approved_by=approved_by,
                gateway_refunded_at=now if paid else None,
            )
            self.session.add(settlement)

            self.audit.log(
                action="refund.approved" if paid else "order.cancelled",
                category="payment" if paid else "order",
                user_id=approved_by,
                user_type="vendor" if vendor_id else "admin",
                resource_type="order",
                resource_id=str(order.id),
                details={
                    "approvedBy": approved_by,
                    "approvalNotes": notes,
                    "refundId": refund_id,
                    "amount": str(order.total),
                },
            )
            await self.session.commit()

        except (OrderRepositoryError, SQLAlchemyError, ValueError) as e:
            await self.session.rollback()
            logger.error(
                "Error approving refund", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail("Error al aprobar el reembolso", ErrorCode.INTERNAL_ERROR)

        logger.info(
            "Cancellation approved",
            order_id=str(order_id),
            order_number=order.order_number,
            refund_id=refund_id,
            requires_refund=paid,
            refund_status=refund_status,
        )

        notification = _customer_context(order)
        settlement_error = await self._run_settlement(settlement, order)

        if self.email_sender:
            await self.email_sender.send(
                notification.pop("to"),
                "refund_processed" if paid else "order_cancelled",
                notification,
            )

        data: dict[str, Any] = {
            "order_id": str(order_id),
            "refund_id": refund_id,
            "settlement_complete": settlement_error is None,
        }
        if settlement_error:
            data["settlement_error"] = settlement_error
        return ServiceResult.ok(f"Reembolso aprobado. ID: {refund_id or 'N/A'}", **data)

    # Reject

    async def reject_refund(
        self,
        order_id: uuid.UUID,
        rejected_by: str,
        reason: str,
        vendor_id: Optional[uuid.UUID] = None,
    ) -> ServiceResult:
        """Reject a pending cancellation; the order resumes its normal lifecycle."""
        try:
            order = await self.orders.get_by_id(order_id, for_update=True)
            if order is None or (vendor_id is not None and order.vendor_id != vendor_id):
                await self.session.rollback()
                return ServiceResult.fail(MSG_ORDER_NOT_FOUND, ErrorCode.ORDER_NOT_FOUND)

            if order.cancellation_status != CancellationStatus.REQUESTED:
                await self.session.rollback()
                return ServiceResult.fail(
                    MSG_NO_PENDING_REQUEST, ErrorCode.PRECONDITION_FAILED
                )

            self.state_machine.apply_transition(
                order,
                OrderEvent.REJECT_CANCELLATION,
                actor=rejected_by,
                reason=reason,
            )
            order.append_note(f"Cancelación rechazada: {reason}")

            self.audit.log(
                action="order.cancellation_rejected",
                category="order",
                user_id=rejected_by,
                user_type="vendor" if vendor_id else "admin",
                resource_type="order",
                resource_id=str(order.id),
                details={"rejectedBy": rejected_by, "rejectionReason": reason},
            )
            await self.session.commit()

        except (OrderRepositoryError, SQLAlchemyError, StateTransitionError) as e:
            await self.session.rollback()
            logger.error(
                "Error rejecting cancellation", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail(
                "Error al rechazar la cancelación", ErrorCode.INTERNAL_ERROR
            )

        logger.info(
            "Cancellation rejected",
            order_id=str(order_id),
            order_number=order.order_number,
            rejected_by=rejected_by,
        )

        if self.email_sender:
            await self.email_sender.send(
                order.notification_email,
                "cancellation_rejected",
                {
                    "customer_name": order.customer_name or "Cliente",
                    "order_number": order.order_number,
                    "reason": reason,
                },
            )

        return ServiceResult.ok(
            "Solicitud de cancelación rechazada",
            order_id=str(order.id),
            cancellation_status=order.cancellation_status.value,
        )

    # Gateway confirmation

    async def confirm_refund(self, refund_id: str) -> Optional[Order]:
        """
        Apply a gateway "refund succeeded" confirmation without committing.

        Returns:
            The updated order, or None when no pending refund matches
        """
        order = await self.orders.get_by_refund_id(refund_id, for_update=True)
        if order is None:
            logger.info("No order found for refund", refund_id=refund_id)
            return None
        if not self.state_machine.can_apply(order, OrderEvent.REFUND_SUCCEEDED):
            logger.info(
                "Refund confirmation already applied",
                refund_id=refund_id,
                order_id=str(order.id),
                refund_status=order.refund_status.value,
            )
            return None

        self.state_machine.apply_transition(
            order, OrderEvent.REFUND_SUCCEEDED, actor="stripe-webhook"
        )
        order.refunded_at = utcnow()
        await self.ledger.complete_refund_transactions(refund_id)
        return order

    async def record_refund_failure(
        self, refund_id: str, failure_reason: Optional[str] = None
    ) -> Optional[Order]:
        """
        Apply a gateway "refund failed" report without committing.

        The order stays refunded; the failure is audit-logged for manual
        follow-up.

        Returns:
            The updated order, or None when no pending refund matches
        """
        order = await self.orders.get_by_refund_id(refund_id, for_update=True)
        if order is None:
            logger.info("No order found for failed refund", refund_id=refund_id)
            return None
        if not self.state_machine.can_apply(order, OrderEvent.REFUND_FAILED):
            logger.info(
                "Refund failure already applied",
                refund_id=refund_id,
                order_id=str(order.id),
                refund_status=order.refund_status.value,
            )
            return None

        self.state_machine.apply_transition(
            order,
            OrderEvent.REFUND_FAILED,
            actor="stripe-webhook",
            reason=failure_reason,
        )
        order.append_note(f"Reembolso fallido: {failure_reason or 'Razón desconocida'}")
        await self.ledger.fail_refund_transactions(refund_id)

        self.audit.log(
            action="refund.failed",
            category="payment",
            severity=AuditSeverity.ERROR,
            user_id=str(order.user_id) if order.user_id else None,
            user_type="user" if order.user_id else "guest",
            user_email=order.guest_email,
            ip="stripe-webhook",
            resource_type="order",
            resource_id=str(order.id),
            details={"refundId": refund_id, "failureReason": failure_reason},
            error_message=failure_reason,
        )
        return order

    async def notify_refund_processed(self, order: Order) -> None:
        if self.email_sender is None:
            return
        context = _customer_context(order)
        await self.email_sender.send(context.pop("to"), "refund_processed", context)

    async def alert_refund_failure(
        self, order: Order, failure_reason: Optional[str]
    ) -> None:
        if self.email_sender is None:
            return
        await self.email_sender.send_admin_alert(
            "refund_failed_admin",
            {
                "order_number": order.order_number,
                "refund_id": order.refund_id,
                "reason": failure_reason,
            },
        )

    async def process_refund_webhook(self, refund_id: str) -> ServiceResult:
        """Mark a refund confirmed by the gateway as succeeded."""
        try:
            order = await self.confirm_refund(refund_id)
            await self.session.commit()
        except (OrderRepositoryError, SQLAlchemyError, StateTransitionError) as e:
            await self.session.rollback()
            logger.error(
                "Error processing refund webhook", refund_id=refund_id, error=str(e)
            )
            return ServiceResult.fail(
                "Error al confirmar el reembolso", ErrorCode.INTERNAL_ERROR
            )
        if order is None:
            return ServiceResult.ok("Sin cambios", refund_id=refund_id, applied=False)
        return ServiceResult.ok(
            "Reembolso confirmado", refund_id=refund_id, order_id=str(order.id), applied=True
        )

    async def handle_refund_failure(
        self, refund_id: str, failure_reason: Optional[str] = None
    ) -> ServiceResult:
        """Mark a refund reported failed by the gateway and alert the admin."""
        try:
            order = await self.record_refund_failure(refund_id, failure_reason)
            await self.session.commit()
        except (OrderRepositoryError, SQLAlchemyError, StateTransitionError) as e:
            await self.session.rollback()
            logger.error(
                "Error handling refund failure", refund_id=refund_id, error=str(e)
            )
            return ServiceResult.fail(
                "Error al registrar el reembolso fallido", ErrorCode.INTERNAL_ERROR
            )
        if order is None:
            return ServiceResult.ok("Sin cambios", refund_id=refund_id, applied=False)
        await self.alert_refund_failure(order, failure_reason)
        return ServiceResult.ok(
            "Reembolso fallido registrado",
            refund_id=refund_id,
            order_id=str(order.id),
            applied=True,
        )

    # Settlement

    async def resume_approval(self, order_id: uuid.UUID) -> ServiceResult:
        """
        Finish the settlement steps of an approval that was interrupted.

        Safe to call any number of times: completed steps are skipped.
        """
        try:
            result = await self.session.execute(
                select(RefundSettlement)
                .where(RefundSettlement.order_id == order_id)
                .with_for_update()
            )
            settlement = result.scalar_one_or_none()
            if settlement is None:
                await self.session.rollback()
                return ServiceResult.fail(
                    "No hay una aprobación de reembolso para esta orden",
                    ErrorCode.PRECONDITION_FAILED,
                )
            if settlement.is_complete:
                await self.session.rollback()
                return ServiceResult.ok(
                    "La liquidación ya estaba completa",
                    order_id=str(order_id),
                    settlement_complete=True,
                    resumed=False,
                )
            order = await self.orders.require(order_id, for_update=True)
        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Error loading settlement", order_id=str(order_id), error=str(e)
            )
            return ServiceResult.fail(
                "Error al reanudar la aprobación", ErrorCode.INTERNAL_ERROR
            )

        logger.info(
            "Resuming refund settlement",
            order_id=str(order_id),
            stock_restored=settlement.stock_restored_at is not None,
            balance_reversed=settlement.balance_reversed_at is not None,
        )

        settlement_error = await self._run_settlement(settlement, order)
        if settlement_error:
            return ServiceResult.fail(
                "No se pudo completar la liquidación del reembolso",
                ErrorCode.INTERNAL_ERROR,
                order_id=str(order_id),
                settlement_error=settlement_error,
            )
        return ServiceResult.ok(
            "Liquidación del reembolso completada",
            order_id=str(order_id),
            settlement_complete=True,
            resumed=True,
        )

    async def _run_settlement(
        self, settlement: RefundSettlement, order: Order
    ) -> Optional[str]:
        """
        Run the unfinished settlement steps, committing after each one.

        Returns:
            None on completion, or the error message of the failed step
        """
        settlement_id = settlement.id
        order_id = order.id
        step = "restore_stock"
        try:
            if settlement.stock_restored_at is None:
                await self.inventory.restore_stock(order_id)
                settlement.stock_restored_at = utcnow()
                await self.session.commit()

            step = "reverse_balance"
            if settlement.requires_refund and settlement.balance_reversed_at is None:
                await self.ledger.reverse(
                    settlement.vendor_id,
                    settlement.amount,
                    order_id,
                    order.order_number,
                    refund_id=settlement.refund_id,
                )
                if await self._refund_confirmed(order_id):
                    await self.ledger.complete_refund_transactions(
                        settlement.refund_id
                    )
                settlement.balance_reversed_at = utcnow()
                await self.session.commit()

            step = "complete"
            settlement.completed_at = utcnow()
            settlement.last_error = None
            await self.session.commit()

        except (InventoryError, LedgerError, SQLAlchemyError) as e:
            await self.session.rollback()
            message = f"{step}: {e}"
            logger.error(
                "Refund settlement step failed",
                order_id=str(order_id),
                step=step,
                error=str(e),
            )
            await self._record_settlement_error(settlement_id, order_id, step, message)
            return message

        logger.info("Refund settlement completed", order_id=str(order_id))
        return None

    async def _refund_confirmed(self, order_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(Order.refund_status).where(Order.id == order_id)
        )
        return result.scalar_one_or_none() == RefundStatus.SUCCEEDED

    async def _record_settlement_error(
        self,
        settlement_id: uuid.UUID,
        order_id: uuid.UUID,
        step: str,
        message: str,
    ) -> None:
        try:
            await self.session.execute(
                update(RefundSettlement)
                .where(RefundSettlement.id == settlement_id)
                .values(last_error=message)
                .execution_options(synchronize_session=False)
            )
            self.audit.log(
                action="refund.settlement_incomplete",
                category="payment",
                severity=AuditSeverity.ERROR,
                ip="system",
                resource_type="order",
                resource_id=str(order_id),
                details={"step": step},
                error_message=message,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Could not record settlement failure",
                order_id=str(order_id),
                error=str(e),
            )


def get_refund_service(
    session: AsyncSession,
    stripe_client: Optional[StripeClient] = None,
    email_sender: Optional[EmailSender] = None,
) -> RefundService:
    return RefundService(session, stripe_client, email_sender)
