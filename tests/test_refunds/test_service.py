"""
Tests for the cancellation and refund workflow.

Covers requests, approval of paid and unpaid orders, gateway failures,
rejection, gateway confirmation and resumption of an interrupted
settlement.
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from luzimarket.database.models.audit import AuditLog, AuditSeverity
from luzimarket.database.models.order import (
    CancellationStatus,
    OrderStatus,
    OrderStatusHistory,
    PaymentStatus,
    RefundStatus,
)
from luzimarket.database.models.refund import RefundSettlement
from luzimarket.database.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
)
from luzimarket.schemas.common import ErrorCode
from luzimarket.services.ledger.service import LedgerError, VendorBalanceLedger
from luzimarket.services.payments.stripe_client import StripePaymentError
from luzimarket.services.refunds.service import RefundService, refund_idempotency_key


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def refund_service(db_session, stripe_client, email_sender) -> RefundService:
    """
    Refund service with mocked gateway and email.

    Returns:
        RefundService: Instance under test
    """
    return RefundService(db_session, stripe_client, email_sender)


@pytest.fixture
async def requested_paid_order(refund_service, paid_order, customer_id):
    """
    Paid order with a pending cancellation request.

    Returns:
        Order: Order awaiting approval
    """
    result = await refund_service.request_refund(
        paid_order.id, "Ya no lo necesito", requested_by=str(customer_id), user_id=customer_id
    )
    assert result.success
    return paid_order


@pytest.fixture
async def requested_unpaid_order(refund_service, pending_order, customer_id):
    """
    Unpaid order with a pending cancellation request.

    Returns:
        Order: Order awaiting approval
    """
    result = await refund_service.request_refund(
        pending_order.id, "Pedido duplicado", requested_by=str(customer_id)
    )
    assert result.success
    return pending_order


async def refund_transactions(session, order_id: uuid.UUID) -> list[Transaction]:
    result = await session.execute(
        select(Transaction).where(
            Transaction.order_id == order_id, Transaction.type == TransactionType.REFUND
        )
    )
    return list(result.scalars().all())


async def audit_actions(session) -> list[str]:
    result = await session.execute(select(AuditLog.action).order_by(AuditLog.created_at))
    return list(result.scalars().all())


# ============================================================================
# Request Tests
# ============================================================================


class TestRequestRefund:
    """Test cancellation requests."""

    async def test_request_on_paid_order(
        self, refund_service, db_session, email_sender, paid_order, vendor, customer_id
    ):
        """Test that a paid order moves to cancellation requested."""
        # Act
        result = await refund_service.request_refund(
            paid_order.id, "Ya no lo necesito", requested_by=str(customer_id), user_id=customer_id
        )

        # Assert
        await db_session.refresh(paid_order)
        assert result.success is True
        assert result.message == "Solicitud de cancelación enviada al vendedor"
        assert paid_order.cancellation_status == CancellationStatus.REQUESTED
        assert paid_order.status == OrderStatus.PAID
        assert paid_order.cancellation_reason == "Ya no lo necesito"
        assert paid_order.cancelled_by == str(customer_id)
        email_sender.send.assert_awaited_once()
        to, template_name, _ = email_sender.send.await_args.args
        assert (to, template_name) == (vendor.email, "cancellation_requested")
        assert "order.cancellation_requested" in await audit_actions(db_session)

    @pytest.mark.parametrize("status", [OrderStatus.SHIPPED, OrderStatus.DELIVERED])
    async def test_fulfilled_order_cannot_be_cancelled(
        self, refund_service, db_session, make_order, status
    ):
        """Test that shipped and delivered orders refuse cancellation."""
        order = await make_order(status=status, payment_status=PaymentStatus.SUCCEEDED)

        result = await refund_service.request_refund(order.id, "Cambié de opinión")

        await db_session.refresh(order)
        assert result.code == ErrorCode.STATE_CONFLICT
        assert result.error == f"No se puede cancelar una orden con estado: {status.value}"
        assert order.status == status
        assert order.cancellation_status == CancellationStatus.NONE

    async def test_other_customer_gets_not_found(self, refund_service, paid_order):
        """Test that a customer cannot cancel someone else's order."""
        result = await refund_service.request_refund(
            paid_order.id, "No es mío", user_id=uuid.uuid4()
        )

        assert result.code == ErrorCode.ORDER_NOT_FOUND

    async def test_other_vendor_gets_not_found(self, refund_service, paid_order, other_vendor):
        """Test that a vendor cannot cancel another vendor's order."""
        result = await refund_service.request_refund(
            paid_order.id, "Sin inventario", vendor_id=other_vendor.id
        )

        assert result.code == ErrorCode.ORDER_NOT_FOUND

    async def test_re_request_updates_reason(
        self, refund_service, db_session, requested_paid_order
    ):
        """Test that repeating a pending request only replaces the reason."""
        result = await refund_service.request_refund(
            requested_paid_order.id, "Encontré un mejor precio"
        )

        await db_session.refresh(requested_paid_order)
        assert result.success is True
        assert requested_paid_order.cancellation_reason == "Encontré un mejor precio"
        assert requested_paid_order.cancellation_status == CancellationStatus.REQUESTED


# ============================================================================
# Approval Tests
# ============================================================================


class TestApprovePaidOrder:
    """Test approving a cancellation of a paid order."""

    async def test_full_settlement(
        self,
        refund_service,
        db_session,
        stripe_client,
        email_sender,
        requested_paid_order,
        product,
        vendor,
    ):
        """Test refund, transition, stock restoration and balance reversal."""
        # Arrange
        order = requested_paid_order

        # Act
        result = await refund_service.approve_refund(
            order.id, approved_by="vendor-user-1", notes="Aprobado por tienda", vendor_id=vendor.id
        )

        # Assert
        await db_session.refresh(order)
        await db_session.refresh(product)
        assert result.success is True
        assert result.message == "Reembolso aprobado. ID: re_test_123"
        assert result.data["settlement_complete"] is True

        assert order.status == OrderStatus.REFUNDED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.cancellation_status == CancellationStatus.APPROVED
        assert order.refund_status == RefundStatus.PENDING
        assert order.refund_id == "re_test_123"
        assert order.cancelled_at is not None
        assert order.notes == "Aprobado por tienda"

        assert product.stock == 12

        reversals = await refund_transactions(db_session, order.id)
        assert len(reversals) == 1
        assert reversals[0].amount == Decimal("-500.00")
        assert reversals[0].status == TransactionStatus.PENDING
        assert reversals[0].stripe_refund_id == "re_test_123"

        settlement = (
            await db_session.execute(
                select(RefundSettlement).where(RefundSettlement.order_id == order.id)
            )
        ).scalar_one()
        assert settlement.is_complete
        assert settlement.stock_restored_at is not None
        assert settlement.balance_reversed_at is not None

        assert "refund.approved" in await audit_actions(db_session)
        assert email_sender.send.await_args.args[1] == "refund_processed"

    async def test_gateway_called_with_full_amount_and_key(
        self, refund_service, stripe_client, requested_paid_order
    ):
        """Test the refund request sent to Stripe."""
        await refund_service.approve_refund(requested_paid_order.id, approved_by="admin-1")

        kwargs = stripe_client.create_refund.call_args.kwargs
        assert kwargs["payment_intent_id"] == requested_paid_order.payment_intent_id
        assert kwargs["amount"] == 50000
        assert kwargs["reason"] == "requested_by_customer"
        assert kwargs["idempotency_key"] == refund_idempotency_key(requested_paid_order.id)
        assert kwargs["metadata"]["approvedBy"] == "admin-1"

    async def test_gateway_failure_changes_nothing(
        self, refund_service, db_session, stripe_client, requested_paid_order, product
    ):
        """Test that a refused refund leaves order, stock and ledger untouched."""
        # Arrange
        stripe_client.create_refund.side_effect = StripePaymentError(
            "Charge already refunded", code="charge_already_refunded"
        )

        # Act
        result = await refund_service.approve_refund(
            requested_paid_order.id, approved_by="admin-1"
        )

        # Assert
        await db_session.refresh(requested_paid_order)
        await db_session.refresh(product)
        assert result.code == ErrorCode.GATEWAY_ERROR
        assert result.error == "Error al procesar el reembolso con Stripe"
        assert requested_paid_order.status == OrderStatus.PAID
        assert requested_paid_order.cancellation_status == CancellationStatus.REQUESTED
        assert requested_paid_order.refund_id is None
        assert product.stock == 10
        assert await refund_transactions(db_session, requested_paid_order.id) == []
        count = (
            await db_session.execute(select(func.count(RefundSettlement.id)))
        ).scalar_one()
        assert count == 0

    async def test_second_approval_is_rejected(
        self, refund_service, stripe_client, requested_paid_order
    ):
        """Test that an approved order cannot be approved again."""
        await refund_service.approve_refund(requested_paid_order.id, approved_by="admin-1")

        result = await refund_service.approve_refund(
            requested_paid_order.id, approved_by="admin-1"
        )

        assert result.code == ErrorCode.PRECONDITION_FAILED
        assert result.error == "No hay solicitud de cancelación pendiente"
        assert stripe_client.create_refund.call_count == 1

    async def test_other_vendor_cannot_approve(
        self, refund_service, stripe_client, requested_paid_order, other_vendor
    ):
        """Test that approval is scoped to the owning vendor."""
        result = await refund_service.approve_refund(
            requested_paid_order.id, approved_by="v-2", vendor_id=other_vendor.id
        )

        assert result.code == ErrorCode.ORDER_NOT_FOUND
        stripe_client.create_refund.assert_not_called()

    async def test_overlong_notes_rejected_before_gateway(
        self, refund_service, db_session, stripe_client, requested_paid_order
    ):
        """Test that notes too long to record never reach the gateway."""
        order_id = requested_paid_order.id

        result = await refund_service.approve_refund(
            order_id, approved_by="admin-1", notes="x" * 501
        )

        await db_session.refresh(requested_paid_order)
        assert result.code == ErrorCode.VALIDATION_ERROR
        assert result.error == "Las notas no pueden exceder 500 caracteres"
        assert requested_paid_order.cancellation_status == CancellationStatus.REQUESTED
        assert requested_paid_order.status == OrderStatus.PAID
        stripe_client.create_refund.assert_not_called()

    async def test_notes_recorded_in_history(
        self, refund_service, db_session, requested_paid_order
    ):
        """Test that notes at the limit are stored whole on the transition."""
        order_id = requested_paid_order.id
        notes = "n" * 500

        result = await refund_service.approve_refund(order_id, approved_by="admin-1", notes=notes)

        entry = (
            await db_session.execute(
                select(OrderStatusHistory).where(
                    OrderStatusHistory.order_id == order_id,
                    OrderStatusHistory.event == "approve_refund",
                )
            )
        ).scalar_one()
        assert result.success is True
        assert entry.reason == notes

    async def test_refund_settled_at_creation(
        self, refund_service, db_session, stripe_client, requested_paid_order
    ):
        """Test that a refund the gateway reports as succeeded is confirmed on approval."""
        order_id = requested_paid_order.id
        stripe_client.create_refund.return_value = SimpleNamespace(
            id="re_instant_1", status="succeeded"
        )

        result = await refund_service.approve_refund(order_id, approved_by="admin-1")

        await db_session.refresh(requested_paid_order)
        reversal = (await refund_transactions(db_session, order_id))[0]
        await db_session.refresh(reversal)
        assert result.data["settlement_complete"] is True
        assert requested_paid_order.status == OrderStatus.REFUNDED
        assert requested_paid_order.refund_status == RefundStatus.SUCCEEDED
        assert requested_paid_order.refunded_at is not None
        assert reversal.status == TransactionStatus.COMPLETED
        assert reversal.completed_at is not None

    async def test_approval_without_request(
        self, refund_service, db_session, stripe_client, paid_order
    ):
        """Test that approval requires a pending request and changes nothing."""
        order_id = paid_order.id

        result = await refund_service.approve_refund(order_id, approved_by="admin-1")

        await db_session.refresh(paid_order)
        assert result.code == ErrorCode.PRECONDITION_FAILED
        assert result.error == "No hay solicitud de cancelación pendiente"
        assert paid_order.status == OrderStatus.PAID
        assert paid_order.cancellation_status == CancellationStatus.NONE
        assert paid_order.refund_status == RefundStatus.NONE
        assert paid_order.refund_id is None
        stripe_client.create_refund.assert_not_called()


class TestApproveUnpaidOrder:
    """Test approving a cancellation before payment."""

    async def test_cancels_without_refund(
        self, refund_service, db_session, stripe_client, email_sender, requested_unpaid_order, product
    ):
        """Test that an unpaid order is cancelled and only stock is restored."""
        order = requested_unpaid_order

        result = await refund_service.approve_refund(order.id, approved_by="admin-1")

        await db_session.refresh(order)
        await db_session.refresh(product)
        assert result.success is True
        assert result.message == "Reembolso aprobado. ID: N/A"
        assert result.data["refund_id"] is None
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_status == CancellationStatus.APPROVED
        assert order.refund_status == RefundStatus.NONE
        assert product.stock == 12
        assert await refund_transactions(db_session, order.id) == []
        stripe_client.create_refund.assert_not_called()
        assert email_sender.send.await_args.args[1] == "order_cancelled"
        assert "order.cancelled" in await audit_actions(db_session)


# ============================================================================
# Rejection Tests
# ============================================================================


class TestRejectRefund:
    """Test rejecting cancellation requests."""

    async def test_reject_returns_order_to_paid(
        self, refund_service, db_session, email_sender, requested_paid_order
    ):
        """Test that a rejected order continues its normal lifecycle."""
        result = await refund_service.reject_refund(
            requested_paid_order.id, rejected_by="vendor-user-1", reason="Ya fue preparado"
        )

        await db_session.refresh(requested_paid_order)
        assert result.success is True
        assert requested_paid_order.cancellation_status == CancellationStatus.REJECTED
        assert requested_paid_order.status == OrderStatus.PAID
        assert requested_paid_order.notes == "Cancelación rechazada: Ya fue preparado"
        assert email_sender.send.await_args.args[1] == "cancellation_rejected"

    async def test_rejected_order_can_request_again(
        self, refund_service, db_session, requested_paid_order
    ):
        """Test that a customer may ask again after a rejection."""
        await refund_service.reject_refund(
            requested_paid_order.id, rejected_by="vendor-user-1", reason="Ya fue preparado"
        )

        result = await refund_service.request_refund(requested_paid_order.id, "Por favor")

        await db_session.refresh(requested_paid_order)
        assert result.success is True
        assert requested_paid_order.cancellation_status == CancellationStatus.REQUESTED

    async def test_reject_unpaid_order(
        self, refund_service, db_session, requested_unpaid_order
    ):
        """Test that rejecting an unpaid order leaves it pending with no ledger entry."""
        order_id = requested_unpaid_order.id

        result = await refund_service.reject_refund(
            order_id, rejected_by="admin-1", reason="Fuera de plazo"
        )

        await db_session.refresh(requested_unpaid_order)
        assert result.success is True
        assert requested_unpaid_order.status == OrderStatus.PENDING
        assert requested_unpaid_order.cancellation_status == CancellationStatus.REJECTED
        assert requested_unpaid_order.payment_status == PaymentStatus.PENDING
        count = (
            await db_session.execute(
                select(func.count(Transaction.id)).where(Transaction.order_id == order_id)
            )
        ).scalar_one()
        assert count == 0

    async def test_reject_without_request(self, refund_service, db_session, paid_order):
        """Test that rejection requires a pending request and changes nothing."""
        order_id = paid_order.id

        result = await refund_service.reject_refund(
            order_id, rejected_by="admin-1", reason="No aplica"
        )

        await db_session.refresh(paid_order)
        assert result.code == ErrorCode.PRECONDITION_FAILED
        assert paid_order.status == OrderStatus.PAID
        assert paid_order.cancellation_status == CancellationStatus.NONE
        assert paid_order.refund_status == RefundStatus.NONE
        assert paid_order.refund_id is None
        assert paid_order.notes is None


# ============================================================================
# Gateway Confirmation Tests
# ============================================================================


class TestRefundConfirmation:
    """Test refund outcomes reported by the gateway."""

    async def test_confirmation_completes_reversal(
        self, refund_service, db_session, refund_pending_order
    ):
        """Test that a succeeded refund completes its pending reversal."""
        order = refund_pending_order
        await VendorBalanceLedger(db_session).reverse(
            order.vendor_id, order.total, order.id, order.order_number, refund_id=order.refund_id
        )
        await db_session.commit()

        result = await refund_service.process_refund_webhook(order.refund_id)

        await db_session.refresh(order)
        reversal = (await refund_transactions(db_session, order.id))[0]
        await db_session.refresh(reversal)
        assert result.data["applied"] is True
        assert order.refund_status == RefundStatus.SUCCEEDED
        assert order.refunded_at is not None
        assert reversal.status == TransactionStatus.COMPLETED

    async def test_confirmation_is_idempotent(self, refund_service, refund_pending_order):
        """Test that a repeated confirmation changes nothing."""
        await refund_service.process_refund_webhook(refund_pending_order.refund_id)

        result = await refund_service.process_refund_webhook(refund_pending_order.refund_id)

        assert result.success is True
        assert result.data["applied"] is False

    async def test_unknown_refund(self, refund_service):
        """Test that a refund with no matching order is ignored."""
        result = await refund_service.process_refund_webhook("re_unknown")

        assert result.success is True
        assert result.data["applied"] is False

    async def test_failure_is_recorded_and_alerted(
        self, refund_service, db_session, email_sender, refund_pending_order
    ):
        """Test that a failed refund is noted, audited and escalated."""
        order = refund_pending_order

        result = await refund_service.handle_refund_failure(
            order.refund_id, "insufficient_funds"
        )

        await db_session.refresh(order)
        assert result.message == "Reembolso fallido registrado"
        assert order.refund_status == RefundStatus.FAILED
        assert order.status == OrderStatus.REFUNDED
        assert order.notes == "Reembolso fallido: insufficient_funds"

        entry = (
            await db_session.execute(select(AuditLog).where(AuditLog.action == "refund.failed"))
        ).scalar_one()
        assert entry.severity == AuditSeverity.ERROR
        assert entry.category == "payment"
        assert entry.ip == "stripe-webhook"
        assert entry.user_type == "user"
        assert entry.details == {
            "refundId": order.refund_id,
            "failureReason": "insufficient_funds",
        }

        email_sender.send_admin_alert.assert_awaited_once()
        assert email_sender.send_admin_alert.await_args.args[0] == "refund_failed_admin"

    async def test_failure_without_reason(self, refund_service, db_session, refund_pending_order):
        """Test the note written when the gateway gives no reason."""
        await refund_service.handle_refund_failure(refund_pending_order.refund_id)

        await db_session.refresh(refund_pending_order)
        assert refund_pending_order.notes == "Reembolso fallido: Razón desconocida"


# ============================================================================
# Settlement Resumption Tests
# ============================================================================


class TestResumeApproval:
    """Test completing an interrupted approval."""

    async def test_resume_finishes_each_step_once(
        self, refund_service, db_session, stripe_client, requested_paid_order, product
    ):
        """Test that a failed reversal is retried without repeating other steps."""
        order_id = requested_paid_order.id

        # Act: balance reversal fails during approval
        with patch.object(
            refund_service.ledger,
            "reverse",
            AsyncMock(side_effect=LedgerError("Failed to record ledger transaction")),
        ):
            approval = await refund_service.approve_refund(order_id, approved_by="admin-1")

        # Assert: approved at the gateway, settlement incomplete
        assert approval.success is True
        assert approval.data["settlement_complete"] is False
        assert approval.data["settlement_error"].startswith("reverse_balance:")
        settlement = (
            await db_session.execute(
                select(RefundSettlement).where(RefundSettlement.order_id == order_id)
            )
        ).scalar_one()
        await db_session.refresh(settlement)
        assert settlement.stock_restored_at is not None
        assert settlement.balance_reversed_at is None
        assert settlement.last_error.startswith("reverse_balance:")
        assert "refund.settlement_incomplete" in await audit_actions(db_session)

        # Act: resume twice
        resumed = await refund_service.resume_approval(order_id)
        again = await refund_service.resume_approval(order_id)

        # Assert
        await db_session.refresh(product)
        await db_session.refresh(settlement)
        assert resumed.data["resumed"] is True
        assert again.data["resumed"] is False
        assert settlement.is_complete
        assert settlement.last_error is None
        assert product.stock == 12
        assert len(await refund_transactions(db_session, order_id)) == 1
        assert stripe_client.create_refund.call_count == 1

    async def test_reversal_after_confirmation_is_completed(
        self, refund_service, db_session, requested_paid_order
    ):
        """Test that a reversal recorded after the gateway confirmed is not left pending."""
        order_id = requested_paid_order.id
        with patch.object(
            refund_service.ledger,
            "reverse",
            AsyncMock(side_effect=LedgerError("Failed to record ledger transaction")),
        ):
            await refund_service.approve_refund(order_id, approved_by="admin-1")

        confirmed = await refund_service.process_refund_webhook("re_test_123")
        resumed = await refund_service.resume_approval(order_id)

        reversal = (await refund_transactions(db_session, order_id))[0]
        await db_session.refresh(reversal)
        assert confirmed.data["applied"] is True
        assert resumed.data["resumed"] is True
        assert reversal.status == TransactionStatus.COMPLETED

    async def test_resume_without_approval(self, refund_service, paid_order):
        """Test that only approved orders can be resumed."""
        result = await refund_service.resume_approval(paid_order.id)

        assert result.code == ErrorCode.PRECONDITION_FAILED
        assert result.error == "No hay una aprobación de reembolso para esta orden"
