"""
Tests for payment intent creation at checkout.
"""

import uuid
from decimal import Decimal

import pytest

from luzimarket.schemas.common import ErrorCode
from luzimarket.services.payments.service import (
    PaymentService,
    PaymentValidationError,
    validate_payment_amount,
)
from luzimarket.services.payments.stripe_client import StripeConnectionError


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def payment_service(db_session, stripe_client) -> PaymentService:
    """
    Payment service with the mock Stripe client.

    Returns:
        PaymentService: Instance under test
    """
    return PaymentService(db_session, stripe_client)


# ============================================================================
# Amount Validation Tests
# ============================================================================


class TestValidatePaymentAmount:
    """Test accepted payment amounts."""

    @pytest.mark.parametrize("amount", [Decimal("0.50"), Decimal("999999.99")])
    def test_bounds_are_inclusive(self, amount):
        """Test that the limits themselves are accepted."""
        validate_payment_amount(amount)

    @pytest.mark.parametrize("amount", [Decimal("0.49"), Decimal("1000000.00")])
    def test_out_of_range(self, amount):
        """Test that amounts outside the range are rejected."""
        with pytest.raises(PaymentValidationError):
            validate_payment_amount(amount)


# ============================================================================
# Payment Intent Tests
# ============================================================================


class TestCreatePaymentIntent:
    """Test create_payment_intent."""

    async def test_creates_and_links_intent(
        self, payment_service, db_session, stripe_client, make_order, customer_id
    ):
        """Test that a new intent is created for the full total and linked."""
        # Arrange
        order = await make_order()

        # Act
        result = await payment_service.create_payment_intent(order.id, user_id=customer_id)

        # Assert
        await db_session.refresh(order)
        assert result.success is True
        assert result.data["client_secret"] == "pi_test_new_secret_abc"
        assert result.data["amount"] == "500.00"
        assert order.payment_intent_id == "pi_test_new"
        kwargs = stripe_client.create_payment_intent.call_args.kwargs
        assert kwargs["amount"] == 50000
        assert kwargs["order_id"] == order.id
        assert kwargs["idempotency_key"] == f"payment-intent-{order.id}"
        assert kwargs["customer_email"] == "ana@example.com"

    async def test_reuses_linked_intent(self, payment_service, stripe_client, pending_order):
        """Test that a repeated checkout does not create a second intent."""
        result = await payment_service.create_payment_intent(pending_order.id)

        assert result.success is True
        assert result.data["payment_intent_id"] == pending_order.payment_intent_id
        stripe_client.create_payment_intent.assert_not_called()
        stripe_client.retrieve_payment_intent.assert_called_once_with(
            pending_order.payment_intent_id
        )

    async def test_paid_order_rejected(self, payment_service, stripe_client, paid_order):
        """Test that an order already paid cannot be paid again."""
        result = await payment_service.create_payment_intent(paid_order.id)

        assert result.code == ErrorCode.STATE_CONFLICT
        assert result.error == "La orden no está pendiente de pago (estado: paid)"
        stripe_client.create_payment_intent.assert_not_called()

    async def test_other_customer_gets_not_found(self, payment_service, pending_order):
        """Test that customers can only pay their own orders."""
        result = await payment_service.create_payment_intent(
            pending_order.id, user_id=uuid.uuid4()
        )

        assert result.code == ErrorCode.ORDER_NOT_FOUND

    async def test_amount_below_minimum(self, payment_service, make_order):
        """Test that tiny totals are rejected before calling Stripe."""
        order = await make_order(subtotal=Decimal("0.10"), total=Decimal("0.10"))

        result = await payment_service.create_payment_intent(order.id)

        assert result.code == ErrorCode.VALIDATION_ERROR
        assert result.error == "El monto mínimo de pago es 0.50"

    async def test_gateway_failure_leaves_order_unlinked(
        self, payment_service, db_session, stripe_client, make_order
    ):
        """Test that a Stripe outage is reported and nothing is linked."""
        order = await make_order()
        stripe_client.create_payment_intent.side_effect = StripeConnectionError(
            "Stripe unavailable"
        )

        result = await payment_service.create_payment_intent(order.id)

        await db_session.refresh(order)
        assert result.code == ErrorCode.GATEWAY_ERROR
        assert order.payment_intent_id is None
