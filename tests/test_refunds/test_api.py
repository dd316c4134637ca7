"""
Tests for the cancellation endpoints.

Exercises role checks and ownership scoping on top of the refund service.
"""

import pytest

from luzimarket.database.models.order import CancellationStatus, OrderStatus
from luzimarket.services.payments.stripe_client import StripeConnectionError


def cancellation_url(order, action: str = "") -> str:
    suffix = f"/{action}" if action else ""
    return f"/api/v1/orders/{order.id}/cancellation{suffix}"


@pytest.fixture
def customer_headers(auth_headers, customer_id):
    return auth_headers("customer", subject=str(customer_id))


@pytest.fixture
def vendor_headers(auth_headers, vendor):
    return auth_headers("vendor", vendor_id=vendor.id)


@pytest.fixture
async def requested_order(api_client, paid_order, customer_headers):
    """
    Paid order whose customer asked to cancel.

    Returns:
        Order: Order awaiting approval
    """
    response = await api_client.post(
        cancellation_url(paid_order),
        json={"reason": "Ya no lo necesito"},
        headers=customer_headers,
    )
    assert response.status_code == 200
    return paid_order


# ============================================================================
# Request Tests
# ============================================================================


class TestRequestCancellation:
    """Test POST /orders/{id}/cancellation."""

    async def test_customer_requests(self, api_client, db_session, paid_order, customer_headers):
        """Test that the owning customer can request cancellation."""
        response = await api_client.post(
            cancellation_url(paid_order),
            json={"reason": "Ya no lo necesito"},
            headers=customer_headers,
        )

        await db_session.refresh(paid_order)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Solicitud de cancelación enviada al vendedor"
        assert body["data"]["cancellation_status"] == "requested"
        assert paid_order.cancellation_status == CancellationStatus.REQUESTED

    async def test_other_customer_gets_404(self, api_client, paid_order, auth_headers):
        """Test that another customer's order looks missing."""
        response = await api_client.post(
            cancellation_url(paid_order),
            json={"reason": "Ya no lo necesito"},
            headers=auth_headers("customer"),
        )

        assert response.status_code == 404
        assert response.json()["code"] == "ORDER_NOT_FOUND"

    async def test_short_reason_rejected(self, api_client, paid_order, customer_headers):
        """Test request validation."""
        response = await api_client.post(
            cancellation_url(paid_order), json={"reason": " a "}, headers=customer_headers
        )

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"

    async def test_shipped_order_conflict(
        self, api_client, make_order, customer_headers
    ):
        """Test that a shipped order cannot be cancelled."""
        order = await make_order(status=OrderStatus.SHIPPED)

        response = await api_client.post(
            cancellation_url(order), json={"reason": "Tarde"}, headers=customer_headers
        )

        assert response.status_code == 409

    async def test_requires_authentication(self, api_client, paid_order):
        """Test that anonymous callers are rejected."""
        response = await api_client.post(
            cancellation_url(paid_order), json={"reason": "Ya no lo necesito"}
        )

        assert response.status_code == 401


# ============================================================================
# Approval and Rejection Tests
# ============================================================================


class TestApproveCancellation:
    """Test POST /orders/{id}/cancellation/approve."""

    async def test_vendor_approves(
        self, api_client, db_session, stripe_client, requested_order, vendor_headers
    ):
        """Test that the owning vendor can approve and the refund is issued."""
        response = await api_client.post(
            cancellation_url(requested_order, "approve"),
            json={"notes": "Sin problema"},
            headers=vendor_headers,
        )

        await db_session.refresh(requested_order)
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Reembolso aprobado. ID: re_test_123"
        assert body["data"]["settlement_complete"] is True
        assert requested_order.status == OrderStatus.REFUNDED
        stripe_client.create_refund.assert_called_once()

    async def test_approve_without_body(self, api_client, requested_order, auth_headers):
        """Test that approval notes are optional."""
        response = await api_client.post(
            cancellation_url(requested_order, "approve"), headers=auth_headers("admin")
        )

        assert response.status_code == 200

    async def test_overlong_notes_rejected(
        self, api_client, stripe_client, requested_order, vendor_headers
    ):
        """Test that notes over 500 characters fail validation."""
        response = await api_client.post(
            cancellation_url(requested_order, "approve"),
            json={"notes": "x" * 501},
            headers=vendor_headers,
        )

        assert response.status_code == 422
        stripe_client.create_refund.assert_not_called()

    async def test_other_vendor_gets_404(
        self, api_client, stripe_client, requested_order, other_vendor, auth_headers
    ):
        """Test that vendors cannot approve orders of other vendors."""
        response = await api_client.post(
            cancellation_url(requested_order, "approve"),
            headers=auth_headers("vendor", vendor_id=other_vendor.id),
        )

        assert response.status_code == 404
        stripe_client.create_refund.assert_not_called()

    async def test_customer_forbidden(self, api_client, requested_order, customer_headers):
        """Test that customers cannot approve their own cancellation."""
        response = await api_client.post(
            cancellation_url(requested_order, "approve"), headers=customer_headers
        )

        assert response.status_code == 403

    async def test_gateway_error_is_502(
        self, api_client, stripe_client, requested_order, vendor_headers
    ):
        """Test the status code of a refused refund."""
        stripe_client.create_refund.side_effect = StripeConnectionError("Network down")

        response = await api_client.post(
            cancellation_url(requested_order, "approve"), headers=vendor_headers
        )

        assert response.status_code == 502
        assert response.json()["error"] == "Error al procesar el reembolso con Stripe"


class TestRejectCancellation:
    """Test POST /orders/{id}/cancellation/reject."""

    async def test_vendor_rejects(self, api_client, db_session, requested_order, vendor_headers):
        """Test that a rejection keeps the order paid."""
        response = await api_client.post(
            cancellation_url(requested_order, "reject"),
            json={"reason": "Pedido ya preparado"},
            headers=vendor_headers,
        )

        await db_session.refresh(requested_order)
        assert response.status_code == 200
        assert requested_order.cancellation_status == CancellationStatus.REJECTED
        assert requested_order.status == OrderStatus.PAID

    async def test_reason_required(self, api_client, requested_order, vendor_headers):
        """Test that a rejection must explain itself."""
        response = await api_client.post(
            cancellation_url(requested_order, "reject"), json={}, headers=vendor_headers
        )

        assert response.status_code == 422


class TestResumeCancellation:
    """Test POST /orders/{id}/cancellation/resume."""

    async def test_admin_only(self, api_client, paid_order, vendor_headers):
        """Test that vendors cannot resume settlements."""
        response = await api_client.post(
            cancellation_url(paid_order, "resume"), headers=vendor_headers
        )

        assert response.status_code == 403

    async def test_nothing_to_resume(self, api_client, paid_order, auth_headers):
        """Test resuming an order that was never approved."""
        response = await api_client.post(
            cancellation_url(paid_order, "resume"), headers=auth_headers("admin")
        )

        assert response.status_code == 400
        assert response.json()["code"] == "PRECONDITION_FAILED"

    async def test_completed_settlement(
        self, api_client, requested_order, vendor_headers, auth_headers
    ):
        """Test that resuming a finished settlement is a no-op."""
        await api_client.post(
            cancellation_url(requested_order, "approve"), headers=vendor_headers
        )

        response = await api_client.post(
            cancellation_url(requested_order, "resume"), headers=auth_headers("admin")
        )

        assert response.status_code == 200
        assert response.json()["data"]["resumed"] is False
