"""
Integration tests for the order payment, shipping and public tracking
endpoints.
"""

from uuid import uuid4

import pytest
from fastapi import status

from luzimarket.database.models.order import OrderStatus


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def customer_headers(auth_headers, customer_id):
    return auth_headers("customer", subject=str(customer_id))


@pytest.fixture
def vendor_headers(auth_headers, vendor):
    return auth_headers("vendor", vendor_id=vendor.id)


# ============================================================================
# Payment Intent Tests
# ============================================================================


class TestPaymentIntentEndpoint:
    """Test POST /orders/{id}/payment-intent."""

    async def test_customer_gets_client_secret(
        self, api_client, db_session, make_order, customer_headers
    ):
        """Test that checkout returns the client secret and links the intent."""
        order = await make_order()

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/payment-intent", headers=customer_headers
        )

        await db_session.refresh(order)
        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["client_secret"] == "pi_test_new_secret_abc"
        assert data["payment_intent_id"] == "pi_test_new"
        assert order.payment_intent_id == "pi_test_new"

    async def test_paid_order_conflict(self, api_client, paid_order, customer_headers):
        """Test that a paid order cannot start another payment."""
        response = await api_client.post(
            f"/api/v1/orders/{paid_order.id}/payment-intent", headers=customer_headers
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["code"] == "STATE_CONFLICT"

    async def test_unknown_order(self, api_client, customer_headers):
        """Test that an unknown order id is a 404."""
        response = await api_client.post(
            f"/api/v1/orders/{uuid4()}/payment-intent", headers=customer_headers
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_vendor_cannot_pay(self, api_client, pending_order, vendor_headers):
        """Test that only customers create payment intents."""
        response = await api_client.post(
            f"/api/v1/orders/{pending_order.id}/payment-intent", headers=vendor_headers
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_invalid_token(self, api_client, pending_order):
        """Test that a malformed bearer token is rejected."""
        response = await api_client.post(
            f"/api/v1/orders/{pending_order.id}/payment-intent",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# ============================================================================
# Shipping Tests
# ============================================================================


class TestTrackingEndpoints:
    """Test vendor tracking endpoints and the public lookup."""

    async def test_vendor_adds_tracking(
        self, api_client, db_session, paid_order, vendor_headers
    ):
        """Test that the vendor ships a paid order."""
        response = await api_client.post(
            f"/api/v1/orders/{paid_order.id}/tracking",
            json={"tracking_number": "1Z12345E0205271688", "carrier": "ups"},
            headers=vendor_headers,
        )

        await db_session.refresh(paid_order)
        assert response.status_code == status.HTTP_200_OK
        assert paid_order.status == OrderStatus.SHIPPED

    async def test_invalid_tracking_number(self, api_client, paid_order, vendor_headers):
        """Test that a malformed number is a 400."""
        response = await api_client.post(
            f"/api/v1/orders/{paid_order.id}/tracking",
            json={"tracking_number": "abc", "carrier": "ups"},
            headers=vendor_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Formato de número de rastreo inválido"

    async def test_public_tracking(self, api_client, paid_order, vendor_headers):
        """Test that anyone can look up tracking by order number."""
        await api_client.post(
            f"/api/v1/orders/{paid_order.id}/tracking",
            json={"tracking_number": "1Z12345E0205271688", "carrier": "ups"},
            headers=vendor_headers,
        )

        response = await api_client.get(f"/api/v1/tracking/{paid_order.order_number}")

        assert response.status_code == status.HTTP_200_OK
        tracking = response.json()["data"]["tracking"]
        assert tracking["tracking_number"] == "1Z12345E0205271688"
        assert "customer_email" not in tracking

    async def test_public_tracking_unknown(self, api_client):
        """Test the lookup of an unknown order number."""
        response = await api_client.get("/api/v1/tracking/LM-NOEXISTE")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestHealth:
    """Test the liveness endpoint."""

    async def test_health(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
