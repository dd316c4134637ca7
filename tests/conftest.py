"""
Pytest configuration and shared test fixtures.

Tests run against a file-backed SQLite database created from the ORM
metadata, with SAVEPOINT support enabled so ledger mutations behave as they
do on PostgreSQL. The Stripe gateway and the email sender are mocked; the
HTTP client talks to the FastAPI app in-process.
"""

import hashlib
import hmac
import json
import os
import time
import uuid
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional
from unittest.mock import AsyncMock, Mock

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("APP_STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("APP_STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("APP_CRON_SECRET", "cron-test-secret")
os.environ.setdefault("APP_ADMIN_ALERT_EMAIL", "ops@luzimarket.shop")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from luzimarket.core.security import create_access_token
from luzimarket.database.base import Base
from luzimarket.database.connection import get_db
from luzimarket.database.models import (
    CancellationStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    RefundStatus,
    Vendor,
)
from luzimarket.services.notifications.email import EmailSender, get_email_sender
from luzimarket.services.payments.stripe_client import StripeClient, get_stripe_client

WEBHOOK_SECRET = "whsec_test_secret"
CRON_SECRET = "cron-test-secret"
CUSTOMER_ID = uuid.UUID("5b0a6c4e-1f2d-4e8a-9c3b-7d6e5f4a3b2c")
ORDER_TOTAL = Decimal("500.00")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a SQLite engine with the full schema.

    pysqlite's implicit transaction handling is disabled and BEGIN is
    emitted explicitly, which is what makes SAVEPOINT work.

    Yields:
        AsyncEngine: Engine bound to a per-test database file
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a session configured like the application's.

    Yields:
        AsyncSession: Session shared by the test and the services under test
    """
    factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with factory() as session:
        yield session


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def customer_id() -> uuid.UUID:
    """
    Registered customer that owns orders created by ``make_order``.

    Returns:
        uuid.UUID: Customer identifier
    """
    return CUSTOMER_ID


@pytest.fixture
async def vendor(db_session: AsyncSession) -> Vendor:
    """
    Create a vendor with automatic deactivation enabled.

    Returns:
        Vendor: Persisted vendor
    """
    vendor = Vendor(
        business_name="Flores del Valle",
        email="ventas@floresdelvalle.mx",
        enable_auto_deactivate=True,
        is_active=True,
    )
    db_session.add(vendor)
    await db_session.commit()
    return vendor


@pytest.fixture
async def other_vendor(db_session: AsyncSession) -> Vendor:
    """
    Create a second vendor that owns none of the test orders.

    Returns:
        Vendor: Persisted vendor
    """
    vendor = Vendor(
        business_name="Regalos Norte",
        email="contacto@regalosnorte.mx",
        enable_auto_deactivate=False,
        is_active=True,
    )
    db_session.add(vendor)
    await db_session.commit()
    return vendor


@pytest.fixture
async def product(db_session: AsyncSession, vendor: Vendor) -> Product:
    """
    Create a product with 10 units on hand.

    Returns:
        Product: Persisted product
    """
    product = Product(vendor_id=vendor.id, name="Ramo de rosas", stock=10, is_active=True)
    db_session.add(product)
    await db_session.commit()
    return product


@pytest.fixture
def make_order(
    db_session: AsyncSession, vendor: Vendor, product: Product
) -> Callable[..., Awaitable[Order]]:
    """
    Factory for orders with one line item of 2 units.

    Keyword arguments override order columns, e.g.
    ``await make_order(status=OrderStatus.PAID)``.

    Returns:
        Callable: Coroutine function creating and committing an order
    """

    async def _make_order(quantity: int = 2, **overrides: Any) -> Order:
        values: dict[str, Any] = {
            "order_number": f"LM-{uuid.uuid4().hex[:8].upper()}",
            "vendor_id": vendor.id,
            "user_id": CUSTOMER_ID,
            "customer_email": "ana@example.com",
            "customer_name": "Ana López",
            "subtotal": ORDER_TOTAL,
            "tax": Decimal("0.00"),
            "shipping": Decimal("0.00"),
            "total": ORDER_TOTAL,
            "currency": "MXN",
            "status": OrderStatus.PENDING,
            "payment_status": PaymentStatus.PENDING,
            "cancellation_status": CancellationStatus.NONE,
            "refund_status": RefundStatus.NONE,
            "tracking_history": [],
        }
        values.update(overrides)
        order = Order(**values)
        db_session.add(order)
        await db_session.flush()

        db_session.add(
            OrderItem(
                order_id=order.id,
                product_id=product.id,
                quantity=quantity,
                price=order.total / quantity,
                total=order.total,
            )
        )
        await db_session.commit()
        return order

    return _make_order


@pytest.fixture
async def pending_order(make_order) -> Order:
    """
    Create an order awaiting payment with a linked payment intent.

    Returns:
        Order: Pending order
    """
    return await make_order(payment_intent_id=f"pi_{uuid.uuid4().hex[:12]}")


@pytest.fixture
async def paid_order(make_order) -> Order:
    """
    Create an order whose payment has been captured.

    Returns:
        Order: Paid order
    """
    return await make_order(
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.SUCCEEDED,
        payment_intent_id=f"pi_{uuid.uuid4().hex[:12]}",
    )


@pytest.fixture
async def refund_pending_order(make_order) -> Order:
    """
    Create an order whose approved refund awaits gateway confirmation.

    Returns:
        Order: Order in the refund pending state with ``refund_id`` set
    """
    return await make_order(
        status=OrderStatus.REFUNDED,
        payment_status=PaymentStatus.REFUNDED,
        cancellation_status=CancellationStatus.APPROVED,
        refund_status=RefundStatus.PENDING,
        payment_intent_id=f"pi_{uuid.uuid4().hex[:12]}",
        refund_id=f"re_{uuid.uuid4().hex[:12]}",
    )


# ============================================================================
# External Service Fixtures
# ============================================================================


@pytest.fixture
def stripe_client() -> Mock:
    """
    Mock Stripe client returning canned intents and refunds.

    Returns:
        Mock: StripeClient-shaped mock
    """
    client = Mock(spec=StripeClient)
    client.webhook_secret = WEBHOOK_SECRET
    client.create_payment_intent.return_value = SimpleNamespace(
        id="pi_test_new", client_secret="pi_test_new_secret_abc"
    )
    client.retrieve_payment_intent.side_effect = lambda intent_id: SimpleNamespace(
        id=intent_id, client_secret=f"{intent_id}_secret_abc"
    )
    client.create_refund.return_value = SimpleNamespace(
        id="re_test_123", status="pending"
    )
    return client


@pytest.fixture
def email_sender() -> AsyncMock:
    """
    Mock email sender that reports every message as sent.

    Returns:
        AsyncMock: EmailSender-shaped mock
    """
    sender = AsyncMock(spec=EmailSender)
    sender.send.return_value = True
    sender.send_admin_alert.return_value = True
    return sender


@pytest.fixture
def signed_event() -> Callable[..., tuple[bytes, str]]:
    """
    Build a webhook payload and a valid ``Stripe-Signature`` header for it.

    Returns:
        Callable: ``(event_type, data_object, event_id=None)`` -> (payload, header)
    """

    def _signed_event(
        event_type: str,
        data_object: dict[str, Any],
        event_id: Optional[str] = None,
        secret: str = WEBHOOK_SECRET,
    ) -> tuple[bytes, str]:
        payload = json.dumps(
            {
                "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
                "object": "event",
                "type": event_type,
                "created": int(time.time()),
                "livemode": False,
                "data": {"object": data_object},
            }
        ).encode()
        timestamp = int(time.time())
        signature = hmac.new(
            secret.encode(),
            f"{timestamp}.".encode() + payload,
            hashlib.sha256,
        ).hexdigest()
        return payload, f"t={timestamp},v1={signature}"

    return _signed_event


# ============================================================================
# HTTP Fixtures
# ============================================================================


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """
    Build bearer headers for a role.

    Returns:
        Callable: ``(role, subject=None, vendor_id=None)`` -> headers
    """

    def _auth_headers(
        role: str,
        subject: Optional[str] = None,
        vendor_id: Optional[uuid.UUID] = None,
    ) -> dict[str, str]:
        token = create_access_token(
            subject=subject or str(uuid.uuid4()),
            role=role,
            vendor_id=str(vendor_id) if vendor_id else None,
        )
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
async def api_client(
    db_session: AsyncSession, stripe_client: Mock, email_sender: AsyncMock
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async client for the application with test dependencies.

    Yields:
        AsyncClient: Client bound to the app via ASGI transport
    """
    from luzimarket.main import app

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_stripe_client] = lambda: stripe_client
    app.dependency_overrides[get_email_sender] = lambda: email_sender

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
