"""
Payment service for checkout payment intents.

Creates the Stripe payment intent for an order awaiting payment. An order
is linked to at most one intent: a repeated checkout call reuses the linked
intent instead of creating a second one.
"""

import asyncio
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.logging import get_logger
from luzimarket.schemas.common import ErrorCode, ServiceResult
from luzimarket.services.orders.enums import OrderState
from luzimarket.services.orders.repository import OrderRepository, OrderRepositoryError
from luzimarket.services.orders.state_machine import OrderStateMachine
from luzimarket.services.payments.stripe_client import (
    StripeClient,
    StripeClientError,
    to_cents,
)

logger = get_logger(__name__)

MIN_PAYMENT_AMOUNT = Decimal("0.50")
MAX_PAYMENT_AMOUNT = Decimal("999999.99")


class PaymentValidationError(Exception):
    """Raised when a payment amount is outside the accepted range."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


def validate_payment_amount(amount: Decimal) -> None:
    """
    Validate payment amount.

    Raises:
        PaymentValidationError: If amount is not between 0.50 and 999,999.99
    """
    if amount < MIN_PAYMENT_AMOUNT:
        raise PaymentValidationError(
            f"El monto mínimo de pago es {MIN_PAYMENT_AMOUNT}",
            amount=str(amount),
        )
    if amount > MAX_PAYMENT_AMOUNT:
        raise PaymentValidationError(
            f"El monto máximo de pago es {MAX_PAYMENT_AMOUNT}",
            amount=str(amount),
        )


class PaymentService:
    """
    Payment intent creation for checkout.

    Attributes:
        session: Request database session
        stripe_client: Stripe API client wrapper
    """

    def __init__(self, session: AsyncSession, stripe_client: Optional[StripeClient] = None):
        self.session = session
        self.orders = OrderRepository(session)
        self.state_machine = OrderStateMachine(session)
        self.stripe_client = stripe_client or StripeClient()

    async def create_payment_intent(
        self, order_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
    ) -> ServiceResult:
        """
        Create (or reuse) the payment intent of an order.

        Args:
            order_id: Order to pay
            user_id: Paying user; must own the order when given

        Returns:
            ServiceResult with ``client_secret`` and ``payment_intent_id``
        """
        try:
            order = await self.orders.get_by_id(order_id, for_update=True)
            if order is None or (user_id is not None and order.user_id != user_id):
                await self.session.rollback()
                return ServiceResult.fail("Orden no encontrada", ErrorCode.ORDER_NOT_FOUND)

            state = self.state_machine.current_state(order)
            if state != OrderState.AWAITING_PAYMENT:
                current_status = order.status.value
                await self.session.rollback()
                return ServiceResult.fail(
                    f"La orden no está pendiente de pago (estado: {current_status})",
                    ErrorCode.STATE_CONFLICT,
                )

            validate_payment_amount(order.total)

            if order.payment_intent_id:
                intent = await asyncio.to_thread(
                    self.stripe_client.retrieve_payment_intent, order.payment_intent_id
                )
                logger.info(
                    "Reusing linked payment intent",
                    order_id=str(order_id),
                    payment_intent_id=intent.id,
                )
            else:
                intent = await asyncio.to_thread(
                    self.stripe_client.create_payment_intent,
                    amount=to_cents(order.total),
                    currency=order.currency,
                    order_id=order.id,
                    customer_email=order.notification_email,
                    metadata={"orderNumber": order.order_number},
                    idempotency_key=f"payment-intent-{order.id}",
                )
                order.link_payment_intent(intent.id)

            data = {
                "order_id": str(order.id),
                "payment_intent_id": intent.id,
                "client_secret": intent.client_secret,
                "amount": str(order.total),
                "currency": order.currency,
            }
            await self.session.commit()

        except PaymentValidationError as e:
            await self.session.rollback()
            return ServiceResult.fail(str(e), ErrorCode.VALIDATION_ERROR)

        except StripeClientError as e:
            await self.session.rollback()
            logger.error(
                "Stripe error creating payment intent",
                order_id=str(order_id),
                error=str(e),
                error_code=e.code,
            )
            return ServiceResult.fail(
                "Error al crear el pago con Stripe", ErrorCode.GATEWAY_ERROR
            )

        except (OrderRepositoryError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(
                "Database error creating payment intent",
                order_id=str(order_id),
                error=str(e),
            )
            return ServiceResult.fail("Error al crear el pago", ErrorCode.INTERNAL_ERROR)

        return ServiceResult.ok("Pago iniciado", **data)


def get_payment_service(session: AsyncSession) -> PaymentService:
    return PaymentService(session)
