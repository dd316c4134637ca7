"""
Order data access repository.

Lookups used by the settlement services. Every lookup can take a row lock
(``SELECT ... FOR UPDATE``) so that concurrent webhook deliveries and refund
actions on the same order serialize on the order row.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.logging import get_logger
from luzimarket.database.models.order import Order

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderRepository:
    """Repository for order data access operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_one(self, criterion, for_update: bool) -> Optional[Order]:
        stmt = select(Order).where(criterion)
        if for_update:
            stmt = stmt.with_for_update()
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Database error loading order",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderRepositoryError("Failed to load order", error=str(e)) from e
        return result.scalar_one_or_none()

    async def get_by_id(
        self, order_id: uuid.UUID, for_update: bool = False
    ) -> Optional[Order]:
        return await self._get_one(Order.id == order_id, for_update)

    async def get_by_order_number(
        self, order_number: str, for_update: bool = False
    ) -> Optional[Order]:
        return await self._get_one(Order.order_number == order_number, for_update)

    async def get_by_payment_intent(
        self, payment_intent_id: str, for_update: bool = False
    ) -> Optional[Order]:
        return await self._get_one(
            Order.payment_intent_id == payment_intent_id, for_update
        )

    async def get_by_refund_id(
        self, refund_id: str, for_update: bool = False
    ) -> Optional[Order]:
        return await self._get_one(Order.refund_id == refund_id, for_update)

    async def require(self, order_id: uuid.UUID, for_update: bool = False) -> Order:
        """
        Load an order or raise.

        Raises:
            OrderNotFoundError: If no order has this id
        """
        order = await self.get_by_id(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return order
