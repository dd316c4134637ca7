"""
Inventory reconciliation.

Restores stock when an approved cancellation releases ordered units, keeps
vendor-configured stock alerts, and runs the periodic low-stock sweep that an
external scheduler triggers.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.config import get_settings
from luzimarket.core.logging import get_logger
from luzimarket.database.base import as_utc, utcnow
from luzimarket.database.models.inventory import AlertType, InventoryAlert
from luzimarket.database.models.order import OrderItem
from luzimarket.database.models.product import Product
from luzimarket.database.models.vendor import Vendor
from luzimarket.services.notifications.email import EmailSender

logger = get_logger(__name__)


class InventoryError(Exception):
    """Base exception for inventory errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


@dataclass
class SweepResult:
    """Counters reported by one inventory sweep."""

    checked: int = 0
    notified: int = 0
    deactivated: int = 0
    debounced: int = 0
    product_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "notified": self.notified,
            "deactivated": self.deactivated,
            "debounced": self.debounced,
        }


def alert_triggered(alert_type: AlertType, stock: int, threshold: int) -> bool:
    """Check whether a stock level crosses an alert's condition."""
    if alert_type == AlertType.OUT_OF_STOCK:
        return stock <= 0
    return stock <= threshold


class InventoryReconciler:
    """Stock restoration and stock alert sweep."""

    def __init__(self, session: AsyncSession, email_sender: Optional[EmailSender] = None):
        self.session = session
        self.email_sender = email_sender
        settings = get_settings()
        self.cooldown = timedelta(hours=settings.inventory_alert_cooldown_hours)
        self.default_threshold = settings.low_stock_threshold
        self._pending: list[tuple[str, dict[str, Any]]] = []

    async def restore_stock(self, order_id: uuid.UUID) -> int:
        """
        Return every ordered quantity to its product's stock.

        The increment runs in the database (``stock = stock + quantity``) so
        concurrent stock changes are not lost. Does not commit.

        Args:
            order_id: Order whose items are released

        Returns:
            Number of units restored

        Raises:
            InventoryError: On database failure
        """
        try:
            result = await self.session.execute(
                select(OrderItem.product_id, OrderItem.quantity).where(
                    OrderItem.order_id == order_id
                )
            )
            items = result.all()

            restored = 0
            for product_id, quantity in items:
                await self.session.execute(
                    update(Product)
                    .where(Product.id == product_id)
                    .values(stock=Product.stock + quantity)
                    .execution_options(synchronize_session="fetch")
                )
                restored += quantity
        except SQLAlchemyError as e:
            logger.error(
                "Stock restoration failed",
                order_id=str(order_id),
                error=str(e),
            )
            raise InventoryError(
                "Failed to restore stock", order_id=str(order_id), error=str(e)
            ) from e

        logger.info(
            "Stock restored",
            order_id=str(order_id),
            items=len(items),
            units=restored,
        )
        return restored

    async def upsert_alert(
        self,
        vendor_id: uuid.UUID,
        product_id: uuid.UUID,
        alert_type: AlertType,
        threshold: Optional[int] = None,
        is_active: bool = True,
    ) -> InventoryAlert:
        """
        Create or update the alert for (vendor, product, type).

        Raises:
            InventoryError: If the product does not belong to the vendor
        """
        product = await self.session.get(Product, product_id)
        if product is None or product.vendor_id != vendor_id:
            raise InventoryError(
                "Product not found for vendor",
                vendor_id=str(vendor_id),
                product_id=str(product_id),
            )

        result = await self.session.execute(
            select(InventoryAlert).where(
                InventoryAlert.vendor_id == vendor_id,
                InventoryAlert.product_id == product_id,
                InventoryAlert.alert_type == alert_type,
            )
        )
        alert = result.scalar_one_or_none()

        if alert is None:
            alert = InventoryAlert(
                vendor_id=vendor_id,
                product_id=product_id,
                alert_type=alert_type,
                threshold=threshold if threshold is not None else self.default_threshold,
                is_active=is_active,
            )
            self.session.add(alert)
        else:
            if threshold is not None:
                alert.threshold = threshold
            alert.is_active = is_active

        await self.session.flush()
        logger.info(
            "Inventory alert saved",
            vendor_id=str(vendor_id),
            product_id=str(product_id),
            alert_type=alert_type.value,
            threshold=alert.threshold,
            is_active=alert.is_active,
        )
        return alert

    async def list_alerts(self, vendor_id: uuid.UUID) -> Sequence[InventoryAlert]:
        result = await self.session.execute(
            select(InventoryAlert)
            .where(InventoryAlert.vendor_id == vendor_id)
            .order_by(InventoryAlert.created_at)
        )
        return result.scalars().all()

    async def delete_alert(self, vendor_id: uuid.UUID, alert_id: uuid.UUID) -> bool:
        alert = await self.session.get(InventoryAlert, alert_id)
        if alert is None or alert.vendor_id != vendor_id:
            return False
        await self.session.delete(alert)
        await self.session.flush()
        return True

    async def check_inventory_levels(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Sweep active alerts and notify vendors about crossed thresholds.

        An alert notifies at most once per cooldown window; the window is
        tracked by ``last_triggered_at``. Products at zero stock are
        deactivated when their vendor opted in, even while the alert is
        debounced. Commits are left to the caller; emails are sent only
        after the caller commits, via ``send_pending_notifications``.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Sweep counters
        """
        now = now or utcnow()
        result = SweepResult()
        self._pending = []

        rows = await self.session.execute(
            select(InventoryAlert, Product, Vendor)
            .join(Product, Product.id == InventoryAlert.product_id)
            .join(Vendor, Vendor.id == InventoryAlert.vendor_id)
            .where(InventoryAlert.is_active.is_(True))
            .order_by(InventoryAlert.created_at)
        )

        for alert, product, vendor in rows.all():
            result.checked += 1
            stock = product.stock or 0

            if not alert_triggered(alert.alert_type, stock, alert.threshold):
                continue

            deactivated = False
            if stock <= 0 and vendor.enable_auto_deactivate and product.is_active:
                product.is_active = False
                deactivated = True
                result.deactivated += 1
                logger.info(
                    "Product auto-deactivated",
                    product_id=str(product.id),
                    vendor_id=str(vendor.id),
                )

            last = as_utc(alert.last_triggered_at)
            if last is not None and now - last < self.cooldown:
                result.debounced += 1
                continue

            alert.last_triggered_at = now
            result.notified += 1
            result.product_ids.append(str(product.id))
            self._pending.append(
                (
                    vendor.email,
                    {
                        "business_name": vendor.business_name,
                        "product_name": product.name,
                        "product_id": str(product.id),
                        "stock": stock,
                        "threshold": alert.threshold,
                        "alert_type": alert.alert_type.value,
                        "deactivated": deactivated,
                    },
                )
            )

        await self.session.flush()
        logger.info("Inventory sweep finished", **result.as_dict())
        return result

    async def send_pending_notifications(self) -> int:
        """Email the alerts collected by the last sweep. Returns the number sent."""
        if self.email_sender is None:
            return 0
        sent = 0
        for to, context in self._pending:
            if await self.email_sender.send(to, "low_stock_alert", context):
                sent += 1
        self._pending = []
        return sent


def get_inventory_reconciler(
    session: AsyncSession, email_sender: Optional[EmailSender] = None
) -> InventoryReconciler:
    return InventoryReconciler(session, email_sender)
