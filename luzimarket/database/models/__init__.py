"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from luzimarket.database.models.audit import AuditLog, AuditSeverity
from luzimarket.database.models.inventory import AlertType, InventoryAlert
from luzimarket.database.models.order import (
    CancellationStatus,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    PaymentStatus,
    RefundStatus,
)
from luzimarket.database.models.product import Product
from luzimarket.database.models.refund import RefundSettlement
from luzimarket.database.models.shipping import ShippingLabel
from luzimarket.database.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
)
from luzimarket.database.models.vendor import Vendor, VendorBalance
from luzimarket.database.models.webhook import ProcessedWebhookEvent

__all__ = [
    "AlertType",
    "AuditLog",
    "AuditSeverity",
    "CancellationStatus",
    "InventoryAlert",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "PaymentStatus",
    "ProcessedWebhookEvent",
    "Product",
    "RefundSettlement",
    "RefundStatus",
    "ShippingLabel",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "Vendor",
    "VendorBalance",
]
