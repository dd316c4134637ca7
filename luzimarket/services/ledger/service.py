"""
Vendor balance ledger.

Every balance mutation locks the vendor's balance row, computes the new split,
and writes the updated balance together with exactly one immutable
``Transaction`` inside a SAVEPOINT. Either both persist or neither does. The
caller owns the outer transaction and decides when to commit.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.config import get_settings
from luzimarket.core.logging import get_logger
from luzimarket.database.base import utcnow
from luzimarket.database.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
)
from luzimarket.database.models.vendor import VendorBalance

logger = get_logger(__name__)

CENT = Decimal("0.01")


class LedgerError(Exception):
    """Base exception for ledger errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InsufficientBalanceError(LedgerError):
    """Raised when a payout exceeds the available balance."""

    pass


def _money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT)


class VendorBalanceLedger:
    """Ledger of vendor balances and their transactions."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.currency = get_settings().default_currency

    async def _lock_balance(self, vendor_id: uuid.UUID) -> VendorBalance:
        """Load the balance row under a row lock, creating it at zero if absent."""
        result = await self.session.execute(
            select(VendorBalance)
            .where(VendorBalance.vendor_id == vendor_id)
            .with_for_update()
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            balance = VendorBalance(
                vendor_id=vendor_id,
                available_balance=Decimal("0.00"),
                pending_balance=Decimal("0.00"),
                reserved_balance=Decimal("0.00"),
                currency=self.currency,
            )
            self.session.add(balance)
            await self.session.flush()
            logger.info("Vendor balance created", vendor_id=str(vendor_id))
        return balance

    async def _apply(
        self,
        vendor_id: uuid.UUID,
        delta: Decimal,
        tx_type: TransactionType,
        status: TransactionStatus,
        description: str,
        order_id: Optional[uuid.UUID] = None,
        metadata: Optional[dict[str, Any]] = None,
        check_available: bool = False,
        **references: Optional[str],
    ) -> Transaction:
        """
        Move ``delta`` into the available balance and record the transaction.

        Args:
            vendor_id: Vendor whose balance changes
            delta: Signed amount added to the available balance
            tx_type: Transaction type
            status: Initial transaction status
            description: Human-readable description
            order_id: Related order
            metadata: Additional context
            check_available: Reject when the result would be negative
            **references: ``stripe_charge_id``, ``stripe_refund_id`` or
                ``stripe_payout_id``

        Returns:
            The inserted transaction

        Raises:
            InsufficientBalanceError: If ``check_available`` fails
            LedgerError: On database failure
        """
        try:
            async with self.session.begin_nested():
                balance = await self._lock_balance(vendor_id)
                before = balance.snapshot()
                new_available = _money(balance.available_balance + delta)

                if check_available and new_available < 0:
                    raise InsufficientBalanceError(
                        "Amount exceeds available balance",
                        vendor_id=str(vendor_id),
                        available=before["available"],
                        requested=str(-delta),
                    )

                now = utcnow()
                balance.available_balance = new_available
                balance.last_updated = now

                transaction = Transaction(
                    vendor_id=vendor_id,
                    order_id=order_id,
                    type=tx_type,
                    amount=_money(delta),
                    currency=balance.currency,
                    status=status,
                    description=description,
                    metadata_=metadata or {},
                    balance_transaction={
                        "before": before,
                        "after": balance.snapshot(),
                    },
                    completed_at=now if status == TransactionStatus.COMPLETED else None,
                    **references,
                )
                self.session.add(transaction)
                await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Ledger mutation failed",
                vendor_id=str(vendor_id),
                transaction_type=tx_type.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise LedgerError(
                "Failed to record ledger transaction",
                vendor_id=str(vendor_id),
                error=str(e),
            ) from e

        logger.info(
            "Ledger transaction recorded",
            vendor_id=str(vendor_id),
            transaction_id=str(transaction.id),
            transaction_type=tx_type.value,
            amount=str(transaction.amount),
            available_before=before["available"],
            available_after=str(balance.available_balance),
        )
        return transaction

    async def credit(
        self,
        vendor_id: uuid.UUID,
        amount: Decimal,
        order_id: uuid.UUID,
        order_number: str,
        payment_intent_id: Optional[str] = None,
    ) -> Transaction:
        """Credit a sale to the vendor's available balance."""
        if amount <= 0:
            raise LedgerError("Credit amount must be positive", amount=str(amount))
        return await self._apply(
            vendor_id,
            _money(amount),
            TransactionType.SALE,
            TransactionStatus.COMPLETED,
            f"Venta - Orden #{order_number}",
            order_id=order_id,
            metadata={
                "orderNumber": order_number,
                "paymentIntentId": payment_intent_id,
            },
            stripe_charge_id=payment_intent_id,
        )

    async def reverse(
        self,
        vendor_id: uuid.UUID,
        amount: Decimal,
        order_id: uuid.UUID,
        order_number: str,
        refund_id: Optional[str] = None,
    ) -> Transaction:
        """
        Reverse a sale after a refund.

        The transaction stays ``pending`` until the gateway confirms the
        refund. The available balance may go negative.
        """
        if amount <= 0:
            raise LedgerError("Reversal amount must be positive", amount=str(amount))
        return await self._apply(
            vendor_id,
            -_money(amount),
            TransactionType.REFUND,
            TransactionStatus.PENDING,
            f"Reembolso - Orden #{order_number}",
            order_id=order_id,
            metadata={"orderNumber": order_number, "refundId": refund_id},
            stripe_refund_id=refund_id,
        )

    async def record_payout(
        self,
        vendor_id: uuid.UUID,
        amount: Decimal,
        payout_id: Optional[str] = None,
    ) -> Transaction:
        """
        Withdraw from the available balance.

        Raises:
            InsufficientBalanceError: If the amount exceeds the available balance
        """
        if amount <= 0:
            raise LedgerError("Payout amount must be positive", amount=str(amount))
        return await self._apply(
            vendor_id,
            -_money(amount),
            TransactionType.PAYOUT,
            TransactionStatus.COMPLETED,
            "Retiro de fondos",
            metadata={"payoutId": payout_id},
            check_available=True,
            stripe_payout_id=payout_id,
        )

    async def _settle_refund_transactions(
        self, refund_id: str, status: TransactionStatus
    ) -> int:
        values: dict[str, Any] = {"status": status}
        if status == TransactionStatus.COMPLETED:
            values["completed_at"] = utcnow()
        result = await self.session.execute(
            update(Transaction)
            .where(
                Transaction.stripe_refund_id == refund_id,
                Transaction.type == TransactionType.REFUND,
                Transaction.status == TransactionStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        logger.info(
            "Refund transactions settled",
            refund_id=refund_id,
            status=status.value,
            count=result.rowcount,
        )
        return result.rowcount

    async def complete_refund_transactions(self, refund_id: str) -> int:
        """Mark pending reversals of a refund as completed."""
        return await self._settle_refund_transactions(
            refund_id, TransactionStatus.COMPLETED
        )

    async def fail_refund_transactions(self, refund_id: str) -> int:
        """Mark pending reversals of a refund as failed. The balance is not restored."""
        return await self._settle_refund_transactions(
            refund_id, TransactionStatus.FAILED
        )

    async def get_balance(self, vendor_id: uuid.UUID) -> Optional[VendorBalance]:
        result = await self.session.execute(
            select(VendorBalance).where(VendorBalance.vendor_id == vendor_id)
        )
        return result.scalar_one_or_none()

    async def list_transactions(
        self,
        vendor_id: uuid.UUID,
        tx_type: Optional[TransactionType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Transaction]:
        stmt = select(Transaction).where(Transaction.vendor_id == vendor_id)
        if tx_type is not None:
            stmt = stmt.where(Transaction.type == tx_type)
        stmt = stmt.order_by(Transaction.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def reconcile(self, vendor_id: uuid.UUID) -> dict[str, Any]:
        """
        Compare the available balance with the sum of the vendor's transactions.

        Returns:
            Dictionary with ``available_balance``, ``transactions_total``,
            ``difference`` and ``consistent``
        """
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(Transaction.amount), 0),
                func.count(Transaction.id),
            ).where(Transaction.vendor_id == vendor_id)
        )
        total, count = result.one()
        transactions_total = _money(Decimal(str(total)))

        balance = await self.get_balance(vendor_id)
        available = (
            _money(balance.available_balance) if balance else Decimal("0.00")
        )
        difference = available - transactions_total

        if difference != 0:
            logger.warning(
                "Vendor ledger out of balance",
                vendor_id=str(vendor_id),
                available=str(available),
                transactions_total=str(transactions_total),
                difference=str(difference),
            )

        return {
            "vendor_id": str(vendor_id),
            "available_balance": str(available),
            "transactions_total": str(transactions_total),
            "transaction_count": count,
            "difference": str(difference),
            "consistent": difference == 0,
        }


def get_ledger(session: AsyncSession) -> VendorBalanceLedger:
    return VendorBalanceLedger(session)
