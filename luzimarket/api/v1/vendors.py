"""
Vendor ledger and inventory alert endpoints.

Vendors see only their own balance, transactions and alerts; admins see any
vendor's.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from luzimarket.api.deps import (
    AdminActor,
    DatabaseSession,
    VendorOrAdmin,
    ensure_vendor_access,
)
from luzimarket.api.responses import result_response
from luzimarket.core.logging import get_logger
from luzimarket.database.models.transaction import TransactionType
from luzimarket.schemas.common import ErrorCode, ServiceResult
from luzimarket.schemas.vendors import InventoryAlertUpsert, PayoutRequest
from luzimarket.services.inventory.service import InventoryError, InventoryReconciler
from luzimarket.services.ledger.service import (
    InsufficientBalanceError,
    LedgerError,
    VendorBalanceLedger,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/vendors", tags=["vendors"])


@router.get("/{vendor_id}/balance", summary="Vendor balance")
async def get_balance(
    vendor_id: UUID, actor: VendorOrAdmin, db: DatabaseSession
) -> JSONResponse:
    ensure_vendor_access(actor, vendor_id)

    balance = await VendorBalanceLedger(db).get_balance(vendor_id)
    if balance is None:
        data = {
            "vendor_id": str(vendor_id),
            "available_balance": "0.00",
            "pending_balance": "0.00",
            "reserved_balance": "0.00",
            "currency": None,
        }
    else:
        data = balance.to_dict(exclude={"id", "created_at", "updated_at"})
    return result_response(ServiceResult.ok(balance=data))


@router.get("/{vendor_id}/transactions", summary="Vendor ledger transactions")
async def list_transactions(
    vendor_id: UUID,
    actor: VendorOrAdmin,
    db: DatabaseSession,
    tx_type: Optional[TransactionType] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> JSONResponse:
    ensure_vendor_access(actor, vendor_id)

    transactions = await VendorBalanceLedger(db).list_transactions(
        vendor_id, tx_type=tx_type, limit=limit, offset=offset
    )
    return result_response(
        ServiceResult.ok(
            transactions=[tx.to_dict() for tx in transactions],
            limit=limit,
            offset=offset,
        )
    )


@router.get("/{vendor_id}/reconciliation", summary="Ledger consistency check")
async def reconcile_balance(
    vendor_id: UUID, actor: VendorOrAdmin, db: DatabaseSession
) -> JSONResponse:
    ensure_vendor_access(actor, vendor_id)
    report = await VendorBalanceLedger(db).reconcile(vendor_id)
    return result_response(ServiceResult.ok(**report))


@router.post("/{vendor_id}/payouts", summary="Record payout")
async def record_payout(
    vendor_id: UUID,
    payout: PayoutRequest,
    actor: AdminActor,
    db: DatabaseSession,
) -> JSONResponse:
    try:
        transaction = await VendorBalanceLedger(db).record_payout(
            vendor_id, payout.amount, payout_id=payout.payout_id
        )
        await db.commit()
    except InsufficientBalanceError as e:
        await db.rollback()
        return result_response(
            ServiceResult.fail(
                "Saldo insuficiente para el retiro",
                ErrorCode.INSUFFICIENT_BALANCE,
                **e.context,
            )
        )
    except (LedgerError, SQLAlchemyError) as e:
        await db.rollback()
        logger.error("Payout failed", vendor_id=str(vendor_id), error=str(e))
        return result_response(
            ServiceResult.fail("Error al registrar el retiro", ErrorCode.INTERNAL_ERROR)
        )

    logger.info(
        "Payout recorded",
        vendor_id=str(vendor_id),
        amount=str(payout.amount),
        actor_id=actor.id,
    )
    return result_response(
        ServiceResult.ok("Retiro registrado", transaction=transaction.to_dict())
    )


@router.put("/{vendor_id}/inventory-alerts", summary="Create or update inventory alert")
async def upsert_inventory_alert(
    vendor_id: UUID,
    request: InventoryAlertUpsert,
    actor: VendorOrAdmin,
    db: DatabaseSession,
) -> JSONResponse:
    ensure_vendor_access(actor, vendor_id)

    try:
        alert = await InventoryReconciler(db).upsert_alert(
            vendor_id,
            request.product_id,
            request.alert_type,
            threshold=request.threshold,
            is_active=request.is_active,
        )
    except InventoryError:
        return result_response(
            ServiceResult.fail("Producto no encontrado", ErrorCode.NOT_FOUND)
        )
    return result_response(ServiceResult.ok("Alerta guardada", alert=alert.to_dict()))


@router.get("/{vendor_id}/inventory-alerts", summary="List inventory alerts")
async def list_inventory_alerts(
    vendor_id: UUID, actor: VendorOrAdmin, db: DatabaseSession
) -> JSONResponse:
    ensure_vendor_access(actor, vendor_id)
    alerts = await InventoryReconciler(db).list_alerts(vendor_id)
    return result_response(ServiceResult.ok(alerts=[a.to_dict() for a in alerts]))


@router.delete(
    "/{vendor_id}/inventory-alerts/{alert_id}", summary="Delete inventory alert"
)
async def delete_inventory_alert(
    vendor_id: UUID,
    alert_id: UUID,
    actor: VendorOrAdmin,
    db: DatabaseSession,
) -> JSONResponse:
    ensure_vendor_access(actor, vendor_id)
    if not await InventoryReconciler(db).delete_alert(vendor_id, alert_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alerta no encontrada")
    return result_response(ServiceResult.ok("Alerta eliminada"))
