"""Endpoints triggered by the external scheduler."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from luzimarket.api.deps import DatabaseSession, Mailer, verify_cron_secret
from luzimarket.api.responses import result_response
from luzimarket.core.logging import get_logger, log_performance
from luzimarket.schemas.common import ErrorCode, ServiceResult
from luzimarket.services.inventory.service import InventoryReconciler

logger = get_logger(__name__)

router = APIRouter(
    prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)]
)


@router.post(
    "/inventory-check",
    summary="Inventory sweep",
    description="Check inventory alerts, notify vendors and auto-deactivate sold out products",
)
async def inventory_check(db: DatabaseSession, email_sender: Mailer) -> JSONResponse:
    reconciler = InventoryReconciler(db, email_sender)
    try:
        with log_performance(logger, "inventory_sweep"):
            result = await reconciler.check_inventory_levels()
            await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Inventory sweep failed", error=str(e))
        return result_response(
            ServiceResult.fail("Error al revisar el inventario", ErrorCode.INTERNAL_ERROR)
        )

    sent = await reconciler.send_pending_notifications()
    return result_response(ServiceResult.ok(emails_sent=sent, **result.as_dict()))
