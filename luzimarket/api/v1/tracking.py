"""Public order tracking lookup."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from luzimarket.api.deps import DatabaseSession
from luzimarket.api.responses import result_response
from luzimarket.core.config import get_settings
from luzimarket.core.rate_limit import limiter
from luzimarket.services.shipping.service import ShippingService

router = APIRouter(prefix="/tracking", tags=["tracking"])


@router.get(
    "/{order_number}",
    summary="Track order",
    description="Public tracking information of an order by its number",
)
@limiter.limit(get_settings().public_tracking_rate_limit)
async def track_order(request: Request, order_number: str, db: DatabaseSession) -> JSONResponse:
    service = ShippingService(db)
    result = await service.get_order_tracking(order_number)
    return result_response(result)
