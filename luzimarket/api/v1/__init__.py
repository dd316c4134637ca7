"""
API v1 routers.

All routers are mounted under the ``/api/v1`` prefix.
"""

from fastapi import APIRouter

from luzimarket.api.v1.cron import router as cron_router
from luzimarket.api.v1.orders import router as orders_router
from luzimarket.api.v1.shipping import router as shipping_router
from luzimarket.api.v1.tracking import router as tracking_router
from luzimarket.api.v1.vendors import router as vendors_router
from luzimarket.api.v1.webhooks import router as webhooks_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(orders_router)
api_router.include_router(shipping_router)
api_router.include_router(tracking_router)
api_router.include_router(vendors_router)
api_router.include_router(cron_router)

__all__ = ["api_router"]
