"""
API v1 Router Initialization
"""

from fastapi import APIRouter

from .orders import router as orders_router
from .payments import router as payments_router
from .webhooks import legacy_router as legacy_webhooks_router
from .webhooks import router as webhooks_router

api_v1_router = APIRouter()

api_v1_router.include_router(payments_router)
api_v1_router.include_router(webhooks_router)
api_v1_router.include_router(legacy_webhooks_router)
api_v1_router.include_router(orders_router)

__all__ = ["api_v1_router"]
