"""
Order read endpoints for the buyer (payment success page and order history)
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from ...core.dependencies import PaymentContainer, get_container
from ...core.exceptions import OrderNotFoundError
from ...core.security import get_current_user

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
async def list_orders(
    limit: int = Query(20, ge=1, le=100),
    current_user: Dict[str, Any] = Depends(get_current_user),
    container: PaymentContainer = Depends(get_container),
):
    """Caller's orders, newest first"""
    orders = await container.order_db.list_orders_for_owner(current_user["user_id"], limit=limit)
    return {
        "success": True,
        "orders": [order.to_dict() for order in orders],
        "count": len(orders),
    }


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    container: PaymentContainer = Depends(get_container),
):
    order = await container.order_db.get_order(order_id)
    # Another buyer's order is reported exactly like a missing one
    if order is None or order.owner_id != current_user["user_id"]:
        raise OrderNotFoundError(order_id)
    return {"success": True, "order": order.to_dict()}
