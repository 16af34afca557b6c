"""
Cart table access for the payment core.

Checkout only reads the buyer's cart here. Emptying it once a payment is
confirmed is part of OrderDatabase.commit_inventory; line-item editing belongs
to the storefront cart API.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from ..core.exceptions import DatabaseError
from .order_db import create_dynamodb_resource

logger = logging.getLogger(__name__)


@dataclass
class CartItem:
    product_id: str
    quantity: int
    selected_variant: Optional[Dict[str, Any]] = None

    @property
    def variant_price(self) -> Optional[Decimal]:
        if self.selected_variant and self.selected_variant.get("price") is not None:
            return Decimal(str(self.selected_variant["price"]))
        return None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "CartItem":
        return cls(
            product_id=item["product_id"],
            quantity=int(item.get("quantity", 1)),
            selected_variant=item.get("selected_variant"),
        )


@dataclass
class Cart:
    user_id: str
    items: List[CartItem] = field(default_factory=list)
    updated_at: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.items

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Cart":
        return cls(
            user_id=item["user_id"],
            items=[CartItem.from_item(line) for line in item.get("items", [])],
            updated_at=item.get("updated_at", ""),
        )


class CartDatabase:
    """Carts table, one item per user keyed by user_id"""

    def __init__(self, settings, dynamodb=None):
        self.dynamodb = dynamodb or create_dynamodb_resource(settings)
        self.table = self.dynamodb.Table(settings.DYNAMODB_CARTS_TABLE)

    async def get_cart(self, user_id: str) -> Optional[Cart]:
        try:
            response = await asyncio.to_thread(
                self.table.get_item,
                Key={"user_id": user_id},
            )
        except ClientError as e:
            logger.error(f"Error getting cart for {user_id}: {e}")
            raise DatabaseError("Failed to load cart", {"user_id": user_id})

        item = response.get("Item")
        return Cart.from_item(item) if item else None
