"""
Product table access for the payment core: availability and price reads at
checkout. The stock decrement for a paid order runs inside
OrderDatabase.commit_inventory.
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
class Product:
    product_id: str
    name: str
    price: Decimal
    current_stock: int
    is_active: bool = True
    images: List[str] = field(default_factory=list)

    @property
    def primary_image(self) -> str:
        return self.images[0] if self.images else ""

    def can_fulfil(self, quantity: int) -> bool:
        return self.is_active and self.current_stock >= quantity

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Product":
        return cls(
            product_id=item["product_id"],
            name=item.get("name", ""),
            price=Decimal(str(item.get("price", 0))),
            current_stock=int(item.get("current_stock", 0)),
            is_active=bool(item.get("is_active", True)),
            images=list(item.get("images") or []),
        )


class ProductDatabase:
    def __init__(self, settings, dynamodb=None):
        self.dynamodb = dynamodb or create_dynamodb_resource(settings)
        self.table = self.dynamodb.Table(settings.DYNAMODB_PRODUCTS_TABLE)

    async def get_product(self, product_id: str) -> Optional[Product]:
        try:
            response = await asyncio.to_thread(
                self.table.get_item,
                Key={"product_id": product_id},
            )
        except ClientError as e:
            logger.error(f"Error getting product {product_id}: {e}")
            raise DatabaseError("Failed to load product", {"product_id": product_id})

        item = response.get("Item")
        return Product.from_item(item) if item else None
