"""
Order Database Manager for sastabazar
Handles DynamoDB operations for the orders table

Table:
- sastabazar-orders-{env}: one item per order, hash key order_id
- GSI owner_id-index: owner_id (hash) + created_at (range) for order history

Key Design:
- Every payment state change is a single update_item guarded by a
  ConditionExpression on payment_status. A failed condition means another
  writer got there first and is returned as None, never raised.
- update_item would otherwise upsert, so every transition also requires
  attribute_exists(order_id).
- The paid side effects (commit marker, cart clear, stock decrements) go in
  one transaction across the orders, carts and products tables.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from ..core.exceptions import ConflictError, DatabaseError, NotFoundError

logger = logging.getLogger(__name__)


def decimal_to_float(obj: Any) -> Any:
    """Convert Decimal values to float recursively for JSON serialization"""
    if isinstance(obj, Decimal):
        return float(obj)
    elif isinstance(obj, dict):
        return {k: decimal_to_float(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [decimal_to_float(item) for item in obj]
    return obj


def float_to_decimal(obj: Any) -> Any:
    """Convert float values to Decimal recursively for DynamoDB compatibility"""
    if isinstance(obj, float):
        return Decimal(str(obj))
    elif isinstance(obj, dict):
        return {k: float_to_decimal(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [float_to_decimal(item) for item in obj]
    return obj


def utc_now() -> str:
    return datetime.utcnow().isoformat()


def is_conditional_check_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def create_dynamodb_resource(settings):
    kwargs = {"region_name": settings.AWS_REGION}

    # Use endpoint if specified (for LocalStack/local development)
    if settings.DYNAMODB_ENDPOINT:
        kwargs["endpoint_url"] = settings.DYNAMODB_ENDPOINT

    return boto3.resource("dynamodb", **kwargs)


# =============================================================================
# Order Model
# =============================================================================

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    STRIPE = "stripe"


# Source states each transition may leave from. The in-memory stores used by
# the test-suite read these too, so the lattice is defined once.
AUTHORIZABLE_STATES = (PaymentStatus.PENDING,)
PAYABLE_STATES = (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED)
FAILABLE_STATES = (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED)
REFUNDABLE_STATES = (PaymentStatus.PAID,)
SETTLED_STATES = (PaymentStatus.PAID, PaymentStatus.REFUNDED)

# TransactWriteItems takes at most 100 actions: the order, the cart and one
# per distinct product
MAX_ORDER_PRODUCTS = 98


@dataclass
class OrderItem:
    """Priced line item, snapshotted from the cart at checkout"""
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    image: str = ""
    selected_variant: Optional[Dict[str, str]] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_item(self) -> Dict[str, Any]:
        item = {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "image": self.image,
        }
        if self.selected_variant:
            item["selected_variant"] = dict(self.selected_variant)
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=item["product_id"],
            name=item.get("name", ""),
            quantity=int(item["quantity"]),
            unit_price=Decimal(str(item["unit_price"])),
            image=item.get("image", ""),
            selected_variant=item.get("selected_variant"),
        )


@dataclass
class Order:
    """Order record with its payment and fulfillment state"""
    order_id: str
    order_number: str
    owner_id: str
    items: List[OrderItem]
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    total: Decimal
    payment_method: PaymentMethod
    currency: str = "INR"
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    gateway_order_ref: Optional[str] = None
    payment_details: Dict[str, Any] = field(default_factory=dict)
    payment_history: List[Dict[str, Any]] = field(default_factory=list)
    refund_details: Optional[Dict[str, Any]] = None
    paid_at: Optional[str] = None
    refunded_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    failure_reason: Optional[str] = None
    inventory_committed_at: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    shipping_method: str = "standard"
    notes: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def amount_minor(self) -> int:
        """Order total in the smallest currency unit (paise)"""
        return int(self.total * 100)

    @property
    def gateway_payment_ref(self) -> Optional[str]:
        return self.payment_details.get("gateway_payment_ref")

    def to_item(self) -> Dict[str, Any]:
        """Serialize to a DynamoDB item, omitting unset attributes"""
        item = {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "owner_id": self.owner_id,
            "items": [line.to_item() for line in self.items],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping_fee": self.shipping_fee,
            "total": self.total,
            "currency": self.currency,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "payment_method": self.payment_method.value,
            "payment_details": self.payment_details,
            "payment_history": self.payment_history,
            "shipping_method": self.shipping_method,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        optional = {
            "gateway_order_ref": self.gateway_order_ref,
            "refund_details": self.refund_details,
            "paid_at": self.paid_at,
            "refunded_at": self.refunded_at,
            "cancelled_at": self.cancelled_at,
            "failure_reason": self.failure_reason,
            "inventory_committed_at": self.inventory_committed_at,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "notes": self.notes,
        }
        item.update({k: v for k, v in optional.items() if v is not None})
        return float_to_decimal(item)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Order":
        return cls(
            order_id=item["order_id"],
            order_number=item["order_number"],
            owner_id=item["owner_id"],
            items=[OrderItem.from_item(line) for line in item.get("items", [])],
            subtotal=Decimal(str(item["subtotal"])),
            tax=Decimal(str(item["tax"])),
            shipping_fee=Decimal(str(item["shipping_fee"])),
            total=Decimal(str(item["total"])),
            payment_method=PaymentMethod(item["payment_method"]),
            currency=item.get("currency", "INR"),
            status=OrderStatus(item.get("status", OrderStatus.PENDING.value)),
            payment_status=PaymentStatus(item.get("payment_status", PaymentStatus.PENDING.value)),
            gateway_order_ref=item.get("gateway_order_ref"),
            payment_details=dict(item.get("payment_details") or {}),
            payment_history=list(item.get("payment_history") or []),
            refund_details=item.get("refund_details"),
            paid_at=item.get("paid_at"),
            refunded_at=item.get("refunded_at"),
            cancelled_at=item.get("cancelled_at"),
            failure_reason=item.get("failure_reason"),
            inventory_committed_at=item.get("inventory_committed_at"),
            shipping_address=item.get("shipping_address"),
            billing_address=item.get("billing_address"),
            shipping_method=item.get("shipping_method", "standard"),
            notes=item.get("notes"),
            created_at=item.get("created_at", ""),
            updated_at=item.get("updated_at", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation for API responses"""
        data = decimal_to_float(self.to_item())
        data.setdefault("gateway_order_ref", None)
        data.setdefault("refund_details", None)
        data.setdefault("paid_at", None)
        return data


def order_line_quantities(order: Order) -> Dict[str, int]:
    """Total quantity per product; a product can appear on several lines with different variants"""
    quantities: Dict[str, int] = {}
    for line in order.items:
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
    return quantities


# =============================================================================
# Order Database Manager
# =============================================================================

class OrderDatabase:
    """
    Orders table access

    Features:
    - Conditional create (never overwrites an existing order id)
    - Write-once gateway_order_ref
    - Compare-and-set payment transitions
    - Owner order history through the owner_id-index GSI
    """

    OWNER_INDEX = "owner_id-index"

    def __init__(self, settings, dynamodb=None):
        self.dynamodb = dynamodb or create_dynamodb_resource(settings)
        self.table_name = settings.DYNAMODB_ORDERS_TABLE
        self.carts_table_name = settings.DYNAMODB_CARTS_TABLE
        self.products_table_name = settings.DYNAMODB_PRODUCTS_TABLE
        self.table = self.dynamodb.Table(self.table_name)
        logger.info(f"Order table configured: {self.table_name}")

    async def create_order(self, order: Order) -> Order:
        now = utc_now()
        order.created_at = order.created_at or now
        order.updated_at = now

        try:
            await asyncio.to_thread(
                self.table.put_item,
                Item=order.to_item(),
                ConditionExpression="attribute_not_exists(order_id)",
            )
        except ClientError as e:
            if is_conditional_check_failure(e):
                raise ConflictError("Order already exists", {"order_id": order.order_id})
            logger.error(f"Error creating order {order.order_id}: {e}")
            raise DatabaseError("Failed to create order", {"order_id": order.order_id})

        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        try:
            response = await asyncio.to_thread(
                self.table.get_item,
                Key={"order_id": order_id},
                ConsistentRead=True,
            )
        except ClientError as e:
            logger.error(f"Error getting order {order_id}: {e}")
            raise DatabaseError("Failed to load order", {"order_id": order_id})

        item = response.get("Item")
        return Order.from_item(item) if item else None

    async def list_orders_for_owner(self, owner_id: str, limit: int = 50) -> List[Order]:
        try:
            response = await asyncio.to_thread(
                self.table.query,
                IndexName=self.OWNER_INDEX,
                KeyConditionExpression=Key("owner_id").eq(owner_id),
                ScanIndexForward=False,
                Limit=limit,
            )
        except ClientError as e:
            logger.error(f"Error listing orders for {owner_id}: {e}")
            raise DatabaseError("Failed to list orders")

        return [Order.from_item(item) for item in response.get("Items", [])]

    async def set_gateway_order_ref(self, order_id: str, gateway_order_ref: str) -> Order:
        """Record the gateway session id; it can only ever be set once."""
        updated = await self._conditional_update(
            order_id,
            operation="set_gateway_order_ref",
            update_expression="SET gateway_order_ref = :ref, updated_at = :now",
            condition="attribute_exists(order_id) AND attribute_not_exists(gateway_order_ref)",
            values={":ref": gateway_order_ref},
        )
        if updated is None:
            raise ConflictError(
                "Gateway order reference already set",
                {"order_id": order_id},
            )
        return updated

    async def mark_authorized(self, order_id: str, details: Dict[str, Any]) -> Optional[Order]:
        return await self._conditional_update(
            order_id,
            operation="mark_authorized",
            update_expression=(
                "SET payment_status = :authorized, #status = :confirmed, "
                "payment_details = :details, "
                "payment_history = list_append(if_not_exists(payment_history, :empty), :entry), "
                "updated_at = :now"
            ),
            condition="attribute_exists(order_id) AND payment_status = :pending",
            values={
                ":authorized": PaymentStatus.AUTHORIZED.value,
                ":confirmed": OrderStatus.CONFIRMED.value,
                ":pending": PaymentStatus.PENDING.value,
                ":details": details,
                ":entry": [details],
                ":empty": [],
            },
        )

    async def mark_paid(self, order_id: str, details: Dict[str, Any]) -> Optional[Order]:
        """
        Move the order to paid/confirmed if, and only if, it is still payable.

        Returns:
            The updated order when this call performed the transition, None
            when the order was already past the payable states.
        """
        return await self._conditional_update(
            order_id,
            operation="mark_paid",
            update_expression=(
                "SET payment_status = :paid, #status = :confirmed, paid_at = :now, "
                "payment_details = :details, "
                "payment_history = list_append(if_not_exists(payment_history, :empty), :entry), "
                "updated_at = :now"
            ),
            condition="attribute_exists(order_id) AND payment_status IN (:pending, :authorized)",
            values={
                ":paid": PaymentStatus.PAID.value,
                ":confirmed": OrderStatus.CONFIRMED.value,
                ":pending": PaymentStatus.PENDING.value,
                ":authorized": PaymentStatus.AUTHORIZED.value,
                ":details": details,
                ":entry": [details],
                ":empty": [],
            },
        )

    async def mark_failed(self, order_id: str, details: Dict[str, Any], reason: Optional[str]) -> Optional[Order]:
        return await self._conditional_update(
            order_id,
            operation="mark_failed",
            update_expression=(
                "SET payment_status = :failed, #status = :cancelled, cancelled_at = :now, "
                "failure_reason = :reason, payment_details = :details, "
                "payment_history = list_append(if_not_exists(payment_history, :empty), :entry), "
                "updated_at = :now"
            ),
            condition="attribute_exists(order_id) AND payment_status IN (:pending, :authorized)",
            values={
                ":failed": PaymentStatus.FAILED.value,
                ":cancelled": OrderStatus.CANCELLED.value,
                ":pending": PaymentStatus.PENDING.value,
                ":authorized": PaymentStatus.AUTHORIZED.value,
                ":reason": reason or "unknown",
                ":details": details,
                ":entry": [details],
                ":empty": [],
            },
        )

    async def mark_refunded(self, order_id: str, refund_details: Dict[str, Any]) -> Optional[Order]:
        return await self._conditional_update(
            order_id,
            operation="mark_refunded",
            update_expression=(
                "SET payment_status = :refunded, #status = :cancelled, refunded_at = :now, "
                "cancelled_at = if_not_exists(cancelled_at, :now), refund_details = :refund, "
                "updated_at = :now"
            ),
            condition=(
                "attribute_exists(order_id) AND payment_status = :paid "
                "AND attribute_not_exists(refund_details)"
            ),
            values={
                ":refunded": PaymentStatus.REFUNDED.value,
                ":cancelled": OrderStatus.CANCELLED.value,
                ":paid": PaymentStatus.PAID.value,
                ":refund": refund_details,
            },
        )

    async def commit_inventory(self, order: Order) -> Optional[Order]:
        """
        Apply a paid order's side effects in one TransactWriteItems call:
        stamp inventory_committed_at, empty the owner's cart and decrement
        stock for every line. Either all of it lands or none of it does.

        Returns:
            The order with inventory_committed_at set, or None when the order
            is not paid or was already committed by another caller.

        Raises:
            NotFoundError: a product on the order no longer exists
            DatabaseError: the transaction failed for any other reason
        """
        now = utc_now()
        quantities = order_line_quantities(order)

        transact_items = [
            {
                "Update": {
                    "TableName": self.table_name,
                    "Key": {"order_id": {"S": order.order_id}},
                    "UpdateExpression": "SET inventory_committed_at = :now, updated_at = :now",
                    "ConditionExpression": "payment_status = :paid AND attribute_not_exists(inventory_committed_at)",
                    "ExpressionAttributeValues": {
                        ":paid": {"S": PaymentStatus.PAID.value},
                        ":now": {"S": now},
                    },
                }
            },
            {
                "Update": {
                    "TableName": self.carts_table_name,
                    "Key": {"user_id": {"S": order.owner_id}},
                    "UpdateExpression": "SET #items = :empty, updated_at = :now",
                    "ExpressionAttributeNames": {"#items": "items"},
                    "ExpressionAttributeValues": {
                        ":empty": {"L": []},
                        ":now": {"S": now},
                    },
                }
            },
        ]
        for product_id, quantity in quantities.items():
            # Stock may go negative: the payment has already been taken
            transact_items.append({
                "Update": {
                    "TableName": self.products_table_name,
                    "Key": {"product_id": {"S": product_id}},
                    "UpdateExpression": "SET current_stock = current_stock - :qty, updated_at = :now",
                    "ConditionExpression": "attribute_exists(product_id)",
                    "ExpressionAttributeValues": {
                        ":qty": {"N": str(quantity)},
                        ":now": {"S": now},
                    },
                }
            })

        try:
            await asyncio.to_thread(
                self.dynamodb.meta.client.transact_write_items,
                TransactItems=transact_items,
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code != "TransactionCanceledException":
                logger.error(f"DynamoDB error committing inventory for order {order.order_id}: {e}")
                raise DatabaseError("Failed to commit inventory", {"order_id": order.order_id})

            reasons = [r.get("Code") for r in e.response.get("CancellationReasons", [])]
            if reasons and reasons[0] == "ConditionalCheckFailed":
                logger.info(f"Inventory for order {order.order_id} already committed or order not paid")
                return None

            # Entries 0 and 1 are the order and the cart; products follow in order
            product_ids = list(quantities)
            missing = [
                product_ids[i - 2]
                for i, code in enumerate(reasons)
                if i >= 2 and code == "ConditionalCheckFailed"
            ]
            if missing:
                raise NotFoundError("Product not found", {"product_ids": missing, "order_id": order.order_id})

            logger.error(f"Inventory commit for order {order.order_id} cancelled: {reasons}")
            raise DatabaseError("Failed to commit inventory", {"order_id": order.order_id, "reasons": reasons})

        return replace(order, inventory_committed_at=now, updated_at=now)

    async def _conditional_update(
        self,
        order_id: str,
        operation: str,
        update_expression: str,
        condition: str,
        values: Dict[str, Any],
    ) -> Optional[Order]:
        params = {
            "Key": {"order_id": order_id},
            "UpdateExpression": update_expression,
            "ConditionExpression": condition,
            "ExpressionAttributeValues": float_to_decimal({**values, ":now": utc_now()}),
            "ReturnValues": "ALL_NEW",
        }
        # "status" is a DynamoDB reserved word
        if "#status" in update_expression:
            params["ExpressionAttributeNames"] = {"#status": "status"}

        try:
            response = await asyncio.to_thread(self.table.update_item, **params)
        except ClientError as e:
            if is_conditional_check_failure(e):
                logger.info(f"{operation} skipped for order {order_id}: condition not met")
                return None
            logger.error(f"DynamoDB error during {operation} for order {order_id}: {e}")
            raise DatabaseError(f"Failed to {operation.replace('_', ' ')}", {"order_id": order_id})

        return Order.from_item(response["Attributes"])
