"""
Order Intent Service

Turns the buyer's server-side cart into a pending order and opens the
matching payment session with the gateway.

Flow:
1. Load the cart (empty or missing -> EmptyCartError)
2. Price every line from the products table (missing, inactive or short on
   stock -> ProductUnavailableError)
3. Persist the order pending/pending
4. Open the gateway session under the gateway timeout
5. Record the session id on the order

No cart or stock mutation happens here; both are applied once, by whichever
confirmation path marks the order paid.
"""

import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from ..core.exceptions import ConfigurationError, EmptyCartError, ProductUnavailableError, ValidationError
from ..core.logging_config import log_payment_event
from ..database.order_db import MAX_ORDER_PRODUCTS, Order, OrderItem, PaymentMethod
from ..models.payments import CheckoutRequest
from .payment_gateway import GatewaySession

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    total: Decimal

    @property
    def amount_minor(self) -> int:
        return int(self.total * 100)


def calculate_order_totals(items: List[OrderItem], settings) -> OrderTotals:
    """
    Price a set of order lines.

    Shipping is free at or above FREE_SHIPPING_THRESHOLD; tax is TAX_RATE of
    the subtotal rounded half-up to whole rupees.
    """
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    shipping_fee = Decimal("0") if subtotal >= settings.FREE_SHIPPING_THRESHOLD else settings.SHIPPING_FEE
    tax = (subtotal * settings.TAX_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return OrderTotals(
        subtotal=subtotal,
        tax=tax,
        shipping_fee=shipping_fee,
        total=subtotal + tax + shipping_fee,
    )


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def _address_dict(address) -> Optional[Dict[str, Any]]:
    return address.model_dump(exclude_none=True) if address else None


@dataclass
class OrderIntent:
    order: Order
    session: GatewaySession


class OrderIntentService:
    def __init__(self, settings, order_db, cart_db, product_db, razorpay_gateway=None, stripe_gateway=None):
        self.settings = settings
        self.order_db = order_db
        self.cart_db = cart_db
        self.product_db = product_db
        self.razorpay_gateway = razorpay_gateway
        self.stripe_gateway = stripe_gateway

    async def create_razorpay_order(self, user: Dict[str, Any], checkout: Optional[CheckoutRequest] = None) -> OrderIntent:
        if self.razorpay_gateway is None:
            raise ConfigurationError("Razorpay is not enabled")

        order = await self._create_pending_order(user, checkout, PaymentMethod.RAZORPAY)
        session = await self.razorpay_gateway.create_order(
            amount=order.amount_minor,
            currency=order.currency,
            receipt=order.order_number,
            notes={"order_id": order.order_id, "user_id": order.owner_id},
        )
        order = await self.order_db.set_gateway_order_ref(order.order_id, session.session_id)

        log_payment_event(
            "gateway_order_created",
            gateway="razorpay",
            order_id=order.order_id,
            gateway_order_ref=session.session_id,
            amount=session.amount,
        )
        return OrderIntent(order=order, session=session)

    async def create_stripe_checkout_session(self, user: Dict[str, Any],
                                             checkout: Optional[CheckoutRequest] = None) -> OrderIntent:
        if self.stripe_gateway is None:
            raise ConfigurationError("Stripe is not enabled")

        order = await self._create_pending_order(user, checkout, PaymentMethod.STRIPE)
        metadata = {
            "order_id": order.order_id,
            "user_id": order.owner_id,
            "order_number": order.order_number,
        }
        session = await self.stripe_gateway.create_checkout_session(
            line_items=self._stripe_line_items(order),
            metadata=metadata,
            customer_email=user.get("email"),
        )
        order = await self.order_db.set_gateway_order_ref(order.order_id, session.session_id)

        log_payment_event(
            "gateway_order_created",
            gateway="stripe",
            order_id=order.order_id,
            gateway_order_ref=session.session_id,
            amount=session.amount,
        )
        return OrderIntent(order=order, session=session)

    async def _create_pending_order(self, user: Dict[str, Any], checkout: Optional[CheckoutRequest],
                                    method: PaymentMethod) -> Order:
        owner_id = user["user_id"]
        cart = await self.cart_db.get_cart(owner_id)
        if cart is None or cart.is_empty:
            raise EmptyCartError()

        distinct_products = {line.product_id for line in cart.items}
        if len(distinct_products) > MAX_ORDER_PRODUCTS:
            raise ValidationError(
                f"An order can contain at most {MAX_ORDER_PRODUCTS} different products",
                {"products": len(distinct_products)},
            )

        items = await self._price_cart(cart)
        totals = calculate_order_totals(items, self.settings)
        checkout = checkout or CheckoutRequest()
        shipping_address = _address_dict(checkout.shipping_address)

        order = Order(
            order_id=uuid.uuid4().hex,
            order_number=generate_order_number(),
            owner_id=owner_id,
            items=items,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping_fee=totals.shipping_fee,
            total=totals.total,
            payment_method=method,
            currency=self.settings.CURRENCY,
            shipping_address=shipping_address,
            billing_address=_address_dict(checkout.billing_address) or shipping_address,
            shipping_method=checkout.shipping_method,
            notes=checkout.notes,
        )
        order = await self.order_db.create_order(order)

        log_payment_event(
            "order_created",
            order_id=order.order_id,
            order_number=order.order_number,
            user_id=owner_id,
            payment_method=method.value,
            total=str(order.total),
            items=len(items),
        )
        return order

    async def _price_cart(self, cart) -> List[OrderItem]:
        items = []
        for line in cart.items:
            product = await self.product_db.get_product(line.product_id)
            if product is None:
                raise ProductUnavailableError(line.product_id, reason="no longer available")
            if not product.is_active:
                raise ProductUnavailableError(product.product_id, product.name, reason="not available")
            if not product.can_fulfil(line.quantity):
                raise ProductUnavailableError(
                    product.product_id,
                    product.name,
                    reason="out of stock",
                    details={"requested": line.quantity, "available": product.current_stock},
                )

            variant_price = line.variant_price
            items.append(OrderItem(
                product_id=product.product_id,
                name=product.name,
                quantity=line.quantity,
                unit_price=variant_price if variant_price is not None else product.price,
                image=product.primary_image,
                selected_variant=(
                    {"name": line.selected_variant.get("name", ""), "value": line.selected_variant.get("value", "")}
                    if line.selected_variant else None
                ),
            ))
        return items

    def _stripe_line_items(self, order: Order) -> List[Dict[str, Any]]:
        """One line per order item plus tax and shipping so the session charges the order total"""
        currency = order.currency.lower()

        def line(name: str, amount: Decimal, quantity: int = 1, images: Optional[List[str]] = None):
            product_data = {"name": name}
            if images:
                product_data["images"] = images
            return {
                "price_data": {
                    "currency": currency,
                    "product_data": product_data,
                    "unit_amount": int(amount * 100),
                },
                "quantity": quantity,
            }

        line_items = [
            line(item.name, item.unit_price, item.quantity, [item.image] if item.image else None)
            for item in order.items
        ]
        if order.tax > 0:
            line_items.append(line("GST", order.tax))
        if order.shipping_fee > 0:
            line_items.append(line("Shipping", order.shipping_fee))
        return line_items
