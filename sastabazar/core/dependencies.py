"""
Service wiring

PaymentContainer holds every store, gateway client and service the API needs.
create_app() builds one from settings (or takes one from the caller, which is
how the tests inject in-memory stores and fake SDK clients) and stores it on
app.state; routes read it through get_container().
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from ..database.cart_db import CartDatabase
from ..database.order_db import OrderDatabase, create_dynamodb_resource
from ..database.product_db import ProductDatabase
from ..services.order_intent_service import OrderIntentService
from ..services.payment_gateway import RazorpayGateway, StripeGateway
from ..services.payment_transition_service import PaymentTransitionService
from ..services.payment_verification_service import PaymentVerificationService
from ..services.refund_service import RefundService
from ..services.webhook_service import WebhookService
from .config import Settings
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class PaymentContainer:
    settings: Settings
    order_db: object
    cart_db: object
    product_db: object
    razorpay: Optional[RazorpayGateway]
    stripe: Optional[StripeGateway]
    intents: OrderIntentService
    transitions: PaymentTransitionService
    verifier: PaymentVerificationService
    webhooks: WebhookService
    refunds: RefundService

    def require_razorpay(self) -> RazorpayGateway:
        if self.razorpay is None:
            raise ConfigurationError("Razorpay is not enabled")
        return self.razorpay

    def require_stripe(self) -> StripeGateway:
        if self.stripe is None:
            raise ConfigurationError("Stripe is not enabled")
        return self.stripe


def assemble_container(settings: Settings, order_db, cart_db, product_db,
                       razorpay: Optional[RazorpayGateway] = None,
                       stripe: Optional[StripeGateway] = None) -> PaymentContainer:
    """Wire the services around already-built stores and gateway clients"""
    transitions = PaymentTransitionService(order_db)
    return PaymentContainer(
        settings=settings,
        order_db=order_db,
        cart_db=cart_db,
        product_db=product_db,
        razorpay=razorpay,
        stripe=stripe,
        intents=OrderIntentService(settings, order_db, cart_db, product_db, razorpay, stripe),
        transitions=transitions,
        verifier=PaymentVerificationService(order_db, razorpay, transitions),
        webhooks=WebhookService(order_db, transitions, razorpay, stripe),
        refunds=RefundService(order_db, razorpay),
    )


def build_container(settings: Settings) -> PaymentContainer:
    """Production wiring: DynamoDB stores and real SDK clients for enabled gateways"""
    dynamodb = create_dynamodb_resource(settings)

    razorpay = RazorpayGateway.from_settings(settings) if settings.gateway_enabled("razorpay") else None
    stripe = StripeGateway.from_settings(settings) if settings.gateway_enabled("stripe") else None
    logger.info(f"Payment gateways enabled: {', '.join(settings.ENABLED_GATEWAYS)}")

    return assemble_container(
        settings,
        order_db=OrderDatabase(settings, dynamodb),
        cart_db=CartDatabase(settings, dynamodb),
        product_db=ProductDatabase(settings, dynamodb),
        razorpay=razorpay,
        stripe=stripe,
    )


def get_container(request: Request) -> PaymentContainer:
    return request.app.state.container
