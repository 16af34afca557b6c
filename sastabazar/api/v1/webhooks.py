"""
Gateway webhook endpoints

Signatures are computed over the exact request bytes, so handlers read
request.body() and never let FastAPI parse the JSON first. The same routes
are served under /payments/webhooks and /webhooks.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from ...core.dependencies import PaymentContainer, get_container

logger = logging.getLogger(__name__)


def build_webhook_router(prefix: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=["webhooks"])

    @router.post("/razorpay")
    async def razorpay_webhook(
        request: Request,
        x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
        container: PaymentContainer = Depends(get_container),
    ):
        container.require_razorpay()
        raw_body = await request.body()
        outcome = await container.webhooks.handle_razorpay(raw_body, x_razorpay_signature)
        logger.info(f"Razorpay webhook {outcome.event}: {outcome.action} (order {outcome.order_id})")
        return outcome.to_response()

    @router.post("/stripe")
    async def stripe_webhook(
        request: Request,
        stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
        container: PaymentContainer = Depends(get_container),
    ):
        container.require_stripe()
        raw_body = await request.body()
        outcome = await container.webhooks.handle_stripe(raw_body, stripe_signature)
        logger.info(f"Stripe webhook {outcome.event}: {outcome.action} (order {outcome.order_id})")
        return outcome.to_response()

    return router


router = build_webhook_router("/payments/webhooks")
legacy_router = build_webhook_router("/webhooks")
