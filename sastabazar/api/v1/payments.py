"""
Payment API Endpoints

- Order intent creation (Razorpay order / Stripe checkout session)
- Synchronous Razorpay payment verification
- Admin refunds
- Public client configuration (never exposes secrets)

Error responses are produced by the SastabazarException handler.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from ...core.dependencies import PaymentContainer, get_container
from ...core.security import get_current_admin, get_current_user
from ...models.payments import CheckoutRequest, RefundRequest, VerifyPaymentRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


# =============================================================================
# Order intents
# =============================================================================

@router.post("/razorpay/order")
async def create_razorpay_order(
    checkout: Optional[CheckoutRequest] = Body(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
    container: PaymentContainer = Depends(get_container),
):
    """Create a pending order from the caller's cart and open a Razorpay order for it"""
    container.require_razorpay()
    intent = await container.intents.create_razorpay_order(current_user, checkout)
    return {
        "success": True,
        "order": {
            "id": intent.session.session_id,
            "amount": intent.session.amount,
            "currency": intent.session.currency,
            "receipt": intent.session.receipt,
        },
        "internalOrderId": intent.order.order_id,
        "orderNumber": intent.order.order_number,
    }


@router.post("/stripe/create-checkout-session")
async def create_stripe_checkout_session(
    checkout: Optional[CheckoutRequest] = Body(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
    container: PaymentContainer = Depends(get_container),
):
    container.require_stripe()
    intent = await container.intents.create_stripe_checkout_session(current_user, checkout)
    return {
        "success": True,
        "sessionId": intent.session.session_id,
        "url": intent.session.url,
        "internalOrderId": intent.order.order_id,
        "orderNumber": intent.order.order_number,
    }


# =============================================================================
# Verification and refunds
# =============================================================================

@router.post("/razorpay/verify")
async def verify_razorpay_payment(
    request: VerifyPaymentRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    container: PaymentContainer = Depends(get_container),
):
    """
    Confirm a Razorpay checkout from the browser's handler callback.

    Safe to call more than once: a repeat returns success with
    "Payment already verified" and no further side effects.
    """
    container.require_razorpay()
    result = await container.verifier.verify_razorpay_payment(
        current_user,
        gateway_order_ref=request.razorpay_order_id,
        gateway_payment_ref=request.razorpay_payment_id,
        signature=request.razorpay_signature,
        internal_order_id=request.internal_order_id,
    )
    return {
        "success": True,
        "message": result.message,
        "order": result.order.to_dict(),
    }


@router.post("/razorpay/refund")
async def refund_razorpay_payment(
    request: RefundRequest,
    current_admin: Dict[str, Any] = Depends(get_current_admin),
    container: PaymentContainer = Depends(get_container),
):
    container.require_razorpay()
    result = await container.refunds.refund_razorpay_payment(
        current_admin,
        payment_id=request.payment_id,
        amount=request.amount,
        reason=request.reason,
        order_id=request.order_id,
    )
    return {
        "success": True,
        "message": "Refund processed successfully",
        "refund": {
            "id": result.refund.refund_id,
            "amount": result.refund.amount,
            "status": result.refund.status,
            "notes": result.refund.notes,
        },
        "orderUpdated": result.order_updated,
    }


# =============================================================================
# Client configuration
# =============================================================================

@router.get("/razorpay/config")
async def get_razorpay_config(container: PaymentContainer = Depends(get_container)):
    gateway = container.require_razorpay()
    return {"keyId": gateway.key_id, "currency": container.settings.CURRENCY}


@router.get("/stripe/config")
async def get_stripe_config(container: PaymentContainer = Depends(get_container)):
    gateway = container.require_stripe()
    return {"publishableKey": gateway.publishable_key, "currency": container.settings.CURRENCY}
