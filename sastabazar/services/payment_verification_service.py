"""
Synchronous confirmation of a Razorpay checkout.

The browser hands back (razorpay_order_id, razorpay_payment_id,
razorpay_signature) after a successful checkout. The signature is checked
before the order is even loaded, and the order must belong to the caller and
carry the same gateway order id before the shared paid transition runs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core.exceptions import OrderNotFoundError, SignatureError, ValidationError
from ..core.logging_config import log_payment_event
from ..database.order_db import Order
from .payment_transition_service import SOURCE_CLIENT_VERIFICATION

logger = logging.getLogger(__name__)

MESSAGE_VERIFIED = "Payment verified successfully"
MESSAGE_ALREADY_VERIFIED = "Payment already verified"


@dataclass
class VerificationResult:
    order: Order
    message: str
    replay: bool = False


class PaymentVerificationService:
    def __init__(self, order_db, razorpay_gateway, transitions):
        self.order_db = order_db
        self.razorpay_gateway = razorpay_gateway
        self.transitions = transitions

    async def verify_razorpay_payment(
        self,
        user: Dict[str, Any],
        gateway_order_ref: Optional[str],
        gateway_payment_ref: Optional[str],
        signature: Optional[str],
        internal_order_id: Optional[str],
    ) -> VerificationResult:
        missing = [
            name for name, value in (
                ("razorpay_order_id", gateway_order_ref),
                ("razorpay_payment_id", gateway_payment_ref),
                ("razorpay_signature", signature),
                ("internal_order_id", internal_order_id),
            ) if not value
        ]
        if missing:
            raise ValidationError("Missing payment verification fields", {"missing": missing})

        if not self.razorpay_gateway.verify_payment_signature(gateway_order_ref, gateway_payment_ref, signature):
            log_payment_event(
                "signature_verification_failed",
                level=logging.WARNING,
                order_id=internal_order_id,
                gateway_order_ref=gateway_order_ref,
                gateway_payment_ref=gateway_payment_ref,
                user_id=user["user_id"],
            )
            raise SignatureError("Invalid payment signature")

        order = await self.order_db.get_order(internal_order_id)
        if order is None or order.owner_id != user["user_id"]:
            raise OrderNotFoundError(internal_order_id)

        if order.gateway_order_ref != gateway_order_ref:
            logger.warning(
                f"Gateway order mismatch for order {order.order_id}: "
                f"expected {order.gateway_order_ref}, got {gateway_order_ref}"
            )
            raise ValidationError("Payment does not belong to this order", {"order_id": order.order_id})

        result = await self.transitions.apply_payment_captured(
            order,
            {
                "gateway": "razorpay",
                "gateway_order_ref": gateway_order_ref,
                "gateway_payment_ref": gateway_payment_ref,
                "amount": order.amount_minor,
            },
            source=SOURCE_CLIENT_VERIFICATION,
        )
        return VerificationResult(
            order=result.order,
            message=MESSAGE_ALREADY_VERIFIED if result.replay else MESSAGE_VERIFIED,
            replay=result.replay,
        )
