"""
Refund Processor

Admin-initiated Razorpay refunds. The order (when given) is checked before
the gateway is called, so a refund that would leave the order inconsistent is
rejected without touching money. Once the gateway has refunded, the refund is
always reported; a local update that fails afterwards is logged at CRITICAL
for manual reconciliation instead of being surfaced as an error.

Stock is not restored on refund.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.exceptions import ConflictError, OrderNotFoundError, SastabazarException, ValidationError
from ..core.logging_config import log_payment_event
from ..database.order_db import PaymentStatus
from .payment_gateway import GatewayRefund

logger = logging.getLogger(__name__)


@dataclass
class RefundResult:
    refund: GatewayRefund
    order_id: Optional[str] = None
    order_updated: bool = False


class RefundService:
    def __init__(self, order_db, razorpay_gateway):
        self.order_db = order_db
        self.razorpay_gateway = razorpay_gateway

    async def refund_razorpay_payment(
        self,
        user: Dict[str, Any],
        payment_id: Optional[str],
        amount: Optional[int] = None,
        reason: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund a captured Razorpay payment.

        Args:
            user: Admin performing the refund
            payment_id: Razorpay payment id
            amount: Amount in paise; None refunds the full payment
            reason: Free-text reason stored on the refund notes
            order_id: Internal order to mark refunded
        """
        if not payment_id:
            raise ValidationError("Payment ID is required", {"missing": ["paymentId"]})
        if amount is not None and amount <= 0:
            raise ValidationError("Refund amount must be positive", {"amount": amount})

        if order_id:
            order = await self.order_db.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.payment_status != PaymentStatus.PAID:
                raise ConflictError(
                    f"Order cannot be refunded from status '{order.payment_status.value}'",
                    {"order_id": order_id, "payment_status": order.payment_status.value},
                )
            if order.gateway_payment_ref != payment_id:
                raise ValidationError("Payment does not belong to this order", {"order_id": order_id})
            if amount is not None and amount > order.amount_minor:
                raise ValidationError(
                    "Refund amount exceeds order total",
                    {"amount": amount, "order_amount": order.amount_minor},
                )

        notes = {
            "reason": reason or "Customer request",
            "refunded_by": user["user_id"],
            "refunded_at": datetime.utcnow().isoformat(),
        }
        refund = await self.razorpay_gateway.refund(payment_id, amount, notes)

        log_payment_event(
            "refund_processed",
            payment_id=payment_id,
            refund_id=refund.refund_id,
            amount=refund.amount,
            order_id=order_id,
            refunded_by=user["user_id"],
        )

        if not order_id:
            return RefundResult(refund=refund)

        order_updated = await self._mark_order_refunded(order_id, payment_id, refund)
        return RefundResult(refund=refund, order_id=order_id, order_updated=order_updated)

    async def _mark_order_refunded(self, order_id: str, payment_id: str, refund: GatewayRefund) -> bool:
        refund_details = {
            "refund_id": refund.refund_id,
            "gateway_payment_ref": payment_id,
            "amount": refund.amount,
            "status": refund.status,
            "notes": refund.notes,
        }
        try:
            updated = await self.order_db.mark_refunded(order_id, refund_details)
        except SastabazarException as e:
            logger.critical(
                f"Refund {refund.refund_id} issued for payment {payment_id} but order {order_id} "
                f"update failed - manual reconciliation required: {e.message}",
                extra={"order_id": order_id, "payment_id": payment_id, "refund_id": refund.refund_id},
            )
            return False

        if updated is None:
            logger.critical(
                f"Refund {refund.refund_id} issued for payment {payment_id} but order {order_id} "
                f"was no longer refundable - manual reconciliation required",
                extra={"order_id": order_id, "payment_id": payment_id, "refund_id": refund.refund_id},
            )
            return False

        return True
