"""
Payment Transition Service

The single code path that moves an order to paid. The checkout verifier and
the webhook reconciler both call apply_payment_captured(), so the cart clear
and stock decrement run exactly once no matter which confirmation arrives
first, or how many times the gateway retries.

Two conditional writes make this exactly-once:
- OrderDatabase.mark_paid() picks the one caller that records the payment
- OrderDatabase.commit_inventory() applies cart and stock changes in one
  transaction that only succeeds while inventory_committed_at is unset

If the commit fails after the payment was recorded, the order stays paid with
inventory_committed_at unset. The next confirmation for it (usually the
gateway redelivering the webhook after our 5xx) finishes the commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.exceptions import ConflictError, DatabaseError, OrderNotFoundError
from ..core.logging_config import log_payment_event
from ..database.order_db import SETTLED_STATES, Order, PaymentStatus

logger = logging.getLogger(__name__)

SOURCE_CLIENT_VERIFICATION = "client_verification"
SOURCE_WEBHOOK = "webhook"


@dataclass
class TransitionResult:
    """Outcome of a paid transition attempt"""
    order: Order
    applied: bool
    replay: bool = False


class PaymentTransitionService:
    def __init__(self, order_db):
        self.order_db = order_db

    async def apply_payment_captured(self, order: Order, details: Dict[str, Any], source: str) -> TransitionResult:
        """
        Mark an order paid and, if this call won, commit cart and stock.

        Args:
            order: Order as last read by the caller (may be stale)
            details: Gateway confirmation (payment ref, gateway, amount, ...)
            source: SOURCE_CLIENT_VERIFICATION or SOURCE_WEBHOOK

        Returns:
            TransitionResult; replay=True when the order was already paid

        Raises:
            ConflictError: order is in a state that cannot become paid
            DatabaseError: the payment is recorded but cart and stock are not
                committed yet; a later confirmation retries the commit
        """
        if order.payment_status in SETTLED_STATES:
            return await self._replay(order, details, source)

        record = {
            **details,
            "source": source,
            "verified_at": datetime.utcnow().isoformat(),
        }
        updated = await self.order_db.mark_paid(order.order_id, record)

        if updated is None:
            current = await self.order_db.get_order(order.order_id)
            if current is None:
                raise OrderNotFoundError(order.order_id)
            if current.payment_status in SETTLED_STATES:
                return await self._replay(current, details, source)
            raise ConflictError(
                f"Order cannot be marked paid from status '{current.payment_status.value}'",
                {"order_id": current.order_id, "payment_status": current.payment_status.value},
            )

        log_payment_event(
            "payment_verified" if source == SOURCE_CLIENT_VERIFICATION else "payment_captured_webhook",
            order_id=updated.order_id,
            gateway_payment_ref=record.get("gateway_payment_ref"),
            source=source,
            amount=str(updated.total),
        )

        committed = await self._commit_inventory(updated)
        return TransitionResult(order=committed or updated, applied=True)

    async def _replay(self, order: Order, details: Dict[str, Any], source: str) -> TransitionResult:
        log_payment_event(
            "duplicate_payment_attempt",
            order_id=order.order_id,
            gateway_payment_ref=details.get("gateway_payment_ref"),
            recorded_payment_ref=order.gateway_payment_ref,
            payment_status=order.payment_status.value,
            source=source,
        )

        if order.payment_status == PaymentStatus.PAID and order.inventory_committed_at is None:
            committed = await self._commit_inventory(order)
            if committed is not None:
                log_payment_event(
                    "inventory_commit_resumed",
                    order_id=order.order_id,
                    source=source,
                )
                order = committed

        return TransitionResult(order=order, applied=False, replay=True)

    async def _commit_inventory(self, order: Order) -> Optional[Order]:
        """Returns None when another caller already committed this order"""
        try:
            return await self.order_db.commit_inventory(order)
        except Exception as e:
            logger.critical(
                f"Order {order.order_id} is paid but inventory commit failed, "
                f"it will be retried on the next confirmation: {e}",
                extra={"order_id": order.order_id},
                exc_info=True,
            )
            raise DatabaseError(
                "Payment recorded but inventory update failed",
                {"order_id": order.order_id},
            )
