"""
Webhook Reconciler

Asynchronous confirmations pushed by the gateways. Deliveries are
at-least-once and may arrive before, after or instead of the browser's
verify call, so every handler is idempotent and leans on the conditional
transitions in OrderDatabase.

Acknowledgement rules:
- Bad or missing signature, or a body that is not a JSON object -> 400
- Anything we cannot correlate to an order, or do not handle -> logged, 200
- Database failures after verification propagate (500) so the gateway retries
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core.exceptions import ConflictError, SignatureError, ValidationError
from ..core.logging_config import log_payment_event
from ..database.order_db import Order, PaymentMethod
from .payment_transition_service import SOURCE_WEBHOOK

logger = logging.getLogger(__name__)

ACTION_PAID = "paid"
ACTION_AUTHORIZED = "authorized"
ACTION_FAILED = "failed"
ACTION_REPLAY = "replay"
ACTION_IGNORED = "ignored"


@dataclass
class WebhookOutcome:
    event: str
    action: str
    order_id: Optional[str] = None
    reason: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {"received": True}


class WebhookService:
    def __init__(self, order_db, transitions, razorpay_gateway=None, stripe_gateway=None):
        self.order_db = order_db
        self.transitions = transitions
        self.razorpay_gateway = razorpay_gateway
        self.stripe_gateway = stripe_gateway

    # =========================================================================
    # Razorpay
    # =========================================================================

    async def handle_razorpay(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        if not signature:
            raise SignatureError("Missing X-Razorpay-Signature header")
        if not self.razorpay_gateway.verify_webhook_signature(raw_body, signature):
            log_payment_event("webhook_signature_invalid", level=logging.WARNING, gateway="razorpay")
            raise SignatureError("Invalid webhook signature")

        body = _parse_object(raw_body)
        event = body.get("event") or ""
        payload = body.get("payload") or {}
        payment = (payload.get("payment") or {}).get("entity") or {}

        if event == "order.paid":
            entity = (payload.get("order") or {}).get("entity") or {}
            event_order_ref = entity.get("id")
        else:
            entity = payment
            event_order_ref = entity.get("order_id")

        if event not in ("payment.captured", "payment.authorized", "payment.failed", "order.paid"):
            logger.info(f"Unhandled Razorpay webhook event: {event}")
            return WebhookOutcome(event=event, action=ACTION_IGNORED, reason="unhandled_event")

        order_id = (entity.get("notes") or {}).get("order_id")
        order, outcome = await self._correlate(event, order_id, event_order_ref)
        if outcome:
            return outcome

        details = {
            "gateway": "razorpay",
            "gateway_order_ref": event_order_ref,
            "gateway_payment_ref": payment.get("id"),
            "amount": payment.get("amount", entity.get("amount_paid", entity.get("amount"))),
            "method": payment.get("method"),
            "event": event,
        }

        if event in ("payment.captured", "order.paid"):
            return await self._apply_paid(event, order, details)

        if event == "payment.authorized":
            updated = await self.order_db.mark_authorized(order.order_id, {**details, "source": SOURCE_WEBHOOK})
            if updated is None:
                logger.info(f"Order {order.order_id} already past authorized; ignoring {event}")
                return WebhookOutcome(event=event, action=ACTION_REPLAY, order_id=order.order_id)
            log_payment_event("payment_authorized_webhook", order_id=order.order_id,
                              gateway_payment_ref=details["gateway_payment_ref"])
            return WebhookOutcome(event=event, action=ACTION_AUTHORIZED, order_id=order.order_id)

        return await self._apply_failed(event, order, details, payment.get("error_description"))

    # =========================================================================
    # Stripe
    # =========================================================================

    async def handle_stripe(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        body = self.stripe_gateway.construct_event(raw_body, signature)
        event = body.get("type") or ""
        obj = (body.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}

        if event == "checkout.session.completed":
            order, outcome = await self._correlate(event, metadata.get("order_id"), obj.get("id"))
            if outcome:
                return outcome
            if obj.get("payment_status") not in (None, "paid"):
                logger.info(f"Stripe session {obj.get('id')} completed without payment: {obj.get('payment_status')}")
                return WebhookOutcome(event=event, action=ACTION_IGNORED, order_id=order.order_id,
                                      reason="payment_pending")
            details = {
                "gateway": "stripe",
                "gateway_order_ref": obj.get("id"),
                "gateway_payment_ref": obj.get("payment_intent"),
                "amount": obj.get("amount_total"),
                "event": event,
            }
            return await self._apply_paid(event, order, details)

        if event == "payment_intent.payment_failed":
            # The payment intent does not carry the session id
            order, outcome = await self._correlate(event, metadata.get("order_id"), None)
            if outcome:
                return outcome
            if order.payment_method != PaymentMethod.STRIPE:
                logger.warning(f"Stripe failure for non-Stripe order {order.order_id}; ignoring")
                return WebhookOutcome(event=event, action=ACTION_IGNORED, order_id=order.order_id,
                                      reason="gateway_mismatch")
            error = obj.get("last_payment_error") or {}
            details = {
                "gateway": "stripe",
                "gateway_order_ref": order.gateway_order_ref,
                "gateway_payment_ref": obj.get("id"),
                "amount": obj.get("amount"),
                "event": event,
            }
            return await self._apply_failed(event, order, details, error.get("message"))

        logger.info(f"Unhandled Stripe webhook event: {event}")
        return WebhookOutcome(event=event, action=ACTION_IGNORED, reason="unhandled_event")

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def _correlate(self, event: str, order_id: Optional[str], event_order_ref: Optional[str]):
        if not order_id:
            logger.warning(f"Webhook {event} carries no order_id; acknowledging")
            return None, WebhookOutcome(event=event, action=ACTION_IGNORED, reason="missing_order_id")

        order = await self.order_db.get_order(order_id)
        if order is None:
            logger.warning(f"Webhook {event} references unknown order {order_id}; acknowledging")
            return None, WebhookOutcome(event=event, action=ACTION_IGNORED, order_id=order_id,
                                        reason="order_not_found")

        if event_order_ref is not None and order.gateway_order_ref != event_order_ref:
            logger.warning(
                f"Webhook {event} gateway order {event_order_ref} does not match "
                f"order {order_id} ({order.gateway_order_ref}); acknowledging"
            )
            return None, WebhookOutcome(event=event, action=ACTION_IGNORED, order_id=order_id,
                                        reason="gateway_order_mismatch")

        return order, None

    async def _apply_paid(self, event: str, order: Order, details: Dict[str, Any]) -> WebhookOutcome:
        try:
            result = await self.transitions.apply_payment_captured(order, details, source=SOURCE_WEBHOOK)
        except ConflictError as e:
            logger.critical(
                f"Captured payment for order {order.order_id} could not be applied - manual reconciliation "
                f"required: {e.message}",
                extra={"order_id": order.order_id, "gateway_payment_ref": details.get("gateway_payment_ref")},
            )
            return WebhookOutcome(event=event, action=ACTION_IGNORED, order_id=order.order_id,
                                  reason="conflict")

        action = ACTION_REPLAY if result.replay else ACTION_PAID
        return WebhookOutcome(event=event, action=action, order_id=order.order_id)

    async def _apply_failed(self, event: str, order: Order, details: Dict[str, Any],
                            reason: Optional[str]) -> WebhookOutcome:
        updated = await self.order_db.mark_failed(order.order_id, {**details, "source": SOURCE_WEBHOOK}, reason)
        if updated is None:
            logger.info(f"Order {order.order_id} no longer failable; ignoring {event}")
            return WebhookOutcome(event=event, action=ACTION_REPLAY, order_id=order.order_id)

        log_payment_event(
            "payment_failed_webhook",
            level=logging.WARNING,
            order_id=order.order_id,
            gateway=details["gateway"],
            reason=reason,
        )
        return WebhookOutcome(event=event, action=ACTION_FAILED, order_id=order.order_id)


def _parse_object(raw_body: bytes) -> Dict[str, Any]:
    try:
        body = json.loads(raw_body)
    except ValueError:
        raise ValidationError("Invalid webhook payload")
    if not isinstance(body, dict):
        raise ValidationError("Invalid webhook payload")
    return body
