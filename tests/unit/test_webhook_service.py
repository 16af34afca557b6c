"""
Unit Tests for Webhook Reconciler

Tests for:
- Razorpay signature checks over the raw body
- payment.captured / order.paid / payment.authorized / payment.failed
- Acknowledge-and-log for events that cannot be correlated
- Stripe checkout.session.completed and payment_intent.payment_failed
"""

import json
import logging

import pytest

from sastabazar.core.exceptions import DatabaseError, SignatureError, ValidationError
from sastabazar.database.order_db import OrderStatus, PaymentStatus
from sastabazar.services.webhook_service import (
    ACTION_AUTHORIZED,
    ACTION_FAILED,
    ACTION_IGNORED,
    ACTION_PAID,
    ACTION_REPLAY,
)

from fakes import (
    STRIPE_WEBHOOK_SECRET,
    hmac_hex,
    place_razorpay_order,
    razorpay_event,
    sign_razorpay_webhook,
    stripe_event,
    stripe_signature_header,
)


async def _deliver(container, body: bytes):
    return await container.webhooks.handle_razorpay(body, sign_razorpay_webhook(body))


class TestRazorpaySignature:

    @pytest.mark.asyncio
    async def test_missing_signature(self, container, customer):
        order = await place_razorpay_order(container, customer)

        with pytest.raises(SignatureError):
            await container.webhooks.handle_razorpay(razorpay_event("payment.captured", order), None)

    @pytest.mark.asyncio
    async def test_bad_signature(self, container, order_store, customer):
        order = await place_razorpay_order(container, customer)
        body = razorpay_event("payment.captured", order)

        with pytest.raises(SignatureError):
            await container.webhooks.handle_razorpay(body, hmac_hex("wrong_secret", body))

        assert order_store.orders[order.order_id].payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_signed_non_object_body(self, container):
        with pytest.raises(ValidationError):
            await _deliver(container, b'["not", "an", "object"]')

    @pytest.mark.asyncio
    async def test_signed_invalid_json(self, container):
        with pytest.raises(ValidationError):
            await _deliver(container, b"{not json")


class TestRazorpayEvents:

    @pytest.mark.asyncio
    async def test_payment_captured_marks_paid(self, container, cart_store, product_store, customer):
        order = await place_razorpay_order(container, customer)

        outcome = await _deliver(container, razorpay_event("payment.captured", order, "pay_777"))

        assert outcome.action == ACTION_PAID
        assert outcome.to_response() == {"received": True}
        stored = await container.order_db.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.PAID
        assert stored.payment_details["gateway_payment_ref"] == "pay_777"
        assert stored.payment_details["source"] == "webhook"
        assert product_store.products["prod_kurta"].current_stock == 9
        assert cart_store.carts[customer["user_id"]].items == []

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_replay(self, container, product_store, customer):
        order = await place_razorpay_order(container, customer)
        body = razorpay_event("payment.captured", order)

        await _deliver(container, body)
        outcome = await _deliver(container, body)

        assert outcome.action == ACTION_REPLAY
        assert product_store.decrement_calls == [("prod_kurta", 1)]

    @pytest.mark.asyncio
    async def test_order_paid_event(self, container, customer):
        order = await place_razorpay_order(container, customer)

        outcome = await _deliver(container, razorpay_event("order.paid", order, "pay_888"))

        assert outcome.action == ACTION_PAID
        stored = await container.order_db.get_order(order.order_id)
        assert stored.payment_details["gateway_payment_ref"] == "pay_888"

    @pytest.mark.asyncio
    async def test_authorized_then_captured(self, container, customer):
        order = await place_razorpay_order(container, customer)

        first = await _deliver(container, razorpay_event("payment.authorized", order))
        stored = await container.order_db.get_order(order.order_id)
        assert first.action == ACTION_AUTHORIZED
        assert stored.payment_status == PaymentStatus.AUTHORIZED
        assert stored.status == OrderStatus.CONFIRMED

        second = await _deliver(container, razorpay_event("payment.captured", order))
        assert second.action == ACTION_PAID

    @pytest.mark.asyncio
    async def test_authorized_after_paid_is_ignored(self, container, customer):
        order = await place_razorpay_order(container, customer)
        await _deliver(container, razorpay_event("payment.captured", order))

        outcome = await _deliver(container, razorpay_event("payment.authorized", order))

        assert outcome.action == ACTION_REPLAY
        stored = await container.order_db.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_payment_failed(self, container, product_store, customer):
        order = await place_razorpay_order(container, customer)
        body = razorpay_event("payment.failed", order, error_description="Payment declined by bank")

        outcome = await _deliver(container, body)

        assert outcome.action == ACTION_FAILED
        stored = await container.order_db.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.FAILED
        assert stored.status == OrderStatus.CANCELLED
        assert stored.failure_reason == "Payment declined by bank"
        assert stored.cancelled_at is not None
        assert product_store.decrement_calls == []

    @pytest.mark.asyncio
    async def test_failed_after_paid_does_not_regress(self, container, customer):
        order = await place_razorpay_order(container, customer)
        await _deliver(container, razorpay_event("payment.captured", order))

        outcome = await _deliver(container, razorpay_event("payment.failed", order))

        assert outcome.action == ACTION_REPLAY
        stored = await container.order_db.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_captured_after_failed_is_acknowledged_and_critical(self, container, product_store,
                                                                       customer, caplog):
        order = await place_razorpay_order(container, customer)
        await _deliver(container, razorpay_event("payment.failed", order))

        with caplog.at_level(logging.CRITICAL):
            outcome = await _deliver(container, razorpay_event("payment.captured", order, "pay_late"))

        assert outcome.action == ACTION_IGNORED
        assert outcome.reason == "conflict"
        assert product_store.decrement_calls == []
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unknown_order_acknowledged(self, container, customer):
        order = await place_razorpay_order(container, customer)
        order.order_id = "ord_missing"

        outcome = await _deliver(container, razorpay_event("payment.captured", order))

        assert outcome.action == ACTION_IGNORED
        assert outcome.reason == "order_not_found"

    @pytest.mark.asyncio
    async def test_missing_notes_acknowledged(self, container, customer):
        order = await place_razorpay_order(container, customer)
        body = razorpay_event("payment.captured", order, notes={})

        outcome = await _deliver(container, body)

        assert outcome.reason == "missing_order_id"

    @pytest.mark.asyncio
    async def test_gateway_order_mismatch_acknowledged(self, container, order_store, customer):
        order = await place_razorpay_order(container, customer)
        order.gateway_order_ref = "order_someone_else"

        outcome = await _deliver(container, razorpay_event("payment.captured", order))

        assert outcome.reason == "gateway_order_mismatch"
        assert order_store.orders[order.order_id].payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_unhandled_event_acknowledged(self, container, customer):
        order = await place_razorpay_order(container, customer)

        outcome = await _deliver(container, razorpay_event("refund.created", order))

        assert outcome.action == ACTION_IGNORED
        assert outcome.reason == "unhandled_event"

    @pytest.mark.asyncio
    async def test_database_error_propagates_for_retry(self, container, order_store, customer):
        order = await place_razorpay_order(container, customer)
        order_store.fail_operations["mark_paid"] = DatabaseError("Failed to mark paid")

        with pytest.raises(DatabaseError):
            await _deliver(container, razorpay_event("payment.captured", order))

    @pytest.mark.asyncio
    async def test_redelivery_finishes_interrupted_commit(self, container, cart_store, product_store,
                                                          order_store, customer):
        order = await place_razorpay_order(container, customer)
        body = razorpay_event("payment.captured", order)
        cart_store.fail_clear = DatabaseError("Failed to clear cart")

        with pytest.raises(DatabaseError):
            await _deliver(container, body)
        assert order_store.orders[order.order_id].payment_status == PaymentStatus.PAID

        cart_store.fail_clear = None
        outcome = await _deliver(container, body)

        assert outcome.action == ACTION_REPLAY
        assert product_store.decrement_calls == [("prod_kurta", 1)]
        assert cart_store.clear_calls == [customer["user_id"]]
        assert order_store.orders[order.order_id].inventory_committed_at is not None

        await _deliver(container, body)
        assert product_store.decrement_calls == [("prod_kurta", 1)]


class TestStripeEvents:

    async def _stripe_order(self, container, customer):
        container.cart_db.seed(customer["user_id"], [("prod_mug", 1)])
        intent = await container.intents.create_stripe_checkout_session(customer)
        return intent.order

    async def _deliver_stripe(self, container, event_type, obj):
        body = stripe_event(event_type, obj)
        return await container.webhooks.handle_stripe(body, stripe_signature_header(STRIPE_WEBHOOK_SECRET, body))

    @pytest.mark.asyncio
    async def test_checkout_session_completed(self, container, product_store, customer):
        order = await self._stripe_order(container, customer)

        outcome = await self._deliver_stripe(container, "checkout.session.completed", {
            "id": order.gateway_order_ref,
            "object": "checkout.session",
            "payment_status": "paid",
            "payment_intent": "pi_123",
            "amount_total": order.amount_minor,
            "metadata": {"order_id": order.order_id, "user_id": order.owner_id},
        })

        assert outcome.action == ACTION_PAID
        stored = await container.order_db.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.PAID
        assert stored.payment_details["gateway_payment_ref"] == "pi_123"
        assert product_store.products["prod_mug"].current_stock == 4

    @pytest.mark.asyncio
    async def test_session_for_other_order_ignored(self, container, customer):
        order = await self._stripe_order(container, customer)

        outcome = await self._deliver_stripe(container, "checkout.session.completed", {
            "id": "cs_test_other",
            "payment_status": "paid",
            "metadata": {"order_id": order.order_id},
        })

        assert outcome.reason == "gateway_order_mismatch"

    @pytest.mark.asyncio
    async def test_unpaid_session_not_applied(self, container, customer):
        order = await self._stripe_order(container, customer)

        outcome = await self._deliver_stripe(container, "checkout.session.completed", {
            "id": order.gateway_order_ref,
            "payment_status": "unpaid",
            "metadata": {"order_id": order.order_id},
        })

        assert outcome.reason == "payment_pending"
        stored = await container.order_db.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_payment_intent_failed(self, container, customer):
        order = await self._stripe_order(container, customer)

        outcome = await self._deliver_stripe(container, "payment_intent.payment_failed", {
            "id": "pi_456",
            "object": "payment_intent",
            "metadata": {"order_id": order.order_id},
            "last_payment_error": {"message": "Your card was declined."},
        })

        assert outcome.action == ACTION_FAILED
        stored = await container.order_db.get_order(order.order_id)
        assert stored.failure_reason == "Your card was declined."

    @pytest.mark.asyncio
    async def test_stripe_failure_for_razorpay_order_ignored(self, container, customer):
        order = await place_razorpay_order(container, customer)

        outcome = await self._deliver_stripe(container, "payment_intent.payment_failed", {
            "id": "pi_456",
            "metadata": {"order_id": order.order_id},
        })

        assert outcome.reason == "gateway_mismatch"

    @pytest.mark.asyncio
    async def test_bad_stripe_signature(self, container):
        body = json.dumps({"type": "checkout.session.completed"}).encode()

        with pytest.raises(SignatureError):
            await container.webhooks.handle_stripe(body, stripe_signature_header("whsec_wrong", body))
