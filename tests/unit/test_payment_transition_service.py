"""
Unit Tests for the shared paid transition

Tests for:
- First confirmation applies cart and stock side effects once
- Replays (stale read or lost race) apply nothing
- Conflict on orders that can no longer be paid
- Side-effect failure surfaces as DatabaseError with a CRITICAL log
- A later confirmation finishes an interrupted inventory commit exactly once
"""

import asyncio
import logging

import pytest

from sastabazar.core.exceptions import ConflictError, DatabaseError
from sastabazar.database.order_db import PaymentStatus
from sastabazar.services.payment_transition_service import SOURCE_CLIENT_VERIFICATION, SOURCE_WEBHOOK

from fakes import place_razorpay_order


def _details(order, payment_id="pay_001"):
    return {
        "gateway": "razorpay",
        "gateway_order_ref": order.gateway_order_ref,
        "gateway_payment_ref": payment_id,
        "amount": order.amount_minor,
    }


class TestApplyPaymentCaptured:

    @pytest.mark.asyncio
    async def test_first_confirmation_commits_inventory(self, container, cart_store, product_store, customer):
        order = await place_razorpay_order(container, customer, [("prod_kurta", 2), ("prod_mug", 1)])

        result = await container.transitions.apply_payment_captured(
            order, _details(order), SOURCE_CLIENT_VERIFICATION
        )

        assert result.applied is True
        assert result.replay is False
        assert result.order.payment_status == PaymentStatus.PAID
        assert result.order.paid_at is not None
        assert result.order.inventory_committed_at is not None
        assert result.order.payment_details["source"] == SOURCE_CLIENT_VERIFICATION
        assert len(result.order.payment_history) == 1
        assert cart_store.carts[customer["user_id"]].items == []
        assert product_store.products["prod_kurta"].current_stock == 8
        assert product_store.products["prod_mug"].current_stock == 4

    @pytest.mark.asyncio
    async def test_stale_paid_read_is_replay(self, container, product_store, customer):
        order = await place_razorpay_order(container, customer)
        first = await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)

        again = await container.transitions.apply_payment_captured(first.order, _details(order), SOURCE_WEBHOOK)

        assert again.replay is True
        assert again.applied is False
        assert product_store.decrement_calls == [("prod_kurta", 1)]

    @pytest.mark.asyncio
    async def test_lost_race_reloads_and_reports_replay(self, container, cart_store, product_store, customer):
        order = await place_razorpay_order(container, customer)
        await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)

        # Caller still holds the pending snapshot
        result = await container.transitions.apply_payment_captured(
            order, _details(order), SOURCE_CLIENT_VERIFICATION
        )

        assert result.replay is True
        assert result.order.payment_status == PaymentStatus.PAID
        assert result.order.payment_details["source"] == SOURCE_WEBHOOK
        assert cart_store.clear_calls == [customer["user_id"]]
        assert product_store.decrement_calls == [("prod_kurta", 1)]

    @pytest.mark.asyncio
    async def test_authorized_order_can_be_paid(self, container, order_store, customer):
        order = await place_razorpay_order(container, customer)
        await order_store.mark_authorized(order.order_id, _details(order))

        result = await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)

        assert result.applied is True
        assert len(result.order.payment_history) == 2

    @pytest.mark.asyncio
    async def test_failed_order_conflicts(self, container, order_store, product_store, customer):
        order = await place_razorpay_order(container, customer)
        await order_store.mark_failed(order.order_id, _details(order), "card declined")

        with pytest.raises(ConflictError) as exc_info:
            await container.transitions.apply_payment_captured(order, _details(order), SOURCE_CLIENT_VERIFICATION)

        assert exc_info.value.status_code == 409
        assert product_store.decrement_calls == []

    @pytest.mark.asyncio
    async def test_side_effect_failure_is_critical(self, container, cart_store, order_store, customer, caplog):
        order = await place_razorpay_order(container, customer)
        cart_store.fail_clear = DatabaseError("Failed to clear cart")

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(DatabaseError):
                await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)

        stored = order_store.orders[order.order_id]
        assert stored.payment_status == PaymentStatus.PAID
        assert stored.inventory_committed_at is None
        assert any(r.levelno == logging.CRITICAL and order.order_id in r.getMessage() for r in caplog.records)


class TestInterruptedInventoryCommit:

    @pytest.mark.asyncio
    async def test_cart_failure_is_finished_by_next_confirmation(self, container, cart_store, product_store,
                                                                 order_store, customer):
        order = await place_razorpay_order(container, customer)
        cart_store.fail_clear = DatabaseError("Failed to clear cart")

        with pytest.raises(DatabaseError):
            await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)
        assert product_store.decrement_calls == []

        cart_store.fail_clear = None
        result = await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)

        assert result.replay is True
        assert result.order.inventory_committed_at is not None
        assert cart_store.clear_calls == [customer["user_id"]]
        assert product_store.decrement_calls == [("prod_kurta", 1)]
        assert order_store.orders[order.order_id].inventory_committed_at is not None

    @pytest.mark.asyncio
    async def test_failing_line_rolls_back_every_line(self, container, cart_store, product_store,
                                                      order_store, customer):
        order = await place_razorpay_order(container, customer, [("prod_kurta", 2), ("prod_mug", 1)])
        product_store.fail_decrement["prod_mug"] = DatabaseError("Failed to update stock")

        with pytest.raises(DatabaseError):
            await container.transitions.apply_payment_captured(order, _details(order), SOURCE_CLIENT_VERIFICATION)

        assert product_store.products["prod_kurta"].current_stock == 10
        assert product_store.decrement_calls == []
        assert cart_store.clear_calls == []
        assert len(cart_store.carts[customer["user_id"]].items) == 2

        del product_store.fail_decrement["prod_mug"]
        stored = await order_store.get_order(order.order_id)
        result = await container.transitions.apply_payment_captured(stored, _details(order), SOURCE_WEBHOOK)

        assert result.replay is True
        assert sorted(product_store.decrement_calls) == [("prod_kurta", 2), ("prod_mug", 1)]
        assert product_store.products["prod_kurta"].current_stock == 8
        assert product_store.products["prod_mug"].current_stock == 4
        assert cart_store.carts[customer["user_id"]].items == []

    @pytest.mark.asyncio
    async def test_concurrent_retries_commit_once(self, container, cart_store, product_store, customer):
        order = await place_razorpay_order(container, customer)
        cart_store.fail_clear = DatabaseError("Failed to clear cart")
        with pytest.raises(DatabaseError):
            await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)
        cart_store.fail_clear = None

        results = await asyncio.gather(*[
            container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)
            for _ in range(4)
        ])

        assert all(r.replay for r in results)
        assert product_store.decrement_calls == [("prod_kurta", 1)]
        assert cart_store.clear_calls == [customer["user_id"]]

    @pytest.mark.asyncio
    async def test_refunded_order_is_not_committed(self, container, order_store, product_store, customer):
        order = await place_razorpay_order(container, customer)
        await order_store.mark_paid(order.order_id, _details(order))
        await order_store.mark_refunded(order.order_id, {"refund_id": "rfnd_1"})

        result = await container.transitions.apply_payment_captured(order, _details(order), SOURCE_WEBHOOK)

        assert result.replay is True
        assert product_store.decrement_calls == []
