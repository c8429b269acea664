from decimal import Decimal

import pytest
import structlog

from storefront.errors import OrderNotFoundError, OrderStatusError
from storefront.kafka.consumer import deserialize, handle_message, process_event
from storefront.lifecycle import TERMINAL, advance_order, cancel_order, ensure_transition
from storefront.reconcile import reconcile
from storefront.schemas import OrderHeaderFields, OrderStatus


@pytest.fixture
def order(orders):
    return orders.create_order_header(OrderHeaderFields(
        user_id="ada@example.com", customer_name="Ada", customer_email="ada@example.com",
        customer_phone="0123456789", shipping_address="1 St", city="London", postal_code="N1",
        total_amount=Decimal("14.99"), shipping_amount=Decimal("4.99"),
    ))


def test_terminal_states():
    assert TERMINAL == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


@pytest.mark.parametrize("current,new", [
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.SHIPPED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
])
def test_allowed_transitions(current, new):
    ensure_transition(current, new)


@pytest.mark.parametrize("current,new", [
    (OrderStatus.PENDING, OrderStatus.DELIVERED),
    (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    (OrderStatus.DELIVERED, OrderStatus.SHIPPED),
    (OrderStatus.CANCELLED, OrderStatus.PENDING),
])
def test_rejected_transitions(current, new):
    with pytest.raises(OrderStatusError):
        ensure_transition(current, new)


class TestCancel:
    def test_owner_cancels_pending(self, orders, order):
        cancelled = cancel_order(orders, order.order_number, "ada@example.com")
        assert cancelled.status == OrderStatus.CANCELLED
        assert orders.get_order_by_number(order.order_number).status == OrderStatus.CANCELLED

    @pytest.mark.parametrize("user_id", [None, "mallory@example.com"])
    def test_other_users_see_not_found(self, orders, order, user_id):
        with pytest.raises(OrderNotFoundError):
            cancel_order(orders, order.order_number, user_id)

    def test_only_pending(self, orders, order):
        advance_order(orders, order.order_number, OrderStatus.CONFIRMED)
        with pytest.raises(OrderStatusError):
            cancel_order(orders, order.order_number, "ada@example.com")

    def test_unknown_order(self, orders):
        with pytest.raises(OrderNotFoundError):
            cancel_order(orders, "ORD-00000000-000000", "ada@example.com")


def test_advance_through_fulfillment(orders, order):
    for status in (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        assert advance_order(orders, order.order_number, status).status == status
    with pytest.raises(OrderStatusError):
        advance_order(orders, order.order_number, OrderStatus.CANCELLED)


class TestFulfillmentEvents:
    def test_applies_status_change(self, orders, order):
        process_event({"type": "order.status_changed", "order_number": order.order_number,
                       "status": "confirmed"}, orders)
        assert orders.get_order_by_number(order.order_number).status == OrderStatus.CONFIRMED

    @pytest.mark.parametrize("event", [
        {"type": "order.created", "order_number": "x", "status": "confirmed"},
        {"type": "order.status_changed", "status": "confirmed"},
        {"type": "order.status_changed", "order_number": "x", "status": "teleported"},
        {"type": "order.status_changed", "order_number": "ORD-00000000-000000", "status": "confirmed"},
    ])
    def test_ignores_unusable_events(self, orders, order, event):
        process_event(event, orders)
        assert orders.get_order_by_number(order.order_number).status == OrderStatus.PENDING

    def test_invalid_transition_is_skipped(self, orders, order):
        process_event({"type": "order.status_changed", "order_number": order.order_number,
                       "status": "delivered"}, orders)
        assert orders.get_order_by_number(order.order_number).status == OrderStatus.PENDING


class TestReconcile:
    def test_dry_run_keeps_headers(self, orders, order):
        found = reconcile(orders, grace_minutes=0, dry_run=True)
        assert [o.id for o in found] == [order.id]
        assert orders.get_order_by_number(order.order_number) is not None

    def test_discards_old_headers(self, orders, order):
        reconcile(orders, grace_minutes=0)
        assert orders.get_order_by_number(order.order_number) is None

    def test_grace_period_protects_fresh_headers(self, orders, order):
        assert reconcile(orders, grace_minutes=15) == []
        assert orders.get_order_by_number(order.order_number) is not None


class TestFulfillmentMessages:
    @pytest.mark.parametrize("raw", [b"{not json", b"\xff\xfe", None])
    def test_undecodable_payload_becomes_none(self, raw):
        assert deserialize(raw) is None

    def test_decodes_json(self):
        assert deserialize(b'{"type": "order.status_changed"}') == {"type": "order.status_changed"}

    @pytest.mark.parametrize("value", [None, [], "confirmed", 42])
    def test_non_dict_payload_is_ignored(self, orders, order, value):
        handle_message(value, orders)
        assert orders.get_order_by_number(order.order_number).status == OrderStatus.PENDING

    def test_unexpected_error_does_not_escape(self, order):
        class ExplodingOrders:
            def get_order_by_number(self, order_number):
                raise RuntimeError("db driver bug")

        handle_message({"type": "order.status_changed", "order_number": order.order_number,
                        "status": "confirmed"}, ExplodingOrders())

    def test_order_number_bound_to_log_context_while_processing(self, orders, order):
        seen = {}

        class RecordingOrders:
            def get_order_by_number(self, order_number):
                seen.update(structlog.contextvars.get_contextvars())
                return orders.get_order_by_number(order_number)

            def update_status(self, order_id, status, expected=None):
                orders.update_status(order_id, status, expected)

        process_event({"type": "order.status_changed", "order_number": order.order_number,
                       "status": "confirmed"}, RecordingOrders())
        assert seen == {"order_number": order.order_number}
        assert structlog.contextvars.get_contextvars() == {}
