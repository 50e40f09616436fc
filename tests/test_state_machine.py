from __future__ import annotations

from datetime import datetime, timezone

import pytest

import storefront.persistence.pg as pg
from storefront.domain.errors import InvalidTransition, OrderNotFound, TransactionConflict
from storefront.domain.orders import (
    OrderEventKind,
    OrderEventLog,
    OrderStatus,
    request_transition,
    transition_with_retry,
)
from storefront.domain.inventory.ledger import InventoryLedger
from storefront.persistence.models import OrderModel, SizeVariantModel


def _status(order_id: str) -> str:
    with pg.session_scope() as s:
        return s.get(OrderModel, order_id).status


def _timeline(order_id: str):
    with pg.session_scope() as s:
        return OrderEventLog(s).timeline(order_id)


@pytest.mark.parametrize("status", list(OrderStatus))
def test_same_status_is_accepted_and_logged(make_order, admin, status):
    order_id = make_order(status=status.value)
    with pg.session_scope() as s:
        result = request_transition(s, order_id, status, admin)

    assert result.changed is False
    assert _status(order_id) == status.value
    events = _timeline(order_id)
    assert len(events) == 1
    assert events[0].kind is OrderEventKind.STATUS_CHANGE
    assert dict(events[0].meta) == {"from": status.value, "to": status.value}


@pytest.mark.parametrize("terminal", [OrderStatus.CANCELLED, OrderStatus.REFUNDED])
def test_terminal_statuses_reject_everything_else(make_order, admin, terminal):
    order_id = make_order(status=terminal.value)
    for target in OrderStatus:
        if target == terminal:
            continue
        with pytest.raises(InvalidTransition) as excinfo:
            with pg.session_scope() as s:
                request_transition(s, order_id, target, admin)
        assert excinfo.value.from_status == terminal.value
        assert excinfo.value.to_status == target.value

    assert _status(order_id) == terminal.value
    assert _timeline(order_id) == ()


def test_accepted_transition_updates_status_and_appends_event(make_order, admin):
    order_id = make_order()
    with pg.session_scope() as s:
        result = request_transition(s, order_id, "AWAITING_PAYMENT", admin)

    assert result.from_status is OrderStatus.PENDING
    assert result.to_status is OrderStatus.AWAITING_PAYMENT
    assert _status(order_id) == "AWAITING_PAYMENT"
    (event,) = _timeline(order_id)
    assert event.message == "Status PENDING -> AWAITING_PAYMENT"
    assert event.actor_type == "admin"
    assert event.actor_id == admin.id


def test_paid_and_cancelled_are_timestamped(make_order, admin):
    paid_id = make_order(status="AWAITING_PAYMENT")
    cancelled_id = make_order(status="PENDING")
    with pg.session_scope() as s:
        request_transition(s, paid_id, OrderStatus.PAID, admin)
        request_transition(s, cancelled_id, OrderStatus.CANCELLED, admin)

    with pg.session_scope() as s:
        assert s.get(OrderModel, paid_id).paid_at is not None
        assert s.get(OrderModel, cancelled_id).cancelled_at is not None
        assert s.get(OrderModel, cancelled_id).paid_at is None


def test_failed_event_append_leaves_status_unchanged(make_order, admin, monkeypatch):
    order_id = make_order()

    def _boom(self, *args, **kwargs):
        raise RuntimeError("event store unavailable")

    monkeypatch.setattr(OrderEventLog, "append", _boom)
    with pytest.raises(RuntimeError):
        with pg.session_scope() as s:
            request_transition(s, order_id, OrderStatus.AWAITING_PAYMENT, admin)
    monkeypatch.undo()

    assert _status(order_id) == "PENDING"
    assert _timeline(order_id) == ()


def test_unknown_order(admin):
    with pytest.raises(OrderNotFound):
        with pg.session_scope() as s:
            request_transition(s, "missing", OrderStatus.PAID, admin)


def test_stale_read_surfaces_as_conflict(make_order, admin):
    order_id = make_order()

    class LosingUpdater:
        def compare_and_set(self, *args, **kwargs):
            return 0

    with pytest.raises(TransactionConflict):
        with pg.session_scope() as s:
            request_transition(s, order_id, OrderStatus.CANCELLED, admin, updater=LosingUpdater())
    assert _status(order_id) == "PENDING"
    assert _timeline(order_id) == ()


def test_same_status_request_conflicts_after_concurrent_change(make_order, admin):
    order_id = make_order()

    with pytest.raises(TransactionConflict):
        with pg.session_scope() as s:
            assert s.get(OrderModel, order_id).status == "PENDING"
            with pg.session_scope() as other:
                request_transition(other, order_id, OrderStatus.CANCELLED, admin)
            request_transition(s, order_id, OrderStatus.PENDING, admin)

    assert _status(order_id) == "CANCELLED"
    assert [dict(e.meta) for e in _timeline(order_id)] == [{"from": "PENDING", "to": "CANCELLED"}]


def test_transition_with_retry_commits(make_order, admin):
    order_id = make_order(status="PAID")
    result = transition_with_retry(order_id, "FULFILLING", admin)
    assert result.to_status is OrderStatus.FULFILLING
    assert _status(order_id) == "FULFILLING"


def test_end_to_end_reserve_then_transition(make_product, admin):
    product = make_product(sizes={"M": 5})
    variant_id = product["sizes"]["M"]

    with pg.session_scope() as s:
        InventoryLedger(s).decrement_stock(variant_id, 2)
    with pg.session_scope() as s:
        assert s.get(SizeVariantModel, variant_id).stock == 3

    with pg.session_scope() as s:
        order = OrderModel(user_id="user-alice", created_at=datetime.now(timezone.utc))
        s.add(order)
        s.flush()
        order_id = order.order_id
        assert order.status == "PENDING"

    with pg.session_scope() as s:
        request_transition(s, order_id, OrderStatus.AWAITING_PAYMENT, admin)
    events = _timeline(order_id)
    assert len(events) == 1
    assert dict(events[0].meta) == {"from": "PENDING", "to": "AWAITING_PAYMENT"}

    with pytest.raises(InvalidTransition) as excinfo:
        with pg.session_scope() as s:
            request_transition(s, order_id, OrderStatus.SHIPPED, admin)
    assert (excinfo.value.from_status, excinfo.value.to_status) == ("AWAITING_PAYMENT", "SHIPPED")
    assert _status(order_id) == "AWAITING_PAYMENT"
    assert len(_timeline(order_id)) == 1
