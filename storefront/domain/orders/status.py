from __future__ import annotations

from enum import Enum
from typing import Any

from storefront.domain.errors import InvalidStatus


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    FULFILLING = "FULFILLING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


INITIAL_STATUS = OrderStatus.PENDING

# Every status has an entry; an empty tuple marks a terminal status.
TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.AWAITING_PAYMENT, OrderStatus.CANCELLED),
    OrderStatus.AWAITING_PAYMENT: (OrderStatus.PAID, OrderStatus.CANCELLED),
    OrderStatus.PAID: (OrderStatus.FULFILLING, OrderStatus.CANCELLED, OrderStatus.REFUNDED),
    OrderStatus.FULFILLING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED, OrderStatus.REFUNDED),
    OrderStatus.DELIVERED: (OrderStatus.REFUNDED,),
    OrderStatus.CANCELLED: (),
    OrderStatus.REFUNDED: (),
}


def parse_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    if isinstance(value, str):
        try:
            return OrderStatus(value.strip().upper())
        except ValueError:
            pass
    raise InvalidStatus(value)


def next_statuses(current: OrderStatus | str) -> tuple[OrderStatus, ...]:
    return TRANSITIONS[parse_status(current)]


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    current, target = parse_status(current), parse_status(target)
    if current == target:
        return True
    return target in TRANSITIONS[current]


def is_terminal(status: OrderStatus | str) -> bool:
    return not TRANSITIONS[parse_status(status)]
