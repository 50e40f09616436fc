from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from storefront.core.security import Actor
from storefront.domain.errors import InvalidTransition, OrderNotFound, TransactionConflict
from storefront.domain.orders.event_log import OrderEventKind, OrderEventLog, OrderEventView
from storefront.domain.orders.status import OrderStatus, can_transition, parse_status
from storefront.persistence import pg
from storefront.persistence.conditional import ConditionalUpdater, get_conditional_updater
from storefront.persistence.models import OrderModel

logger = logging.getLogger(__name__)

# Timestamp column stamped when an order enters the status.
_STATUS_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    event: OrderEventView

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "from": self.from_status.value,
            "to": self.to_status.value,
            "changed": self.changed,
            "event": self.event.to_dict(),
        }


def request_transition(
    session: Session,
    order_id: str,
    target: OrderStatus | str,
    actor: Actor,
    updater: ConditionalUpdater | None = None,
) -> TransitionResult:
    """Move an order to ``target`` and log it, inside the caller's transaction.

    Requesting the current status is accepted and still logged. The status write
    is guarded on the status that was read, so a concurrent change surfaces as
    ``TransactionConflict`` and the caller retries from a fresh read. The event
    append happens in the same transaction; if it fails the caller's rollback
    discards the status write too.
    """
    target = parse_status(target)
    session.flush()
    order = session.get(OrderModel, order_id)
    if order is None:
        raise OrderNotFound(order_id)

    current = parse_status(order.status)
    if not can_transition(current, target):
        logger.info(
            "rejected order transition order_id=%s from=%s to=%s actor=%s:%s",
            order_id,
            current.value,
            target.value,
            actor.type,
            actor.id,
        )
        raise InvalidTransition(current.value, target.value)

    # Same-status requests still take the guarded write, so a stale read cannot
    # log an event that contradicts a status committed meanwhile.
    extra_values: dict[str, Any] = {}
    stamp_column = _STATUS_TIMESTAMPS.get(target)
    if stamp_column and current != target:
        extra_values[stamp_column] = datetime.now(timezone.utc)

    updater = updater or get_conditional_updater()
    affected = updater.compare_and_set(
        session,
        OrderModel.__table__,
        key_column="order_id",
        key=order_id,
        column="status",
        expected=current.value,
        new=target.value,
        extra_values=extra_values,
    )
    if affected != 1:
        raise TransactionConflict(
            f"order {order_id} changed concurrently; expected status {current.value}"
        )
    session.refresh(order)

    event = OrderEventLog(session).append(
        order_id=order_id,
        kind=OrderEventKind.STATUS_CHANGE,
        message=f"Status {current.value} -> {target.value}",
        meta={"from": current.value, "to": target.value},
        actor=actor,
    )
    logger.info(
        "order transition order_id=%s from=%s to=%s actor=%s:%s",
        order_id,
        current.value,
        target.value,
        actor.type,
        actor.id,
    )
    return TransitionResult(order_id=order_id, from_status=current, to_status=target, event=event)


def transition_with_retry(
    order_id: str,
    target: OrderStatus | str,
    actor: Actor,
    attempts: int | None = None,
) -> TransitionResult:
    """Run ``request_transition`` in its own transaction, retrying lost races."""
    return pg.run_in_transaction(
        lambda session: request_transition(session, order_id, target, actor),
        attempts,
    )
