from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.security import Actor
from storefront.domain.errors import InvalidWebhook, OrderNotFound
from storefront.domain.orders.event_log import OrderEventKind, OrderEventLog
from storefront.domain.orders.state_machine import request_transition
from storefront.domain.orders.status import OrderStatus, parse_status
from storefront.persistence.models import OrderModel, PaymentRecordModel

logger = logging.getLogger(__name__)

SIMULATED_PROVIDER = "STRIPE"


class PaymentStatus(str, Enum):
    PAYMENT_PENDING = "PAYMENT_PENDING"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"


_OUTCOME_ALIASES = {
    "succeeded": "succeeded",
    "success": "succeeded",
    "failed": "failed",
    "fail": "failed",
}


@dataclass(frozen=True)
class WebhookResult:
    ok: bool = True
    ignored: bool = False
    idempotent: bool = False
    order_id: str | None = None
    status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": self.ok}
        if self.ignored:
            payload["ignored"] = True
        if self.idempotent:
            payload["idempotent"] = True
        if self.order_id:
            payload["order_id"] = self.order_id
            payload["status"] = self.status
        return payload


def _payment_dict(payment: PaymentRecordModel) -> dict[str, Any]:
    return {
        "payment_id": payment.payment_id,
        "order_id": payment.order_id,
        "provider": payment.provider,
        "provider_ref": payment.provider_ref,
        "amount_cents": payment.amount_cents,
        "currency": payment.currency,
        "status": payment.status,
    }


def list_payments(session: Session, order_id: str) -> list[dict[str, Any]]:
    stmt = (
        select(PaymentRecordModel)
        .where(PaymentRecordModel.order_id == order_id)
        .order_by(PaymentRecordModel.created_at.asc())
    )
    return [_payment_dict(p) for p in session.scalars(stmt).all()]


def create_payment_intent(session: Session, order_id: str, actor: Actor) -> dict[str, Any]:
    """Record a simulated provider intent and move the order to AWAITING_PAYMENT.

    No provider call happens here; a real gateway request must complete before
    this runs so no transaction stays open across network I/O.
    """
    order = session.get(OrderModel, order_id)
    if order is None:
        raise OrderNotFound(order_id)

    existing = session.scalar(select(PaymentRecordModel).where(PaymentRecordModel.order_id == order_id))
    if existing is not None:
        return {**_payment_dict(existing), "idempotent": True}

    # Validate before writing the payment row.
    if parse_status(order.status) != OrderStatus.AWAITING_PAYMENT:
        request_transition(session, order_id, OrderStatus.AWAITING_PAYMENT, actor)

    payment = PaymentRecordModel(
        order_id=order_id,
        provider=SIMULATED_PROVIDER,
        provider_ref=f"pi_sim_{order_id}",
        amount_cents=order.total_cents,
        currency=order.currency,
        status=PaymentStatus.PAYMENT_PENDING.value,
        created_at=datetime.now(timezone.utc),
    )
    session.add(payment)
    session.flush()
    logger.info("payment intent created order_id=%s provider_ref=%s", order_id, payment.provider_ref)
    return {**_payment_dict(payment), "idempotent": False}


def normalize_outcome(outcome: str | None) -> str:
    normalized = _OUTCOME_ALIASES.get((outcome or "").strip().lower())
    if normalized is None:
        raise InvalidWebhook(f"unsupported payment outcome: {outcome!r}")
    return normalized


def handle_payment_webhook(session: Session, provider_ref: str, outcome: str, actor: Actor) -> WebhookResult:
    outcome = normalize_outcome(outcome)
    payment = session.scalar(
        select(PaymentRecordModel)
        .where(PaymentRecordModel.provider == SIMULATED_PROVIDER)
        .where(PaymentRecordModel.provider_ref == provider_ref)
    )
    if payment is None:
        # Unknown intents are acknowledged so provider retries stop.
        logger.warning("payment webhook for unknown provider_ref=%s ignored", provider_ref)
        return WebhookResult(ignored=True)

    order = session.get(OrderModel, payment.order_id)
    if order is None:
        raise OrderNotFound(payment.order_id)

    if outcome == "succeeded":
        if payment.status == PaymentStatus.CAPTURED.value or order.status == OrderStatus.PAID.value:
            return WebhookResult(idempotent=True, order_id=order.order_id, status=order.status)
        request_transition(session, order.order_id, OrderStatus.PAID, actor)
        payment.status = PaymentStatus.CAPTURED.value
        session.flush()
        return WebhookResult(order_id=order.order_id, status=OrderStatus.PAID.value)

    if payment.status == PaymentStatus.FAILED.value:
        return WebhookResult(idempotent=True, order_id=order.order_id, status=order.status)
    payment.status = PaymentStatus.FAILED.value
    OrderEventLog(session).append(
        order_id=order.order_id,
        kind=OrderEventKind.NOTE,
        message=f"Payment {provider_ref} failed",
        meta={"author_id": actor.id, "provider_ref": provider_ref},
        actor=actor,
    )
    session.flush()
    return WebhookResult(order_id=order.order_id, status=order.status)
