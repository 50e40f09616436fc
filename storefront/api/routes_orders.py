from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from storefront.api.utils import iso_z
from storefront.core.security import Actor, get_actor, require_admin
from storefront.domain.errors import OrderNotFound
from storefront.domain.orders import (
    OrderEventLog,
    add_note,
    next_statuses,
    parse_status,
    request_transition,
)
from storefront.domain.payments import list_payments
from storefront.domain.pricing import format_price_cents
from storefront.persistence.models import OrderModel
from storefront.persistence.pg import get_session

router = APIRouter(tags=["orders"])


class StatusChangeRequest(BaseModel):
    status: str


class NoteRequest(BaseModel):
    message: str


def _order_summary(order: OrderModel) -> dict:
    return {
        "order_id": order.order_id,
        "user_id": order.user_id,
        "status": order.status,
        "subtotal_cents": order.subtotal_cents,
        "discount_cents": order.discount_cents,
        "tax_cents": order.tax_cents,
        "shipping_cents": order.shipping_cents,
        "total_cents": order.total_cents,
        "currency": order.currency,
        "total_display": format_price_cents(order.total_cents, order.currency),
        "created_at": iso_z(order.created_at),
        "paid_at": iso_z(order.paid_at),
        "cancelled_at": iso_z(order.cancelled_at),
    }


def _order_detail(session: Session, order: OrderModel) -> dict:
    return {
        **_order_summary(order),
        "discount_code": order.discount_code,
        "items": [
            {
                "product_id": item.product_id,
                "sku": item.sku,
                "name": item.name_snapshot,
                "size": item.size,
                "qty": item.qty,
                "unit_price_cents": item.unit_price_cents,
                "line_total_cents": item.line_total_cents,
            }
            for item in order.items
        ],
        "payments": list_payments(session, order.order_id),
    }


def load_visible_order(session: Session, order_id: str, actor: Actor) -> OrderModel:
    """Admins see every order; anyone else only their own (others read as missing)."""
    order = session.get(OrderModel, order_id)
    if order is None or (not actor.is_admin and order.user_id != actor.id):
        raise OrderNotFound(order_id)
    return order


@router.get("/orders")
def list_my_orders(
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    stmt = (
        select(OrderModel)
        .where(OrderModel.user_id == actor.id)
        .order_by(desc(OrderModel.created_at))
        .limit(limit)
    )
    rows = list(session.scalars(stmt).all())
    return {"count": len(rows), "orders": [_order_summary(row) for row in rows]}


@router.get("/orders/{order_id}")
def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    order = load_visible_order(session, order_id, actor)
    return {"order": _order_detail(session, order)}


@router.get("/orders/{order_id}/events")
def get_order_events(
    order_id: str,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    order = load_visible_order(session, order_id, actor)
    events = OrderEventLog(session).timeline(order.order_id)
    return {"order_id": order.order_id, "events": [event.to_dict() for event in events]}


@router.get("/admin/orders")
def list_orders(
    status: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    stmt = select(OrderModel).order_by(desc(OrderModel.created_at)).limit(limit)
    if status:
        stmt = stmt.where(OrderModel.status == parse_status(status).value)
    rows = list(session.scalars(stmt).all())
    return {"count": len(rows), "orders": [_order_summary(row) for row in rows]}


@router.get("/admin/orders/{order_id}/next-statuses")
def get_next_statuses(
    order_id: str,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    order = load_visible_order(session, order_id, actor)
    return {
        "order_id": order.order_id,
        "status": order.status,
        "next": [status.value for status in next_statuses(order.status)],
    }


@router.post("/admin/orders/{order_id}/status")
def change_order_status(
    order_id: str,
    request: StatusChangeRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    result = request_transition(session, order_id, parse_status(request.status), actor)
    return result.to_dict()


@router.post("/admin/orders/{order_id}/note")
def add_order_note(
    order_id: str,
    request: NoteRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_admin(actor)
    event = add_note(session, order_id, request.message, actor)
    return {"ok": True, "event": event.to_dict()}
