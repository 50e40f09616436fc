from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from storefront.api.routes_orders import load_visible_order
from storefront.api.utils import client_ip
from storefront.core.ratelimit import RateLimiter
from storefront.core.security import Actor, get_actor, require_roles
from storefront.domain.checkout import CheckoutRequest, checkout
from storefront.domain.payments import create_payment_intent, handle_payment_webhook
from storefront.persistence.pg import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


class PaymentIntentRequest(BaseModel):
    order_id: str


class PaymentWebhookRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)
    status: str


def enforce_checkout_rate_limit(request: Request) -> None:
    limiter: RateLimiter | None = getattr(request.app.state, "checkout_limiter", None)
    if limiter is None:
        return
    ip = client_ip(request)
    if not limiter.allow(f"checkout:{ip}"):
        logger.info("checkout rate limited ip=%s", ip)
        raise HTTPException(status_code=429, detail="rate_limited")


@router.post("/checkout")
def post_checkout(
    payload: CheckoutRequest,
    _: None = Depends(enforce_checkout_rate_limit),
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_roles(actor, {"customer"}, detail="customer login required")
    result = checkout(session, actor.id, payload)
    return result.to_dict()


@router.post("/payments/intent")
def post_payment_intent(
    payload: PaymentIntentRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    order = load_visible_order(session, payload.order_id, actor)
    return create_payment_intent(session, order.order_id, actor)


@router.post("/payments/webhook")
def post_payment_webhook(
    payload: PaymentWebhookRequest,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    require_roles(actor, {"system"}, detail="system credentials required")
    result = handle_payment_webhook(session, payload.payment_intent_id, payload.status, actor)
    return result.to_dict()
