from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.config import get_settings
from storefront.domain.errors import DiscountExhausted, EmptyCart, StockConflict, TransactionConflict
from storefront.domain.inventory.ledger import InventoryLedger
from storefront.domain.orders.status import INITIAL_STATUS
from storefront.domain.pricing import (
    Destination,
    DraftItem,
    OrderDraft,
    OrderTotals,
    RateStrategy,
    compute_discount,
    get_rate_strategy,
)
from storefront.persistence.conditional import get_conditional_updater
from storefront.persistence.models import (
    DiscountCodeModel,
    OrderItemModel,
    OrderModel,
    ProductModel,
    SizeVariantModel,
)

logger = logging.getLogger(__name__)


class CheckoutLine(BaseModel):
    product_id: str = Field(min_length=1)
    size: str | None = Field(default=None, min_length=1)
    qty: int = Field(ge=1, le=99)


class DestinationModel(BaseModel):
    country: str = Field(min_length=2, max_length=2)
    region: str | None = None
    postal_code: str | None = None

    @field_validator("country", "region")
    @classmethod
    def _upper(cls, value: str | None) -> str | None:
        return value.strip().upper() if value else value


class CheckoutRequest(BaseModel):
    lines: list[CheckoutLine] = Field(max_length=200)
    destination: DestinationModel
    email: str | None = None
    discount_code: str | None = None
    idempotency_key: str | None = Field(default=None, min_length=8, max_length=100)

    @field_validator("discount_code")
    @classmethod
    def _normalize_code(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().upper()
        return value or None


@dataclass
class _ResolvedLine:
    line: CheckoutLine
    product: ProductModel
    variant: SizeVariantModel | None


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    status: str
    totals: OrderTotals
    idempotent: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "status": self.status,
            "subtotal_cents": self.totals.subtotal_cents,
            "discount_cents": self.totals.discount_cents,
            "tax_cents": self.totals.tax_cents,
            "shipping_cents": self.totals.shipping_cents,
            "total_cents": self.totals.total_cents,
            "currency": self.totals.currency,
            "idempotent": self.idempotent,
        }


def _totals_of(order: OrderModel) -> OrderTotals:
    return OrderTotals(
        subtotal_cents=order.subtotal_cents,
        discount_cents=order.discount_cents,
        tax_cents=order.tax_cents,
        shipping_cents=order.shipping_cents,
        currency=order.currency,
    )


def _existing_order(session: Session, user_id: str, idempotency_key: str) -> OrderModel | None:
    return session.scalar(
        select(OrderModel)
        .where(OrderModel.user_id == user_id)
        .where(OrderModel.checkout_idempotency_key == idempotency_key)
    )


def _resolve_lines(session: Session, lines: list[CheckoutLine]) -> list[_ResolvedLine]:
    product_ids = sorted({line.product_id for line in lines})
    products = {
        p.product_id: p
        for p in session.scalars(select(ProductModel).where(ProductModel.product_id.in_(product_ids))).all()
    }

    resolved: list[_ResolvedLine] = []
    stock_errors: list[dict[str, Any]] = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None or product.deleted_at is not None:
            stock_errors.append({"product_id": line.product_id, "size": line.size, "available": 0})
            continue
        variant = None
        if not line.size and product.sizes:
            # Sized products cannot be bought without picking a size.
            stock_errors.append(
                {
                    "product_id": line.product_id,
                    "size": None,
                    "available": 0,
                    "sizes": sorted(s.label for s in product.sizes),
                }
            )
            continue
        if line.size:
            variant = next((s for s in product.sizes if s.label == line.size), None)
            available = variant.stock if variant else 0
            if variant is None or line.qty > available:
                stock_errors.append({"product_id": line.product_id, "size": line.size, "available": available})
                continue
        resolved.append(_ResolvedLine(line=line, product=product, variant=variant))

    if stock_errors:
        logger.info("checkout stock conflict lines=%s", stock_errors)
        raise StockConflict(stock_errors)
    return resolved


def checkout(
    session: Session,
    user_id: str,
    request: CheckoutRequest,
    rate_strategy: RateStrategy | None = None,
    ledger: InventoryLedger | None = None,
) -> CheckoutResult:
    """Price the cart, create a PENDING order and reserve stock for every sized line.

    Runs inside the caller's transaction. A failed reservation raises and leaves
    the rollback to the caller, which undoes the order row and any reservations
    already made for sibling lines.
    """
    if not request.lines:
        raise EmptyCart("cart has no lines")

    if request.idempotency_key:
        existing = _existing_order(session, user_id, request.idempotency_key)
        if existing is not None:
            return CheckoutResult(
                order_id=existing.order_id,
                status=existing.status,
                totals=_totals_of(existing),
                idempotent=True,
            )

    resolved = _resolve_lines(session, request.lines)
    subtotal = sum(r.product.price_cents * r.line.qty for r in resolved)

    discount_cents = 0
    discount: DiscountCodeModel | None = None
    if request.discount_code:
        discount = session.scalar(select(DiscountCodeModel).where(DiscountCodeModel.code == request.discount_code))
        discount_cents = compute_discount(discount, subtotal)

    destination = Destination(
        country=request.destination.country,
        region=request.destination.region,
        postal_code=request.destination.postal_code,
    )
    draft = OrderDraft(
        subtotal_cents=subtotal,
        items=[DraftItem(r.product.product_id, r.product.price_cents, r.line.qty) for r in resolved],
        destination=destination,
    )
    rates = (rate_strategy or get_rate_strategy()).calculate(draft)
    totals = OrderTotals(
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        tax_cents=rates.tax_cents,
        shipping_cents=rates.shipping_cents,
        currency=get_settings().default_currency,
    )

    order = OrderModel(
        user_id=user_id,
        email=request.email,
        status=INITIAL_STATUS.value,
        subtotal_cents=totals.subtotal_cents,
        discount_cents=totals.discount_cents,
        tax_cents=totals.tax_cents,
        shipping_cents=totals.shipping_cents,
        total_cents=totals.total_cents,
        currency=totals.currency,
        discount_code=discount.code if discount else None,
        checkout_idempotency_key=request.idempotency_key,
        created_at=datetime.now(timezone.utc),
    )
    for r in resolved:
        order.items.append(
            OrderItemModel(
                product_id=r.product.product_id,
                size_variant_id=r.variant.size_variant_id if r.variant else None,
                size=r.line.size,
                sku=r.product.sku,
                name_snapshot=r.product.name,
                qty=r.line.qty,
                unit_price_cents=r.product.price_cents,
                line_total_cents=r.product.price_cents * r.line.qty,
            )
        )
    session.add(order)
    try:
        session.flush()
    except IntegrityError as exc:
        raise TransactionConflict("concurrent checkout with the same idempotency key") from exc

    ledger = ledger or InventoryLedger(session)
    for r in resolved:
        if r.variant is not None:
            ledger.decrement_stock(r.variant.size_variant_id, r.line.qty)

    if discount is not None:
        # The usage check above read a snapshot; the guarded increment is what enforces the limit.
        claimed = get_conditional_updater().increment_within_limit(
            session,
            DiscountCodeModel.__table__,
            key_column="discount_code_id",
            key=discount.discount_code_id,
            counter_column="times_used",
            limit_column="usage_limit",
        )
        if claimed != 1:
            logger.info("discount usage limit reached at redemption code=%s", discount.code)
            raise DiscountExhausted("discount code usage limit reached")

    logger.info(
        "checkout created order_id=%s user_id=%s total_cents=%s lines=%s",
        order.order_id,
        user_id,
        totals.total_cents,
        len(resolved),
    )
    return CheckoutResult(order_id=order.order_id, status=order.status, totals=totals)
