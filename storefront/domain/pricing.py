from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Protocol

from storefront.domain.errors import DiscountExhausted, DiscountMinSubtotal, InvalidDiscount
from storefront.persistence.models import DiscountCodeModel

FREE_SHIPPING_THRESHOLD_CENTS = 7500


@dataclass(frozen=True)
class OrderTotals:
    subtotal_cents: int
    discount_cents: int = 0
    tax_cents: int = 0
    shipping_cents: int = 0
    currency: str = "USD"

    def __post_init__(self) -> None:
        for name in ("subtotal_cents", "discount_cents", "tax_cents", "shipping_cents"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.discount_cents > self.subtotal_cents:
            raise ValueError("discount cannot exceed subtotal")

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents + self.tax_cents + self.shipping_cents


@dataclass
class Destination:
    country: str
    region: str | None = None
    postal_code: str | None = None


@dataclass
class DraftItem:
    product_id: str
    unit_price_cents: int
    qty: int


@dataclass
class OrderDraft:
    subtotal_cents: int
    items: list[DraftItem]
    destination: Destination


@dataclass
class RateResult:
    tax_cents: int
    shipping_cents: int
    breakdown: dict = field(default_factory=dict)


class RateStrategy(Protocol):
    def calculate(self, draft: OrderDraft) -> RateResult: ...


@dataclass(frozen=True)
class TaxRule:
    label: str
    rate: Decimal
    match: Callable[[Destination], bool]


@dataclass(frozen=True)
class ShippingRule:
    label: str
    base_cents: int
    per_item_cents: int
    match: Callable[[Destination], bool]


TAX_RULES: tuple[TaxRule, ...] = (
    TaxRule("US-CA", Decimal("0.0725"), lambda d: d.country == "US" and d.region == "CA"),
    TaxRule("US-NY", Decimal("0.08875"), lambda d: d.country == "US" and d.region == "NY"),
    TaxRule("UK-VAT", Decimal("0.2"), lambda d: d.country == "GB"),
)

SHIPPING_RULES: tuple[ShippingRule, ...] = (
    ShippingRule("US_STANDARD", 599, 100, lambda d: d.country == "US"),
    ShippingRule("UK_STANDARD", 499, 75, lambda d: d.country == "GB"),
)


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class RuleBasedRateStrategy:
    def __init__(
        self,
        tax_rules: tuple[TaxRule, ...] = TAX_RULES,
        shipping_rules: tuple[ShippingRule, ...] = SHIPPING_RULES,
        free_shipping_threshold_cents: int | None = FREE_SHIPPING_THRESHOLD_CENTS,
    ):
        self.tax_rules = tax_rules
        self.shipping_rules = shipping_rules
        self.free_shipping_threshold_cents = free_shipping_threshold_cents

    def calculate(self, draft: OrderDraft) -> RateResult:
        tax_rule = next((r for r in self.tax_rules if r.match(draft.destination)), None)
        tax_cents = _round_cents(Decimal(draft.subtotal_cents) * tax_rule.rate) if tax_rule else 0

        ship_rule = next((r for r in self.shipping_rules if r.match(draft.destination)), None)
        shipping_cents = 0
        adjustments: list[dict] = []
        if ship_rule:
            shipping_cents = ship_rule.base_cents + ship_rule.per_item_cents * sum(i.qty for i in draft.items)
        threshold = self.free_shipping_threshold_cents
        if threshold is not None and draft.subtotal_cents >= threshold and shipping_cents > 0:
            adjustments.append({"reason": "FREE_SHIPPING_THRESHOLD", "amount_cents": -shipping_cents})
            shipping_cents = 0

        return RateResult(
            tax_cents=tax_cents,
            shipping_cents=shipping_cents,
            breakdown={
                "tax_rule": tax_rule.label if tax_rule else None,
                "tax_rate_bps": int(tax_rule.rate * 10000) if tax_rule else None,
                "shipping_rule": ship_rule.label if ship_rule else None,
                "base_shipping_cents": ship_rule.base_cents if ship_rule else 0,
                "adjustments": adjustments,
            },
        )


_strategy: RateStrategy = RuleBasedRateStrategy()


def get_rate_strategy() -> RateStrategy:
    return _strategy


def compute_discount(code: DiscountCodeModel | None, subtotal_cents: int, now: datetime | None = None) -> int:
    """Validate a looked-up discount code and return the discount in cents."""
    now = now or datetime.now(timezone.utc)
    if code is None:
        raise InvalidDiscount("discount code not found")
    if code.starts_at is not None and _aware(code.starts_at) > now:
        raise InvalidDiscount("discount code not started")
    if code.ends_at is not None and _aware(code.ends_at) < now:
        raise InvalidDiscount("discount code expired")
    if code.min_subtotal_cents and subtotal_cents < code.min_subtotal_cents:
        raise DiscountMinSubtotal(code.min_subtotal_cents)
    if code.usage_limit is not None and code.times_used >= code.usage_limit:
        raise DiscountExhausted("discount code usage limit reached")

    if code.kind == "FIXED" and code.value_cents:
        return min(subtotal_cents, code.value_cents)
    if code.kind == "PERCENT" and code.percent:
        return min(subtotal_cents, subtotal_cents * code.percent // 100)
    return 0


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def format_price_cents(cents: int, currency: str = "USD") -> str:
    symbols = {"USD": "$", "GBP": "£", "EUR": "€"}
    amount = (Decimal(cents) / 100).quantize(Decimal("0.01"))
    sign = "-" if amount < 0 else ""
    text = f"{abs(amount):,.2f}"
    symbol = symbols.get(currency.upper())
    if symbol:
        return f"{sign}{symbol}{text}"
    return f"{sign}{text} {currency.upper()}"
