from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from storefront.domain.errors import DiscountExhausted, DiscountMinSubtotal, InvalidDiscount
from storefront.domain.pricing import (
    Destination,
    DraftItem,
    OrderDraft,
    OrderTotals,
    RuleBasedRateStrategy,
    compute_discount,
    format_price_cents,
)
from storefront.persistence.models import DiscountCodeModel


def _draft(subtotal: int, qty: int, country: str, region: str | None = None) -> OrderDraft:
    return OrderDraft(
        subtotal_cents=subtotal,
        items=[DraftItem(product_id="p1", unit_price_cents=subtotal // qty, qty=qty)],
        destination=Destination(country=country, region=region),
    )


def test_totals_invariant():
    totals = OrderTotals(subtotal_cents=10000, discount_cents=1000, tax_cents=725, shipping_cents=599)
    assert totals.total_cents == 10000 - 1000 + 725 + 599

    with pytest.raises(ValueError):
        OrderTotals(subtotal_cents=100, discount_cents=200)
    with pytest.raises(ValueError):
        OrderTotals(subtotal_cents=100, tax_cents=-1)


def test_california_tax_and_us_shipping():
    result = RuleBasedRateStrategy().calculate(_draft(5000, 2, "US", "CA"))
    assert result.tax_cents == 363  # 5000 * 7.25% = 362.5, rounded half up
    assert result.shipping_cents == 599 + 2 * 100
    assert result.breakdown["tax_rule"] == "US-CA"
    assert result.breakdown["shipping_rule"] == "US_STANDARD"


def test_free_shipping_threshold():
    result = RuleBasedRateStrategy().calculate(_draft(8000, 4, "GB"))
    assert result.tax_cents == 1600
    assert result.shipping_cents == 0
    assert result.breakdown["adjustments"][0]["reason"] == "FREE_SHIPPING_THRESHOLD"


def test_unknown_destination_has_no_rates():
    result = RuleBasedRateStrategy().calculate(_draft(5000, 1, "JP"))
    assert (result.tax_cents, result.shipping_cents) == (0, 0)


def test_percent_and_fixed_discounts():
    percent = DiscountCodeModel(code="TEN", kind="PERCENT", percent=10, times_used=0)
    fixed = DiscountCodeModel(code="BIG", kind="FIXED", value_cents=9000, times_used=0)
    assert compute_discount(percent, 2599) == 259
    assert compute_discount(fixed, 5000) == 5000


def test_discount_rejections():
    now = datetime.now(timezone.utc)
    with pytest.raises(InvalidDiscount):
        compute_discount(None, 1000)
    with pytest.raises(InvalidDiscount):
        compute_discount(
            DiscountCodeModel(code="SOON", kind="FIXED", value_cents=100, times_used=0, starts_at=now + timedelta(days=1)),
            1000,
        )
    with pytest.raises(InvalidDiscount):
        compute_discount(
            DiscountCodeModel(code="OLD", kind="FIXED", value_cents=100, times_used=0, ends_at=now - timedelta(days=1)),
            1000,
        )
    with pytest.raises(DiscountMinSubtotal) as excinfo:
        compute_discount(
            DiscountCodeModel(code="MIN", kind="FIXED", value_cents=100, times_used=0, min_subtotal_cents=3000),
            1000,
        )
    assert excinfo.value.required_cents == 3000
    with pytest.raises(DiscountExhausted):
        compute_discount(
            DiscountCodeModel(code="USED", kind="FIXED", value_cents=100, times_used=5, usage_limit=5),
            1000,
        )


def test_format_price_cents():
    assert format_price_cents(123456) == "$1,234.56"
    assert format_price_cents(-50, "GBP") == "-£0.50"
    assert format_price_cents(1000, "JPY") == "10.00 JPY"
