from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.persistence.models import DiscountCodeModel, ProductModel, SizeVariantModel

DEMO_PRODUCTS: list[dict[str, Any]] = [
    {
        "sku": "TEE-CLASSIC",
        "name": "Classic Tee",
        "price_cents": 2500,
        "sizes": {"S": 10, "M": 25, "L": 20, "XL": 5},
    },
    {
        "sku": "HOODIE-ZIP",
        "name": "Zip Hoodie",
        "price_cents": 6400,
        "sizes": {"M": 8, "L": 6},
    },
    {
        "sku": "CAP-LOGO",
        "name": "Logo Cap",
        "price_cents": 1800,
        "sizes": {},
    },
]

DEMO_DISCOUNTS: list[dict[str, Any]] = [
    {"code": "WELCOME10", "kind": "PERCENT", "percent": 10},
    {"code": "FIVEOFF", "kind": "FIXED", "value_cents": 500, "min_subtotal_cents": 3000},
]


def seed_demo_catalog(session: Session) -> dict[str, Any]:
    """Insert the demo catalog once; later calls report what already exists."""
    created = 0
    products: dict[str, dict[str, Any]] = {}
    for item in DEMO_PRODUCTS:
        product = session.scalar(select(ProductModel).where(ProductModel.sku == item["sku"]))
        if product is None:
            product = ProductModel(sku=item["sku"], name=item["name"], price_cents=item["price_cents"])
            product.sizes = [SizeVariantModel(label=label, stock=stock) for label, stock in item["sizes"].items()]
            session.add(product)
            created += 1
        session.flush()
        products[product.sku] = {
            "product_id": product.product_id,
            "sizes": {s.label: {"size_variant_id": s.size_variant_id, "stock": s.stock} for s in product.sizes},
        }

    for item in DEMO_DISCOUNTS:
        if session.scalar(select(DiscountCodeModel).where(DiscountCodeModel.code == item["code"])) is None:
            session.add(DiscountCodeModel(**item))
    session.flush()
    return {"created_products": created, "products": products}
