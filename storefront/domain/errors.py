from __future__ import annotations

from typing import Any


class StorefrontError(Exception):
    """Base for errors scoped to a single requested operation."""

    code = "storefront_error"
    status_code = 400

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": str(self)}


class InvalidStatus(StorefrontError):
    code = "invalid_status"

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"unknown order status: {value!r}")


class InvalidTransition(StorefrontError):
    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"transition {from_status} -> {to_status} is not allowed")

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "from": self.from_status, "to": self.to_status}


class NotFound(StorefrontError):
    code = "not_found"
    status_code = 404


class OrderNotFound(NotFound):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"order not found: {order_id}")


class StockUnitNotFound(NotFound):
    def __init__(self, size_variant_id: str):
        self.size_variant_id = size_variant_id
        super().__init__(f"stock unit not found: {size_variant_id}")


class InsufficientStock(StorefrontError):
    code = "stock_conflict"
    status_code = 409

    def __init__(self, size_variant_id: str, requested: int, available: int | None = None):
        self.size_variant_id = size_variant_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"insufficient stock for {size_variant_id}: requested={requested} available={available}"
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "stock_errors": [
                {
                    "size_variant_id": self.size_variant_id,
                    "requested": self.requested,
                    "available": self.available,
                }
            ],
        }


class StockConflict(StorefrontError):
    """Raised before any write when cart lines cannot be satisfied."""

    code = "stock_conflict"
    status_code = 409

    def __init__(self, stock_errors: list[dict[str, Any]]):
        self.stock_errors = stock_errors
        super().__init__(f"{len(stock_errors)} line(s) cannot be fulfilled")

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "stock_errors": self.stock_errors}


class TransactionConflict(StorefrontError):
    code = "transaction_conflict"
    status_code = 409


class InvalidDiscount(StorefrontError):
    code = "invalid_discount"


class DiscountMinSubtotal(StorefrontError):
    code = "discount_min_subtotal"

    def __init__(self, required_cents: int):
        self.required_cents = required_cents
        super().__init__(f"discount requires subtotal of at least {required_cents}")

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "required": self.required_cents}


class DiscountExhausted(StorefrontError):
    code = "discount_exhausted"


class EmptyCart(StorefrontError):
    code = "empty_cart"


class InvalidNote(StorefrontError):
    code = "invalid_payload"


class InvalidWebhook(StorefrontError):
    code = "invalid_webhook"
