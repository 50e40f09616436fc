from storefront.domain.checkout.service import (
    CheckoutLine,
    CheckoutRequest,
    CheckoutResult,
    DestinationModel,
    checkout,
)

__all__ = [
    "CheckoutLine",
    "CheckoutRequest",
    "CheckoutResult",
    "DestinationModel",
    "checkout",
]
