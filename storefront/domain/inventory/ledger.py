from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.domain.errors import InsufficientStock, StockUnitNotFound
from storefront.persistence.conditional import ConditionalUpdater, get_conditional_updater
from storefront.persistence.models import SizeVariantModel

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Stock reservations against size variants within the caller's transaction.

    Each decrement is one guarded ``UPDATE``; there is no read-then-write, so two
    concurrent reservations for the last unit cannot both succeed. Nothing here
    retries or commits: on failure the caller decides whether to roll back the
    enclosing checkout.
    """

    def __init__(self, session: Session, updater: ConditionalUpdater | None = None):
        self.session = session
        self.updater = updater or get_conditional_updater()

    def try_decrement(self, size_variant_id: str, quantity: int) -> bool:
        if quantity <= 0:
            return True
        affected = self.updater.decrement_if_sufficient(
            self.session,
            SizeVariantModel.__table__,
            key_column="size_variant_id",
            key=size_variant_id,
            amount_column="stock",
            amount=quantity,
        )
        return affected == 1

    def decrement_stock(self, size_variant_id: str, quantity: int) -> None:
        if self.try_decrement(size_variant_id, quantity):
            return

        available = self.available(size_variant_id)
        if available is None:
            raise StockUnitNotFound(size_variant_id)
        logger.warning(
            "stock reservation refused size_variant_id=%s requested=%s available=%s",
            size_variant_id,
            quantity,
            available,
        )
        raise InsufficientStock(size_variant_id, requested=quantity, available=available)

    def available(self, size_variant_id: str) -> int | None:
        stmt = select(SizeVariantModel.stock).where(SizeVariantModel.size_variant_id == size_variant_id)
        return self.session.scalar(stmt)
