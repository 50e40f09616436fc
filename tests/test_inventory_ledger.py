from __future__ import annotations

import threading

import pytest

import storefront.persistence.pg as pg
from storefront.domain.errors import InsufficientStock, StockUnitNotFound
from storefront.domain.inventory.ledger import InventoryLedger
from storefront.persistence.models import SizeVariantModel


def _stock(size_variant_id: str) -> int:
    with pg.session_scope() as s:
        return s.get(SizeVariantModel, size_variant_id).stock


def test_decrement_reduces_stock(make_product):
    variant_id = make_product(sizes={"M": 5})["sizes"]["M"]
    with pg.session_scope() as s:
        InventoryLedger(s).decrement_stock(variant_id, 2)
    assert _stock(variant_id) == 3


@pytest.mark.parametrize("quantity", [0, -3])
def test_non_positive_quantity_is_a_no_op(make_product, quantity):
    variant_id = make_product(sizes={"M": 1})["sizes"]["M"]

    class NoWrites:
        def decrement_if_sufficient(self, *args, **kwargs):  # pragma: no cover - must not be called
            raise AssertionError("no write expected")

    with pg.session_scope() as s:
        assert InventoryLedger(s, updater=NoWrites()).try_decrement(variant_id, quantity) is True
    assert _stock(variant_id) == 1


def test_insufficient_stock_leaves_stock_untouched(make_product):
    variant_id = make_product(sizes={"M": 1})["sizes"]["M"]
    with pytest.raises(InsufficientStock) as excinfo:
        with pg.session_scope() as s:
            InventoryLedger(s).decrement_stock(variant_id, 2)
    assert excinfo.value.available == 1
    assert _stock(variant_id) == 1


def test_missing_stock_unit():
    with pytest.raises(StockUnitNotFound):
        with pg.session_scope() as s:
            InventoryLedger(s).decrement_stock("missing", 1)


def test_rollback_restores_sibling_reservations(make_product):
    sizes = make_product(sizes={"S": 3, "M": 0})["sizes"]
    with pytest.raises(InsufficientStock):
        with pg.session_scope() as s:
            ledger = InventoryLedger(s)
            ledger.decrement_stock(sizes["S"], 2)
            ledger.decrement_stock(sizes["M"], 1)
    assert _stock(sizes["S"]) == 3


def test_concurrent_last_unit_is_sold_once(make_product):
    variant_id = make_product(sizes={"M": 1})["sizes"]["M"]
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def reserve(session):
        InventoryLedger(session).decrement_stock(variant_id, 1)

    def worker():
        barrier.wait()
        try:
            pg.run_in_transaction(reserve, attempts=5)
            result = "ok"
        except InsufficientStock:
            result = "insufficient"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes) == ["insufficient", "ok"]
    assert _stock(variant_id) == 0
