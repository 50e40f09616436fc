from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import storefront.persistence.pg as pg
from storefront.domain.errors import TransactionConflict
from storefront.persistence.models import OrderModel


def _locked_commit(self):
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def test_commit_failure_is_a_transaction_conflict(make_order, monkeypatch):
    order_id = make_order()
    monkeypatch.setattr(Session, "commit", _locked_commit)

    with pytest.raises(TransactionConflict) as excinfo:
        with pg.session_scope() as s:
            s.get(OrderModel, order_id).status = "CANCELLED"
    assert excinfo.value.status_code == 409
    monkeypatch.undo()

    with pg.session_scope() as s:
        assert s.get(OrderModel, order_id).status == "PENDING"


def test_run_in_transaction_retries_commit_failures(make_order, monkeypatch):
    order_id = make_order()
    real_commit = Session.commit
    failures = iter([True, False])

    def flaky_commit(self):
        if next(failures):
            _locked_commit(self)
        real_commit(self)

    monkeypatch.setattr(Session, "commit", flaky_commit)

    def cancel(session):
        session.get(OrderModel, order_id).status = "CANCELLED"

    pg.run_in_transaction(cancel, attempts=2)
    monkeypatch.undo()

    with pg.session_scope() as s:
        assert s.get(OrderModel, order_id).status == "CANCELLED"
