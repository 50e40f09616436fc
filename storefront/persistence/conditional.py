from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import Table, or_, update
from sqlalchemy.orm import Session


class ConditionalUpdater(Protocol):
    """Single-statement guarded writes that report how many rows they touched."""

    def decrement_if_sufficient(
        self,
        session: Session,
        table: Table,
        key_column: str,
        key: Any,
        amount_column: str,
        amount: int,
    ) -> int: ...

    def compare_and_set(
        self,
        session: Session,
        table: Table,
        key_column: str,
        key: Any,
        column: str,
        expected: Any,
        new: Any,
        extra_values: dict[str, Any] | None = None,
    ) -> int: ...

    def increment_within_limit(
        self,
        session: Session,
        table: Table,
        key_column: str,
        key: Any,
        counter_column: str,
        limit_column: str,
    ) -> int: ...


class SqlAlchemyConditionalUpdater:
    """Renders guarded writes through SQLAlchemy Core.

    The compiled ``UPDATE ... WHERE`` handles parameter style per dialect and the
    DBAPI cursor's ``rowcount`` supplies the affected-row count, so the same code
    runs against SQLite and PostgreSQL.
    """

    def decrement_if_sufficient(
        self,
        session: Session,
        table: Table,
        key_column: str,
        key: Any,
        amount_column: str,
        amount: int,
    ) -> int:
        column = table.c[amount_column]
        stmt = (
            update(table)
            .where(table.c[key_column] == key)
            .where(column >= amount)
            .values({amount_column: column - amount})
        )
        return session.execute(stmt).rowcount

    def compare_and_set(
        self,
        session: Session,
        table: Table,
        key_column: str,
        key: Any,
        column: str,
        expected: Any,
        new: Any,
        extra_values: dict[str, Any] | None = None,
    ) -> int:
        values = {column: new, **(extra_values or {})}
        stmt = (
            update(table)
            .where(table.c[key_column] == key)
            .where(table.c[column] == expected)
            .values(values)
        )
        return session.execute(stmt).rowcount

    def increment_within_limit(
        self,
        session: Session,
        table: Table,
        key_column: str,
        key: Any,
        counter_column: str,
        limit_column: str,
    ) -> int:
        counter = table.c[counter_column]
        limit = table.c[limit_column]
        stmt = (
            update(table)
            .where(table.c[key_column] == key)
            .where(or_(limit.is_(None), counter < limit))
            .values({counter_column: counter + 1})
        )
        return session.execute(stmt).rowcount


_default_updater: ConditionalUpdater = SqlAlchemyConditionalUpdater()


def get_conditional_updater() -> ConditionalUpdater:
    return _default_updater
