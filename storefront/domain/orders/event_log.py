from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.security import Actor
from storefront.domain.errors import InvalidNote, OrderNotFound
from storefront.persistence.models import OrderEventModel, OrderModel

MAX_MESSAGE_LENGTH = 500


class OrderEventKind(str, Enum):
    STATUS_CHANGE = "STATUS_CHANGE"
    NOTE = "NOTE"


class StatusChangeMeta(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_status: str = Field(alias="from")
    to_status: str = Field(alias="to")


class NoteMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    author_id: str | None = None


META_MODELS: dict[OrderEventKind, type[BaseModel]] = {
    OrderEventKind.STATUS_CHANGE: StatusChangeMeta,
    OrderEventKind.NOTE: NoteMeta,
}


@dataclass(frozen=True)
class OrderEventView:
    event_id: str
    order_id: str
    kind: OrderEventKind
    message: str
    created_at: datetime
    meta: Mapping[str, Any] = field(default_factory=dict)
    actor_type: str | None = None
    actor_id: str | None = None

    @classmethod
    def from_row(cls, row: OrderEventModel) -> "OrderEventView":
        return cls(
            event_id=row.event_id,
            order_id=row.order_id,
            kind=OrderEventKind(row.kind),
            message=row.message,
            created_at=row.created_at,
            meta=MappingProxyType(dict(row.meta or {})),
            actor_type=row.actor_type,
            actor_id=row.actor_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "message": self.message,
            "meta": dict(self.meta),
            "actor": {"type": self.actor_type, "id": self.actor_id} if self.actor_type else None,
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
        }


def _validate_meta(kind: OrderEventKind, meta: Mapping[str, Any] | None) -> dict[str, Any]:
    model = META_MODELS[kind]
    return model.model_validate(dict(meta or {})).model_dump(by_alias=True, exclude_none=True)


def truncate_message(message: str) -> str:
    return message.strip()[:MAX_MESSAGE_LENGTH]


class OrderEventLog:
    """Append-only audit trail per order. Rows are never updated or deleted."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        order_id: str,
        kind: OrderEventKind | str,
        message: str,
        meta: Mapping[str, Any] | None = None,
        actor: Actor | None = None,
    ) -> OrderEventView:
        kind = OrderEventKind(kind)
        if self.session.get(OrderModel, order_id) is None:
            raise OrderNotFound(order_id)

        row = OrderEventModel(
            order_id=order_id,
            kind=kind.value,
            message=truncate_message(message),
            meta=_validate_meta(kind, meta),
            actor_type=actor.type if actor else None,
            actor_id=actor.id if actor else None,
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(row)
        self.session.flush()
        return OrderEventView.from_row(row)

    def timeline(self, order_id: str) -> tuple[OrderEventView, ...]:
        # Autoflush is off; pending appends from this session must be visible.
        # seq_id is assigned by the database at insert, so it is the append order.
        self.session.flush()
        stmt = (
            select(OrderEventModel)
            .where(OrderEventModel.order_id == order_id)
            .order_by(OrderEventModel.seq_id.asc())
        )
        return tuple(OrderEventView.from_row(row) for row in self.session.scalars(stmt).all())


def add_note(session: Session, order_id: str, message: str, actor: Actor) -> OrderEventView:
    if not isinstance(message, str) or not message.strip():
        raise InvalidNote("note message must be a non-empty string")
    return OrderEventLog(session).append(
        order_id=order_id,
        kind=OrderEventKind.NOTE,
        message=message,
        meta={"author_id": actor.id},
        actor=actor,
    )
