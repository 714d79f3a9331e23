"""
Document store adapter over the async SQLAlchemy session.

Collections are addressed by name (``rides``, ``bookings``...) and documents
by id, so the repositories above never build SQL themselves.  Filters are
``Condition(field, op, value)`` triples combined with AND -- the same
vocabulary a document database exposes.

Every write stamps ``updated_at`` (and ``created_at`` on insert) and records
a change event on the session; ``changefeed.publish_pending_changes``
broadcasts them once the transaction has committed.
"""

from __future__ import annotations

import enum
import operator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .models import BookingModel, NotificationModel, OutboxEventModel, RideModel
from carpool.domain.exceptions import ConcurrencyConflictError, NotFoundError
from carpool.domain.schedule import as_utc, utcnow

RIDES = "rides"
BOOKINGS = "bookings"
NOTIFICATIONS = "notifications"
OUTBOX = "outbox"

COLLECTIONS = {
    RIDES: RideModel,
    BOOKINGS: BookingModel,
    NOTIFICATIONS: NotificationModel,
    OUTBOX: OutboxEventModel,
}

PENDING_CHANGES_KEY = "carpool.pending_changes"


def _normalise(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalise(v) for v in value]
    return value


_COMPARATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _COMPARATORS and self.op not in ("in", "not-in"):
            raise ValueError(f"Unsupported operator: {self.op}")

    def to_sql(self, model):
        column = getattr(model, self.field, None)
        if column is None:
            raise ValueError(f"{model.__tablename__} has no field {self.field!r}")
        if self.op == "in":
            return column.in_(list(self.value))
        if self.op == "not-in":
            return column.not_in(list(self.value))
        if self.value is None and self.op in ("==", "!="):
            return column.is_(None) if self.op == "==" else column.is_not(None)
        return _COMPARATORS[self.op](column, self.value)

    def matches(self, document: dict[str, Any]) -> bool:
        """Evaluate against a plain (JSON-shaped) document."""
        actual = document.get(self.field)
        expected = _normalise(self.value)
        if self.op == "in":
            return actual in expected
        if self.op == "not-in":
            return actual not in expected
        if self.op in ("==", "!="):
            return _COMPARATORS[self.op](actual, expected)
        if actual is None or expected is None:
            return False
        return _COMPARATORS[self.op](actual, expected)


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    id: str
    op: str  # "create" | "update" | "delete"
    data: Optional[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "id": self.id,
            "op": self.op,
            "data": self.data,
        }


def to_document(obj) -> dict[str, Any]:
    """Plain JSON-shaped dict of an ORM row."""
    return {
        column.key: _normalise(getattr(obj, column.key))
        for column in obj.__mapper__.column_attrs
    }


def _model_for(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


class DocumentStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── reads ─────────────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str, *, for_update: bool = False):
        """Point read.  ``for_update`` locks the row and refreshes it."""
        model = _model_for(collection)
        if not for_update:
            return await self.session.get(model, doc_id)
        result = await self.session.execute(
            select(model)
            .where(model.id == doc_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def query(
        self,
        collection: str,
        conditions: Iterable[Condition] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        *,
        for_update: bool = False,
        skip_locked: bool = False,
    ) -> list:
        model = _model_for(collection)
        query = select(model)
        for condition in conditions:
            query = query.where(condition.to_sql(model))
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())
        if limit:
            query = query.limit(limit)
        if for_update:
            query = query.with_for_update(skip_locked=skip_locked).execution_options(
                populate_existing=True
            )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # ── writes ────────────────────────────────────────────────────────

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: Optional[str] = None
    ):
        model = _model_for(collection)
        now = utcnow()
        obj = model(**data)
        if doc_id:
            obj.id = doc_id
        obj.created_at = now
        obj.updated_at = now
        self.session.add(obj)
        await self._flush()
        self._record(ChangeEvent(collection, obj.id, "create", to_document(obj)))
        return obj

    async def update(self, collection: str, doc_id: str, partial: dict[str, Any]):
        """Patch fields on an existing document.  Always stamps ``updated_at``."""
        model = _model_for(collection)
        obj = await self.session.get(model, doc_id)
        if obj is None:
            raise NotFoundError(f"{collection}/{doc_id} not found")
        for key, value in partial.items():
            if key in ("id", "created_at", "version") or not hasattr(model, key):
                raise ValueError(f"Field {key!r} cannot be updated on {collection}")
            setattr(obj, key, value)
        obj.updated_at = utcnow()
        await self._flush()
        self._record(ChangeEvent(collection, obj.id, "update", to_document(obj)))
        return obj

    async def delete(self, collection: str, doc_id: str) -> None:
        model = _model_for(collection)
        obj = await self.session.get(model, doc_id)
        if obj is None:
            return
        await self.session.delete(obj)
        await self._flush()
        self._record(ChangeEvent(collection, doc_id, "delete", None))

    # ── internals ─────────────────────────────────────────────────────

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError(
                "Document was modified by a concurrent transaction"
            ) from exc

    def _record(self, event: ChangeEvent) -> None:
        self.session.info.setdefault(PENDING_CHANGES_KEY, []).append(event)


def pending_changes(session: AsyncSession) -> Sequence[ChangeEvent]:
    return tuple(session.info.get(PENDING_CHANGES_KEY, ()))


def discard_pending_changes(session: AsyncSession) -> None:
    session.info.pop(PENDING_CHANGES_KEY, None)
