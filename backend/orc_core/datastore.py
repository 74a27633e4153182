"""Thin datastore collaborator addressed by entity kind."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from .errors import NotFound, StorageUnavailable
from .kinds import EntityKind
from .models import model_for

# purpose: keep every core layer on one small surface of insert/select/update/delete/count
# inputs: SQLAlchemy session, EntityKind, column filters
# outputs: ORM rows or affected-row counts
# status: active


@contextmanager
def storage_guard(db: Session, kind: EntityKind | None = None):
    """Translate transport failures into StorageUnavailable after rolling back."""

    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        db.rollback()
        raise StorageUnavailable(f"datastore unavailable: {exc.orig}", kind=kind) from exc


def _filtered(kind: EntityKind, statement, filters: dict[str, Any]):
    model = model_for(kind)
    for name, value in filters.items():
        column = getattr(model, name)
        if isinstance(value, (list, tuple, set, frozenset)):
            statement = statement.where(column.in_(list(value)))
        elif value is None:
            statement = statement.where(column.is_(None))
        else:
            statement = statement.where(column == value)
    return statement


def insert(db: Session, kind: EntityKind, values: dict[str, Any], *, commit: bool = True):
    model = model_for(kind)
    row = model(**values)
    with storage_guard(db, kind):
        db.add(row)
        if commit:
            db.commit()
            db.refresh(row)
        else:
            db.flush()
    return row


def get(db: Session, kind: EntityKind, entity_id: str):
    with storage_guard(db, kind):
        return db.get(model_for(kind), entity_id)


def select_one(db: Session, kind: EntityKind, entity_id: str):
    row = get(db, kind, entity_id)
    if row is None:
        raise NotFound(f"{kind.value} {entity_id} not found", kind=kind, entity_id=entity_id)
    return row


def select_many(
    db: Session,
    kind: EntityKind,
    order_by: Iterable[str] = ("created_at", "id"),
    limit: int | None = None,
    **filters: Any,
) -> list:
    model = model_for(kind)
    statement = _filtered(kind, select(model), filters)
    columns = [getattr(model, name) for name in order_by if hasattr(model, name)]
    if columns:
        statement = statement.order_by(*columns)
    if limit is not None:
        statement = statement.limit(limit)
    with storage_guard(db, kind):
        return list(db.scalars(statement))


def update_where(db: Session, kind: EntityKind, values: dict[str, Any], *, commit: bool = True, **filters: Any) -> int:
    statement = _filtered(kind, update(model_for(kind)), filters).values(**values)
    with storage_guard(db, kind):
        result = db.execute(statement.execution_options(synchronize_session=False))
        if commit:
            db.commit()
    return result.rowcount


def delete_where(db: Session, kind: EntityKind, *, commit: bool = True, **filters: Any) -> int:
    statement = _filtered(kind, delete(model_for(kind)), filters)
    with storage_guard(db, kind):
        result = db.execute(statement.execution_options(synchronize_session=False))
        if commit:
            db.commit()
    return result.rowcount


def count(db: Session, kind: EntityKind, **filters: Any) -> int:
    model = model_for(kind)
    statement = _filtered(kind, select(func.count()).select_from(model), filters)
    with storage_guard(db, kind):
        return db.scalar(statement) or 0
