"""Status state machines, completion stamping and field updates for every kind."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

import structlog
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import audit, datastore
from .actors import Actor
from .errors import LifecycleError, NotFound, TerminalMismatch, TransitionRefused, UnsupportedOperation
from .integrity import check_references
from .kinds import EntityKind, is_terminal, require_capability, spec_for, validate_status
from .models import model_for
from .schemas import UPDATE_SCHEMAS, EntityUpdate

logger = structlog.get_logger(__name__)

# fields only the lifecycle engine itself may write
_PROTECTED_FIELDS = frozenset({"id", "status", "pinned", "created_at", "updated_at"})

def initial_status(kind: EntityKind) -> str:
    spec = spec_for(kind)
    if not spec.has_status:
        raise UnsupportedOperation(f"{kind.value} has no status lifecycle", kind=kind)
    return spec.initial_status


def transition(
    db: Session,
    kind: EntityKind,
    entity_id: str,
    new_status: str,
    reaches_terminal: bool | None = None,
    actor: Actor | str | None = None,
    *,
    commit: bool = True,
):
    """Move an entity to ``new_status``.

    Whether the status is terminal comes from the kind table; a caller
    assertion that disagrees is rejected. The kind's ``allowed_from`` and
    ``pin_guarded`` rules are part of the UPDATE's WHERE clause, so a refused
    move writes nothing. Completion and start stamps are written with
    COALESCE so concurrent transitions keep the first value.

    With ``commit=False`` the update joins the caller's open transaction and
    is not audited; the caller commits and audits.
    """

    # purpose: single state-machine path replacing per-entity status setters
    # inputs: session, kind, entity id, target status, optional terminal assertion and actor
    # outputs: refreshed ORM row after the update commits
    # status: active
    spec = spec_for(kind)
    validate_status(kind, new_status)
    terminal = is_terminal(kind, new_status)
    if reaches_terminal is not None and reaches_terminal != terminal:
        raise TerminalMismatch(
            f"{new_status!r} {'is' if terminal else 'is not'} terminal for {kind.value}",
            kind=kind,
            entity_id=entity_id,
        )

    row = datastore.get(db, kind, entity_id)
    previous = row.status if row is not None else None
    model = model_for(kind)
    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {"status": new_status, "updated_at": now}
    stamp = spec.terminal.get(new_status)
    if stamp:
        values[stamp] = func.coalesce(getattr(model, stamp), now)
    if spec.started and spec.started[0] == new_status:
        started_field = spec.started[1]
        values[started_field] = func.coalesce(getattr(model, started_field), now)

    filters: dict[str, Any] = {"id": entity_id}
    allowed = spec.allowed_from.get(new_status)
    if allowed is not None:
        filters["status"] = sorted(allowed)
    if new_status in spec.pin_guarded:
        filters["pinned"] = False

    if datastore.update_where(db, kind, values, commit=commit, **filters) == 0:
        _refuse(db, kind, entity_id, new_status, allowed)

    db.refresh(row)
    logger.info(
        "status_transitioned",
        kind=kind.value,
        entity_id=entity_id,
        old_status=previous,
        new_status=new_status,
        terminal=terminal,
    )
    if commit:
        audit.log(db, actor, kind, entity_id, "update", "status", previous, new_status)
    return row


def _refuse(db: Session, kind: EntityKind, entity_id: str, new_status: str, allowed):
    """Explain why a guarded update matched no row; discards the open transaction."""

    db.rollback()
    row = datastore.get(db, kind, entity_id)
    if row is None:
        raise NotFound(f"{kind.value} {entity_id} not found", kind=kind, entity_id=entity_id)
    if new_status in spec_for(kind).pin_guarded and row.pinned:
        raise TransitionRefused(
            f"cannot move pinned {kind.value} {entity_id} to {new_status}; unpin it first",
            kind=kind,
            entity_id=entity_id,
        )
    raise TransitionRefused(
        f"{kind.value} can only become {new_status} from {', '.join(sorted(allowed or ()))} "
        f"(current status: {row.status})",
        kind=kind,
        entity_id=entity_id,
    )


def _set_pinned(db: Session, kind: EntityKind, entity_id: str, pinned: bool, actor):
    require_capability(kind, "pinnable")
    row = datastore.select_one(db, kind, entity_id)
    if row.pinned == pinned:
        return row
    datastore.update_where(
        db, kind, {"pinned": pinned, "updated_at": datetime.now(timezone.utc)}, id=entity_id
    )
    db.refresh(row)
    audit.log(db, actor, kind, entity_id, "update", "pinned", not pinned, pinned)
    return row


def pin(db: Session, kind: EntityKind, entity_id: str, actor: Actor | str | None = None):
    return _set_pinned(db, kind, entity_id, True, actor)


def unpin(db: Session, kind: EntityKind, entity_id: str, actor: Actor | str | None = None):
    return _set_pinned(db, kind, entity_id, False, actor)


def update_fields(
    db: Session,
    kind: EntityKind,
    entity_id: str,
    changes: EntityUpdate | Mapping[str, Any],
    actor: Actor | str | None = None,
):
    """Apply a partial update; omitted fields stay, explicit ``None`` clears."""

    spec = spec_for(kind)
    if isinstance(changes, BaseModel):
        payload = changes.model_dump(exclude_unset=True)
    else:
        payload = dict(changes)

    blocked = sorted(
        name for name in payload if name in _PROTECTED_FIELDS or name in spec.exclusive_containers
    )
    if blocked:
        raise LifecycleError(
            f"{', '.join(blocked)} cannot be changed through update_fields", kind=kind, entity_id=entity_id
        )

    if not isinstance(changes, BaseModel):
        schema = UPDATE_SCHEMAS.get(kind)
        if schema is None:
            raise UnsupportedOperation(f"{kind.value} has no editable fields", kind=kind)
        payload = schema(**payload).model_dump(exclude_unset=True)

    row = datastore.select_one(db, kind, entity_id)
    check_references(db, kind, payload, fields=set(payload))

    changed = {name: (getattr(row, name), value) for name, value in payload.items() if getattr(row, name) != value}
    if not changed:
        return row
    values = {name: new for name, (_, new) in changed.items()}
    values["updated_at"] = datetime.now(timezone.utc)
    datastore.update_where(db, kind, values, id=entity_id)
    db.refresh(row)
    for name, (old, new) in changed.items():
        audit.log(db, actor, kind, entity_id, "update", name, old, new)
    return row
