"""Relationship integrity: parent existence, exclusive containment, 1:1 ownership."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import audit, datastore
from .actors import Actor
from .errors import (
    AllocationConflict,
    DuplicateRelationship,
    InvalidContainment,
    LifecycleError,
    ParentNotFound,
    UnsupportedOperation,
)
from .identifiers import max_attempts, next_id, observe_id
from .kinds import EntityKind, kind_for_identifier, require_capability, spec_for, validate_status
from .models import model_for

logger = structlog.get_logger(__name__)

# purpose: one create/assign/move/delete path shared by every entity kind
# inputs: SQLAlchemy session, EntityKind, field payloads, optional Actor for auditing
# outputs: persisted ORM rows; integrity violations raised before anything is written
# status: active
# depends_on: orc_core.identifiers, orc_core.audit


def assert_parent_exists(db: Session, parent_kind: EntityKind, parent_id: str) -> bool:
    return datastore.count(db, parent_kind, id=parent_id) > 0


def assert_unique_1to1(
    db: Session, owner_kind: EntityKind, owner_id: str, dependent_kind: EntityKind
) -> bool:
    """Return True when ``owner_id`` already has its ``dependent_kind``."""

    spec = spec_for(dependent_kind)
    ref = spec.reference(spec.one_to_one) if spec.one_to_one else None
    if ref is None or ref.kind is not owner_kind:
        raise UnsupportedOperation(
            f"{dependent_kind.value} is not 1:1 with {owner_kind.value}", kind=dependent_kind
        )
    return datastore.count(db, dependent_kind, **{ref.field: owner_id}) > 0


def _check_fields(kind: EntityKind, values: Mapping[str, Any]) -> None:
    columns = set(model_for(kind).__table__.columns.keys())
    unknown = sorted(set(values) - columns)
    if unknown:
        raise LifecycleError(f"unknown {kind.value} fields: {', '.join(unknown)}", kind=kind)
    if "id" in values:
        raise LifecycleError("identifiers are allocated, pass entity_id to supply one", kind=kind)


def _check_containment(kind: EntityKind, values: Mapping[str, Any]) -> None:
    spec = spec_for(kind)
    occupied = [name for name in spec.exclusive_containers if values.get(name)]
    if len(occupied) > 1:
        raise InvalidContainment(
            f"{kind.value} may belong to only one of {', '.join(spec.exclusive_containers)}; "
            f"got {', '.join(occupied)}",
            kind=kind,
        )


def check_references(db: Session, kind: EntityKind, values: Mapping[str, Any], fields=None) -> None:
    for ref in spec_for(kind).references:
        if fields is not None and ref.field not in fields:
            continue
        value = values.get(ref.field)
        if value is None:
            if ref.required:
                raise ParentNotFound(f"{kind.value} requires {ref.field}", kind=kind)
            continue
        if not assert_parent_exists(db, ref.kind, value):
            raise ParentNotFound(
                f"{ref.kind.value} {value} not found for {kind.value}.{ref.field}",
                kind=ref.kind,
                entity_id=value,
            )


def _prepare(db: Session, kind: EntityKind, fields: Mapping[str, Any]):
    spec = spec_for(kind)
    values = dict(fields)
    _check_fields(kind, values)
    if spec.has_status:
        values.setdefault("status", spec.initial_status)
        validate_status(kind, values["status"])
    _check_containment(kind, values)
    check_references(db, kind, values)

    owner = spec.reference(spec.one_to_one) if spec.one_to_one else None
    if owner is not None and assert_unique_1to1(db, owner.kind, values[owner.field], kind):
        raise DuplicateRelationship(
            f"{owner.kind.value} {values[owner.field]} already has a {kind.value}",
            kind=kind,
            entity_id=values[owner.field],
        )
    return values, owner


def stage(db: Session, kind: EntityKind, fields: Mapping[str, Any], entity_id: str):
    """Validate a new entity and flush it into the session's open transaction.

    Nothing is committed or audited; the caller commits the whole unit of
    work and audits afterwards. ``entity_id`` must come from ``next_id``
    before the transaction's first write, since allocation runs on its own
    connection and would wait on the writer lock this transaction holds.
    Any failure rolls the whole transaction back.
    """

    try:
        values, _ = _prepare(db, kind, fields)
        values["id"] = entity_id
        row = datastore.insert(db, kind, values, commit=False)
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateRelationship(
            f"{kind.value} {entity_id} violates a uniqueness constraint: {exc.orig}",
            kind=kind,
            entity_id=entity_id,
        ) from exc
    except LifecycleError:
        db.rollback()
        raise
    logger.info("entity_staged", kind=kind.value, entity_id=entity_id)
    return row


def create(
    db: Session,
    kind: EntityKind,
    fields: Mapping[str, Any],
    entity_id: str | None = None,
    actor: Actor | str | None = None,
):
    """Validate references, allocate an identifier and persist a new entity.

    Every check runs before the insert so a failed create leaves no row
    behind. A unique-constraint violation on the 1:1 owner column means a
    concurrent creator won the race and is reported as DuplicateRelationship;
    a primary-key collision reallocates and retries a bounded number of times.
    Any other unique violation (a tag name, a cycle number) is a
    DuplicateRelationship as well and does not consume further identifiers.
    """

    spec = spec_for(kind)
    values, owner = _prepare(db, kind, fields)

    scope = values.get(spec.scope_field) if spec.scope_field else None
    if entity_id is not None:
        observe_id(db, kind, entity_id, scope)

    attempts = 1 if entity_id is not None else max_attempts()
    for attempt in range(1, attempts + 1):
        values["id"] = entity_id or next_id(db, kind, scope)
        try:
            row = datastore.insert(db, kind, values)
        except IntegrityError as exc:
            db.rollback()
            if owner is not None and assert_unique_1to1(db, owner.kind, values[owner.field], kind):
                raise DuplicateRelationship(
                    f"{owner.kind.value} {values[owner.field]} already has a {kind.value}",
                    kind=kind,
                    entity_id=values[owner.field],
                ) from exc
            if entity_id is not None or datastore.count(db, kind, id=values["id"]) == 0:
                raise DuplicateRelationship(
                    f"{kind.value} violates a uniqueness constraint: {exc.orig}",
                    kind=kind,
                    entity_id=values["id"],
                ) from exc
            logger.info("id_allocation_retry", kind=kind.value, entity_id=values["id"], attempt=attempt)
            continue
        break
    else:
        raise AllocationConflict(
            f"could not insert {kind.value} after {attempts} attempts",
            kind=kind,
            entity_id=values.get("id"),
        )

    logger.info("entity_created", kind=kind.value, entity_id=row.id)
    audit.log(db, actor, kind, row.id, "create")
    return row


def assign(
    db: Session,
    kind: EntityKind,
    entity_id: str,
    unit_id: str | None,
    actor: Actor | str | None = None,
):
    """Point an entity at an execution unit; re-assigning the same unit is a no-op."""

    require_capability(kind, "assignable")
    row = datastore.select_one(db, kind, entity_id)
    if unit_id is not None and not assert_parent_exists(db, EntityKind.WORKBENCH, unit_id):
        raise ParentNotFound(
            f"workbench {unit_id} not found", kind=EntityKind.WORKBENCH, entity_id=unit_id
        )
    previous = row.assigned_workbench_id
    if previous == unit_id:
        return row
    datastore.update_where(
        db,
        kind,
        {"assigned_workbench_id": unit_id, "updated_at": datetime.now(timezone.utc)},
        id=entity_id,
    )
    db.refresh(row)
    audit.log(db, actor, kind, entity_id, "update", "assigned_workbench_id", previous, unit_id)
    return row


def assign_by_parent(
    db: Session,
    child_kind: EntityKind,
    parent_id: str,
    unit_id: str | None,
    actor: Actor | str | None = None,
) -> int:
    """Propagate an assignment to every child contained by ``parent_id``."""

    # purpose: explicit bulk propagation; assigning a container never cascades implicitly
    # inputs: child kind, container identifier (kind inferred from its prefix), unit id
    # outputs: number of children whose container matched
    # status: active
    spec = require_capability(child_kind, "assignable")
    parent_kind = kind_for_identifier(parent_id)
    refs = spec.parents_of_kind(parent_kind)
    if not refs:
        raise UnsupportedOperation(
            f"{child_kind.value} is not contained by {parent_kind.value}", kind=child_kind
        )
    field = refs[0].field
    if not assert_parent_exists(db, parent_kind, parent_id):
        raise ParentNotFound(f"{parent_kind.value} {parent_id} not found", kind=parent_kind, entity_id=parent_id)
    if unit_id is not None and not assert_parent_exists(db, EntityKind.WORKBENCH, unit_id):
        raise ParentNotFound(f"workbench {unit_id} not found", kind=EntityKind.WORKBENCH, entity_id=unit_id)

    children = datastore.select_many(db, child_kind, **{field: parent_id})
    previous = {child.id: child.assigned_workbench_id for child in children}
    updated = datastore.update_where(
        db,
        child_kind,
        {"assigned_workbench_id": unit_id, "updated_at": datetime.now(timezone.utc)},
        **{field: parent_id},
    )
    for child_id, old in previous.items():
        if old != unit_id:
            audit.log(db, actor, child_kind, child_id, "update", "assigned_workbench_id", old, unit_id)
    logger.info(
        "assignment_propagated",
        kind=child_kind.value,
        parent_id=parent_id,
        unit_id=unit_id,
        updated=updated,
    )
    return updated


def move(
    db: Session,
    kind: EntityKind,
    entity_id: str,
    container_field: str,
    container_id: str,
    actor: Actor | str | None = None,
):
    """Re-home an entity into a different exclusive container, clearing the others."""

    spec = spec_for(kind)
    if container_field not in spec.exclusive_containers:
        raise InvalidContainment(
            f"{container_field} is not an exclusive container of {kind.value}", kind=kind
        )
    row = datastore.select_one(db, kind, entity_id)
    check_references(db, kind, {container_field: container_id}, fields={container_field})

    previous = getattr(row, container_field)
    values: dict[str, Any] = {name: None for name in spec.exclusive_containers}
    values[container_field] = container_id
    values["updated_at"] = datetime.now(timezone.utc)
    datastore.update_where(db, kind, values, id=entity_id)
    db.refresh(row)
    audit.log(db, actor, kind, entity_id, "update", container_field, previous, container_id)
    return row


def delete(db: Session, kind: EntityKind, entity_id: str, actor: Actor | str | None = None) -> None:
    """Administrative delete. Children are neither removed nor unlinked."""

    datastore.select_one(db, kind, entity_id)
    datastore.delete_where(db, kind, id=entity_id)
    logger.info("entity_deleted", kind=kind.value, entity_id=entity_id)
    audit.log(db, actor, kind, entity_id, "delete")
