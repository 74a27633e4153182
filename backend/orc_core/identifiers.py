"""Collision-free, human-readable identifier allocation."""

from __future__ import annotations

import os

import structlog
from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from .errors import AllocationConflict, AllocationError, LifecycleError
from .kinds import EntityKind, spec_for
from .models import IdCounter, model_for

logger = structlog.get_logger(__name__)

# purpose: hand out PREFIX-nnn identifiers that stay unique under concurrent writers
# inputs: SQLAlchemy session (its engine is used for short dedicated transactions)
# outputs: formatted identifiers and raw scoped sequence numbers
# status: active
# depends_on: orc_core.models.IdCounter


def max_attempts() -> int:
    return max(1, int(os.getenv("ORC_ID_ALLOCATION_ATTEMPTS", "5")))


def format_id(kind: EntityKind, sequence: int, scope: str | None = None) -> str:
    spec = spec_for(kind)
    number = str(sequence).zfill(spec.width)
    if spec.scope_field:
        if not scope:
            raise LifecycleError(f"{kind.value} identifiers require a {spec.scope_field}", kind=kind)
        return f"{spec.prefix}-{scope}-{number}"
    return f"{spec.prefix}-{number}"


def parse_sequence(kind: EntityKind, identifier: str) -> int:
    """Return the numeric sequence encoded in an identifier of ``kind``."""

    spec = spec_for(kind)
    head, _, tail = identifier.rpartition("-")
    if spec.scope_field:
        shaped = head.startswith(spec.prefix + "-")
    else:
        shaped = head == spec.prefix
    if not shaped or not tail.isdigit():
        raise LifecycleError(
            f"{identifier!r} is not a {kind.value} identifier", kind=kind, entity_id=identifier
        )
    return int(tail)


def _existing_max(conn, kind: EntityKind, scope: str | None) -> int:
    spec = spec_for(kind)
    model = model_for(kind)
    query = select(model.id)
    if spec.scope_field:
        query = query.where(getattr(model, spec.scope_field) == scope)
    highest = 0
    for (identifier,) in conn.execute(query):
        try:
            highest = max(highest, parse_sequence(kind, identifier))
        except LifecycleError:
            # rows with foreign identifier shapes do not take part in numbering
            continue
    return highest


def _counter(counter: str, scope: str | None):
    return (IdCounter.kind == counter) & (IdCounter.scope == (scope or ""))


def _allocate(db: Session, counter: str, scope: str | None, seed) -> int:
    engine = db.get_bind()
    attempts = max_attempts()
    for attempt in range(1, attempts + 1):
        try:
            with engine.begin() as conn:
                value = conn.execute(
                    update(IdCounter)
                    .where(_counter(counter, scope))
                    .values(value=IdCounter.value + 1)
                    .returning(IdCounter.value)
                ).scalar_one_or_none()
                if value is None:
                    value = seed(conn) + 1
                    conn.execute(
                        insert(IdCounter).values(kind=counter, scope=scope or "", value=value)
                    )
            return value
        except IntegrityError:
            logger.info("id_allocation_retry", counter=counter, scope=scope, attempt=attempt)
        except (OperationalError, InterfaceError) as exc:
            raise AllocationError(f"identifier allocator unavailable: {exc}") from exc
    raise AllocationConflict(
        f"could not allocate a {counter} identifier after {attempts} attempts"
    )


def next_id(db: Session, kind: EntityKind, scope: str | None = None) -> str:
    """Allocate the next identifier for ``kind``.

    The counter increment runs in its own short transaction so the returned
    value is reserved immediately; a caller whose later insert fails leaves a
    gap rather than a reusable number.
    """

    spec = spec_for(kind)
    if spec.scope_field and not scope:
        raise LifecycleError(f"{kind.value} identifiers require a {spec.scope_field}", kind=kind)
    scope = scope if spec.scope_field else None
    sequence = _allocate(db, kind.value, scope, lambda conn: _existing_max(conn, kind, scope))
    identifier = format_id(kind, sequence, scope)
    logger.debug("id_allocated", kind=kind.value, entity_id=identifier)
    return identifier


def next_sequence(db: Session, counter: str, scope: str, seed_query: Select | None = None) -> int:
    """Allocate a raw per-scope sequence number (e.g. cycle numbers per shipment)."""

    def seed(conn) -> int:
        if seed_query is None:
            return 0
        return conn.execute(seed_query).scalar() or 0

    return _allocate(db, counter, scope, seed)


def observe_id(db: Session, kind: EntityKind, identifier: str, scope: str | None = None) -> None:
    """Raise the counter so later allocations never collide with a supplied identifier."""

    spec = spec_for(kind)
    scope = scope if spec.scope_field else None
    sequence = parse_sequence(kind, identifier)
    engine = db.get_bind()
    for attempt in range(1, max_attempts() + 1):
        try:
            with engine.begin() as conn:
                result = conn.execute(
                    update(IdCounter)
                    .where(_counter(kind.value, scope))
                    .values(
                        value=case(
                            (IdCounter.value < sequence, sequence), else_=IdCounter.value
                        )
                    )
                )
                if result.rowcount == 0:
                    value = max(_existing_max(conn, kind, scope), sequence)
                    conn.execute(
                        insert(IdCounter).values(kind=kind.value, scope=scope or "", value=value)
                    )
            return
        except IntegrityError:
            logger.info("id_allocation_retry", counter=kind.value, scope=scope, attempt=attempt)
        except (OperationalError, InterfaceError) as exc:
            raise AllocationError(f"identifier allocator unavailable: {exc}") from exc
    raise AllocationConflict(f"could not record {identifier}", kind=kind, entity_id=identifier)
