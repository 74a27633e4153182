"""Conclave aggregation and promotion lineage across entity kinds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

import structlog
from sqlalchemy.orm import Session

from . import audit, datastore, integrity
from .actors import Actor
from .errors import ParentNotFound, PromotionError
from .kinds import KIND_SPECS, PROMOTION_ORIGINS, EntityKind, kind_for_identifier, require_capability

logger = structlog.get_logger(__name__)

# purpose: cross-kind read side-channel for conclaves plus write-once promotion provenance
# inputs: SQLAlchemy session, conclave or origin identifiers
# outputs: ConclaveContents bundles, promoted ORM rows
# status: active


@dataclass
class ConclaveContents:
    tasks: list = field(default_factory=list)
    questions: list = field(default_factory=list)
    plans: list = field(default_factory=list)
    notes: list = field(default_factory=list)

    def members(self) -> list:
        return [*self.tasks, *self.questions, *self.plans, *self.notes]


def list_by_aggregator(db: Session, conclave_id: str) -> ConclaveContents:
    """Everything gathered under a conclave, grouped by kind."""

    datastore.select_one(db, EntityKind.CONCLAVE, conclave_id)
    return ConclaveContents(
        tasks=datastore.select_many(db, EntityKind.TASK, conclave_id=conclave_id),
        questions=datastore.select_many(db, EntityKind.QUESTION, conclave_id=conclave_id),
        plans=datastore.select_many(db, EntityKind.PLAN, conclave_id=conclave_id),
        notes=datastore.select_many(db, EntityKind.NOTE, conclave_id=conclave_id),
    )


def _resolve_origin(db: Session, promoted_from_id: str, promoted_from_kind: EntityKind | None = None) -> EntityKind:
    origin_kind = kind_for_identifier(promoted_from_id)
    if promoted_from_kind is not None and promoted_from_kind is not origin_kind:
        raise PromotionError(
            f"{promoted_from_id} is a {origin_kind.value}, not a {promoted_from_kind.value}",
            kind=promoted_from_kind,
            entity_id=promoted_from_id,
        )
    if origin_kind not in PROMOTION_ORIGINS:
        raise PromotionError(
            f"{origin_kind.value} items cannot be promoted from", kind=origin_kind, entity_id=promoted_from_id
        )
    if not integrity.assert_parent_exists(db, origin_kind, promoted_from_id):
        raise ParentNotFound(
            f"{origin_kind.value} {promoted_from_id} not found", kind=origin_kind, entity_id=promoted_from_id
        )
    return origin_kind


def record_promotion(
    db: Session,
    kind: EntityKind,
    entity_id: str,
    promoted_from_id: str,
    promoted_from_kind: EntityKind | None = None,
    actor: Actor | str | None = None,
):
    """Stamp provenance on an existing entity. Provenance is written once; the origin is untouched."""

    require_capability(kind, "promotable")
    origin_kind = _resolve_origin(db, promoted_from_id, promoted_from_kind)
    row = datastore.select_one(db, kind, entity_id)
    if row.promoted_from_id == promoted_from_id:
        return row
    if row.promoted_from_id is not None:
        raise PromotionError(
            f"{entity_id} was already promoted from {row.promoted_from_id}", kind=kind, entity_id=entity_id
        )
    updated = datastore.update_where(
        db,
        kind,
        {
            "promoted_from_id": promoted_from_id,
            "promoted_from_type": origin_kind.value,
            "updated_at": datetime.now(timezone.utc),
        },
        id=entity_id,
        promoted_from_id=None,
    )
    if updated == 0:
        raise PromotionError(f"{entity_id} was promoted concurrently", kind=kind, entity_id=entity_id)
    db.refresh(row)
    audit.log(db, actor, kind, entity_id, "update", "promoted_from_id", None, promoted_from_id)
    return row


def promote(
    db: Session,
    kind: EntityKind,
    fields: Mapping[str, Any],
    promoted_from_id: str,
    actor: Actor | str | None = None,
):
    """Spawn a new entity carrying lineage back to a discussion item."""

    require_capability(kind, "promotable")
    origin_kind = _resolve_origin(db, promoted_from_id)
    values = dict(fields)
    values["promoted_from_id"] = promoted_from_id
    values["promoted_from_type"] = origin_kind.value
    row = integrity.create(db, kind, values, actor=actor)
    logger.info(
        "entity_promoted",
        kind=kind.value,
        entity_id=row.id,
        promoted_from_id=promoted_from_id,
    )
    return row


def list_promoted_from(db: Session, origin_id: str) -> list:
    rows: list = []
    for kind, spec in KIND_SPECS.items():
        if spec.promotable:
            rows.extend(datastore.select_many(db, kind, promoted_from_id=origin_id))
    return rows
