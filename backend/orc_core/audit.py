"""Best-effort derived audit trail attributed to actors and workshop scope."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .actors import Actor, resolve_actor
from .errors import LifecycleError
from .identifiers import next_id
from .kinds import EntityKind

logger = structlog.get_logger(__name__)

ACTIONS = ("create", "update", "delete")


@dataclass(frozen=True, slots=True)
class AuditOutcome:
    """Result of an audit attempt: either the appended record or why it was skipped."""

    record: models.WorkshopLog | None = None
    reason: str | None = None

    @classmethod
    def recorded(cls, record: models.WorkshopLog) -> "AuditOutcome":
        return cls(record=record)

    @classmethod
    def skipped(cls, reason: str) -> "AuditOutcome":
        return cls(reason=reason)

    @property
    def is_recorded(self) -> bool:
        return self.record is not None


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, EntityKind):
        return value.value
    return str(value)


def log(
    db: Session,
    actor: Actor | str | None,
    kind: EntityKind,
    entity_id: str,
    action: str,
    field_name: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
) -> AuditOutcome:
    """Append an immutable audit record for a mutation that already happened."""

    # purpose: attribute mutations to an actor and workshop without ever blocking them
    # inputs: session, Actor (or raw actor id), mutated entity, action and optional field change
    # outputs: AuditOutcome.recorded(WorkshopLog) or AuditOutcome.skipped(reason)
    # status: active
    if action not in ACTIONS:
        return AuditOutcome.skipped(f"unsupported action {action}")
    try:
        if not isinstance(actor, Actor):
            actor = resolve_actor(db, actor)
        if actor.scope is None:
            logger.debug(
                "audit_skipped",
                reason="no_scope",
                actor_id=actor.actor_id,
                entity_id=entity_id,
            )
            return AuditOutcome.skipped("no_scope")

        record = models.WorkshopLog(
            id=next_id(db, EntityKind.WORKSHOP_LOG),
            workshop_id=actor.scope,
            actor_id=actor.actor_id,
            actor_type=actor.kind.value,
            entity_type=kind.value,
            entity_id=entity_id,
            action=action,
            field_name=field_name,
            old_value=_stringify(old_value),
            new_value=_stringify(new_value),
            timestamp=datetime.now(timezone.utc),
        )
        db.add(record)
        db.commit()
        db.refresh(record)
    except (SQLAlchemyError, LifecycleError) as exc:
        db.rollback()
        logger.warning(
            "audit_skipped",
            reason="storage_error",
            entity_type=kind.value,
            entity_id=entity_id,
            error=str(exc),
        )
        return AuditOutcome.skipped("storage_error")
    return AuditOutcome.recorded(record)


def list_logs(
    db: Session,
    workshop_id: str | None = None,
    entity_type: EntityKind | str | None = None,
    entity_id: str | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    limit: int | None = None,
) -> list[models.WorkshopLog]:
    query = db.query(models.WorkshopLog)
    if workshop_id:
        query = query.filter(models.WorkshopLog.workshop_id == workshop_id)
    if entity_type:
        query = query.filter(models.WorkshopLog.entity_type == _stringify(entity_type))
    if entity_id:
        query = query.filter(models.WorkshopLog.entity_id == entity_id)
    if actor_id:
        query = query.filter(models.WorkshopLog.actor_id == actor_id)
    if action:
        query = query.filter(models.WorkshopLog.action == action)
    query = query.order_by(models.WorkshopLog.timestamp.desc(), models.WorkshopLog.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    workshop_id: str | None = None,
):
    query = db.query(models.WorkshopLog).filter(
        models.WorkshopLog.timestamp >= start,
        models.WorkshopLog.timestamp <= end,
    )
    if workshop_id:
        query = query.filter(models.WorkshopLog.workshop_id == workshop_id)
    rows = (
        query.with_entities(models.WorkshopLog.action, func.count(models.WorkshopLog.id))
        .group_by(models.WorkshopLog.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]


def prune_older_than(db: Session, days: int) -> int:
    """Administrative pruning of audit records older than ``days``."""

    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    removed = (
        db.query(models.WorkshopLog)
        .filter(models.WorkshopLog.timestamp < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info("audit_pruned", removed=removed, older_than_days=days)
    return removed
