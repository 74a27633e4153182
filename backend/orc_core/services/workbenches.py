"""Watchdog bookkeeping for workbenches: kennels, patrols, checks, stucks and hook events."""

from __future__ import annotations

import os
from dataclasses import dataclass

import structlog
from sqlalchemy.orm import Session

from .. import datastore, integrity, lifecycle, models, schemas
from ..actors import Actor
from ..errors import DuplicateRelationship, InvalidStatus, NotFound
from ..kinds import EntityKind

# purpose: persist patrol observations and roll repeated failures into stuck episodes
# inputs: workbench/patrol identifiers, check outcomes captured by the watchdog
# outputs: Kennel, Patrol, Check, Stuck and HookEvent rows
# status: active
# depends_on: orc_core.integrity, orc_core.lifecycle

logger = structlog.get_logger(__name__)

CHECK_OUTCOMES = {"working", "idle", "menu", "typed", "error"}
# outcomes showing the agent made progress, which closes an open stuck episode
_RECOVERY_OUTCOMES = {"working", "menu", "typed"}


def _stuck_threshold() -> int:
    return int(os.getenv("ORC_STUCK_THRESHOLD", "5"))


@dataclass
class CheckResult:
    check: models.Check
    stuck: models.Stuck | None = None
    needs_escalation: bool = False


def create_kennel(db: Session, workbench_id: str, *, actor: Actor | str | None = None) -> models.Kennel:
    return integrity.create(db, EntityKind.KENNEL, {"workbench_id": workbench_id}, actor=actor)


def get_kennel_by_workbench(db: Session, workbench_id: str) -> models.Kennel:
    kennels = datastore.select_many(db, EntityKind.KENNEL, limit=1, workbench_id=workbench_id)
    if not kennels:
        raise NotFound(f"no kennel for workbench {workbench_id}", kind=EntityKind.KENNEL, entity_id=workbench_id)
    return kennels[0]


def get_active_patrol(db: Session, kennel_id: str) -> models.Patrol | None:
    patrols = datastore.select_many(db, EntityKind.PATROL, limit=1, kennel_id=kennel_id, status="active")
    return patrols[0] if patrols else None


def start_patrol(db: Session, workbench_id: str, *, actor: Actor | str | None = None) -> models.Patrol:
    """Start watching a workbench's pane; one active patrol per kennel."""

    workbench = datastore.select_one(db, EntityKind.WORKBENCH, workbench_id)
    kennel = get_kennel_by_workbench(db, workbench_id)
    active = get_active_patrol(db, kennel.id)
    if active is not None:
        raise DuplicateRelationship(
            f"patrol {active.id} already active for kennel {kennel.id}",
            kind=EntityKind.PATROL,
            entity_id=active.id,
        )
    patrol = integrity.create(
        db,
        EntityKind.PATROL,
        {"kennel_id": kennel.id, "target": f"orc:{workbench.name}.0"},
        actor=actor,
    )
    lifecycle.transition(db, EntityKind.KENNEL, kennel.id, "occupied", actor=actor)
    return patrol


def end_patrol(db: Session, patrol_id: str, *, actor: Actor | str | None = None) -> models.Patrol:
    patrol = datastore.select_one(db, EntityKind.PATROL, patrol_id)
    if patrol.status != "active":
        raise InvalidStatus(
            f"patrol {patrol_id} is not active (status: {patrol.status})",
            kind=EntityKind.PATROL,
            entity_id=patrol_id,
        )
    patrol = lifecycle.transition(db, EntityKind.PATROL, patrol_id, "completed", reaches_terminal=True, actor=actor)
    lifecycle.transition(db, EntityKind.KENNEL, patrol.kennel_id, "vacant", actor=actor)
    return patrol


def _open_stuck(db: Session, patrol_id: str) -> models.Stuck | None:
    stucks = datastore.select_many(db, EntityKind.STUCK, limit=1, patrol_id=patrol_id, status="open")
    return stucks[0] if stucks else None


def record_check(
    db: Session,
    patrol_id: str,
    outcome: str,
    *,
    pane_content: str | None = None,
    actor: Actor | str | None = None,
) -> CheckResult:
    """Persist one watchdog observation and update the patrol's stuck episode.

    Consecutive ``error`` checks accumulate on a single open stuck; reaching
    the threshold escalates both the stuck and its patrol. Any outcome that
    shows progress resolves the open stuck.
    """

    if outcome not in CHECK_OUTCOMES:
        raise InvalidStatus(f"unknown check outcome {outcome!r}", kind=EntityKind.CHECK)
    patrol = datastore.select_one(db, EntityKind.PATROL, patrol_id)
    stuck = _open_stuck(db, patrol_id)

    check = integrity.create(
        db,
        EntityKind.CHECK,
        {
            "patrol_id": patrol_id,
            "outcome": outcome,
            "pane_content": pane_content,
            "stuck_id": stuck.id if stuck is not None and outcome == "error" else None,
        },
        actor=actor,
    )

    if outcome in _RECOVERY_OUTCOMES:
        if stuck is not None:
            lifecycle.transition(db, EntityKind.STUCK, stuck.id, "resolved", reaches_terminal=True, actor=actor)
        return CheckResult(check=check)
    if outcome != "error":
        return CheckResult(check=check, stuck=stuck)

    if stuck is None:
        stuck = integrity.create(
            db,
            EntityKind.STUCK,
            {"patrol_id": patrol_id, "first_check_id": check.id, "check_count": 1},
            actor=actor,
        )
        datastore.update_where(db, EntityKind.CHECK, {"stuck_id": stuck.id}, id=check.id)
        db.refresh(check)
    else:
        datastore.update_where(
            db,
            EntityKind.STUCK,
            {"check_count": models.Stuck.check_count + 1},
            id=stuck.id,
        )
        db.refresh(stuck)

    if stuck.check_count >= _stuck_threshold():
        lifecycle.transition(db, EntityKind.STUCK, stuck.id, "escalated", actor=actor)
        db.refresh(patrol)
        if patrol.status == "active":
            lifecycle.transition(db, EntityKind.PATROL, patrol_id, "escalated", reaches_terminal=True, actor=actor)
        db.refresh(stuck)
        logger.warning("patrol_escalated", patrol_id=patrol_id, stuck_id=stuck.id, checks=stuck.check_count)
        return CheckResult(check=check, stuck=stuck, needs_escalation=True)
    return CheckResult(check=check, stuck=stuck)


def record_hook_event(
    db: Session,
    workbench_id: str,
    event: schemas.HookEventIn,
    *,
    actor: Actor | str | None = None,
) -> models.HookEvent:
    return integrity.create(
        db,
        EntityKind.HOOK_EVENT,
        {"workbench_id": workbench_id, **event.model_dump()},
        actor=actor,
    )
