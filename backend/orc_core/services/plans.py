"""Plan review flow: active-plan guard, approval, escalation and supersession."""

from __future__ import annotations

import structlog
from sqlalchemy.orm import Session

from .. import audit, datastore, integrity, lifecycle, models
from ..actors import Actor
from ..errors import DuplicateRelationship, InvalidStatus
from ..identifiers import next_id
from ..kinds import EntityKind

# purpose: plan-specific rules layered on the generic create/transition engine
# status: active
# depends_on: orc_core.integrity, orc_core.lifecycle

logger = structlog.get_logger(__name__)

_ACTIVE_PLAN_STATUS = "draft"
_REVIEWABLE_STATUSES = {"draft", "pending_review"}
_RESOLUTION_OUTCOMES = {"approved": "resolved", "rejected": "dismissed"}


def get_active_plan_for_shipment(db: Session, shipment_id: str) -> models.Plan | None:
    plans = datastore.select_many(
        db, EntityKind.PLAN, limit=1, shipment_id=shipment_id, status=_ACTIVE_PLAN_STATUS
    )
    return plans[0] if plans else None


def has_active_plan_for_shipment(db: Session, shipment_id: str, exclude_id: str | None = None) -> bool:
    drafts = datastore.select_many(db, EntityKind.PLAN, shipment_id=shipment_id, status=_ACTIVE_PLAN_STATUS)
    return any(plan.id != exclude_id for plan in drafts)


def _guard_active_plan(db: Session, shipment_id: str | None, exclude_id: str | None = None) -> None:
    if shipment_id and has_active_plan_for_shipment(db, shipment_id, exclude_id=exclude_id):
        raise DuplicateRelationship(
            f"shipment {shipment_id} already has an active plan",
            kind=EntityKind.PLAN,
            entity_id=shipment_id,
        )


def create_plan(
    db: Session,
    commission_id: str,
    title: str,
    *,
    shipment_id: str | None = None,
    cycle_id: str | None = None,
    conclave_id: str | None = None,
    description: str | None = None,
    content: str | None = None,
    entity_id: str | None = None,
    actor: Actor | str | None = None,
) -> models.Plan:
    """Create a draft plan; a shipment carries at most one draft at a time."""

    _guard_active_plan(db, shipment_id)
    fields = {
        "commission_id": commission_id,
        "title": title,
        "shipment_id": shipment_id,
        "cycle_id": cycle_id,
        "conclave_id": conclave_id,
        "description": description,
        "content": content,
    }
    return integrity.create(db, EntityKind.PLAN, fields, entity_id=entity_id, actor=actor)


def _reviewable(db: Session, plan_id: str) -> models.Plan:
    plan = datastore.select_one(db, EntityKind.PLAN, plan_id)
    if plan.status not in _REVIEWABLE_STATUSES:
        raise InvalidStatus(
            f"plan {plan_id} is {plan.status} and cannot be reviewed",
            kind=EntityKind.PLAN,
            entity_id=plan_id,
        )
    return plan


def approve_plan(
    db: Session,
    plan_id: str,
    *,
    mechanism: str = "manual",
    reviewer_input: str | None = None,
    reviewer_output: str | None = None,
    actor: Actor | str | None = None,
) -> models.Approval:
    """Record the plan's approval and move it to ``approved`` in one transaction.

    A plan's cycle, if it is still queued, becomes active once its plan is
    approved.
    """

    plan = _reviewable(db, plan_id)
    previous = plan.status
    approval_id = next_id(db, EntityKind.APPROVAL)

    approval = integrity.stage(
        db,
        EntityKind.APPROVAL,
        {
            "plan_id": plan_id,
            "mechanism": mechanism,
            "reviewer_input": reviewer_input,
            "reviewer_output": reviewer_output,
            "outcome": "approved",
        },
        approval_id,
    )
    lifecycle.transition(db, EntityKind.PLAN, plan_id, "approved", reaches_terminal=True, commit=False)
    db.commit()
    db.refresh(approval)
    audit.log(db, actor, EntityKind.APPROVAL, approval_id, "create")
    audit.log(db, actor, EntityKind.PLAN, plan_id, "update", "status", previous, "approved")

    if plan.cycle_id:
        cycle = datastore.get(db, EntityKind.CYCLE, plan.cycle_id)
        if cycle is not None and cycle.status == "queued":
            lifecycle.transition(db, EntityKind.CYCLE, cycle.id, "active", actor=actor)
    logger.info("plan_approved", plan_id=plan_id, approval_id=approval_id)
    return approval


def escalate_plan(
    db: Session,
    plan_id: str,
    reason: str,
    *,
    origin_actor_id: str | None = None,
    target_actor_id: str | None = None,
    routing_rule: str = "workshop_gatehouse",
    actor: Actor | str | None = None,
) -> models.Escalation:
    """Reject a plan upward: approval with outcome ``escalated`` plus a pending escalation."""

    plan = _reviewable(db, plan_id)
    previous = plan.status
    approval_id = next_id(db, EntityKind.APPROVAL)
    escalation_id = next_id(db, EntityKind.ESCALATION)

    integrity.stage(
        db,
        EntityKind.APPROVAL,
        {"plan_id": plan_id, "mechanism": "subagent", "reviewer_output": reason, "outcome": "escalated"},
        approval_id,
    )
    escalation = integrity.stage(
        db,
        EntityKind.ESCALATION,
        {
            "plan_id": plan_id,
            "approval_id": approval_id,
            "reason": reason,
            "routing_rule": routing_rule,
            "origin_actor_id": origin_actor_id,
            "target_actor_id": target_actor_id,
        },
        escalation_id,
    )
    lifecycle.transition(db, EntityKind.PLAN, plan_id, "escalated", reaches_terminal=False, commit=False)
    db.commit()
    db.refresh(escalation)
    audit.log(db, actor, EntityKind.APPROVAL, approval_id, "create")
    audit.log(db, actor, EntityKind.ESCALATION, escalation_id, "create")
    audit.log(db, actor, EntityKind.PLAN, plan_id, "update", "status", previous, "escalated")
    logger.info("plan_escalated", plan_id=plan_id, escalation_id=escalation_id)
    return escalation


def resolve_escalation(
    db: Session,
    escalation_id: str,
    outcome: str,
    *,
    resolution: str | None = None,
    resolved_by: str | None = None,
    actor: Actor | str | None = None,
) -> models.Escalation:
    """Close a pending escalation; ``approved`` resolves it and ``rejected`` dismisses it."""

    escalation = datastore.select_one(db, EntityKind.ESCALATION, escalation_id)
    if escalation.status != "pending":
        raise InvalidStatus(
            f"escalation {escalation_id} is not pending (current status: {escalation.status})",
            kind=EntityKind.ESCALATION,
            entity_id=escalation_id,
        )
    if outcome not in _RESOLUTION_OUTCOMES:
        raise InvalidStatus(
            f"invalid outcome: {outcome} (must be 'approved' or 'rejected')",
            kind=EntityKind.ESCALATION,
            entity_id=escalation_id,
        )
    status = _RESOLUTION_OUTCOMES[outcome]
    datastore.update_where(
        db,
        EntityKind.ESCALATION,
        {"resolution": resolution, "resolved_by": resolved_by},
        commit=False,
        id=escalation_id,
    )
    escalation = lifecycle.transition(
        db, EntityKind.ESCALATION, escalation_id, status, reaches_terminal=True, commit=False
    )
    db.commit()
    db.refresh(escalation)
    audit.log(db, actor, EntityKind.ESCALATION, escalation_id, "update", "status", "pending", status)
    return escalation


def supersede_plan(
    db: Session,
    plan_id: str,
    title: str,
    *,
    description: str | None = None,
    content: str | None = None,
    actor: Actor | str | None = None,
) -> models.Plan:
    """Replace a plan with a new draft that points back at it.

    The replacement becomes the shipment's active plan, so any other draft
    for the same shipment blocks the supersession.
    """

    previous = datastore.select_one(db, EntityKind.PLAN, plan_id)
    if previous.status == "superseded":
        raise InvalidStatus(f"plan {plan_id} is already superseded", kind=EntityKind.PLAN, entity_id=plan_id)
    _guard_active_plan(db, previous.shipment_id, exclude_id=plan_id)
    old_status = previous.status
    replacement_id = next_id(db, EntityKind.PLAN)

    replacement = integrity.stage(
        db,
        EntityKind.PLAN,
        {
            "commission_id": previous.commission_id,
            "shipment_id": previous.shipment_id,
            "cycle_id": previous.cycle_id,
            "conclave_id": previous.conclave_id,
            "supersedes_plan_id": plan_id,
            "title": title,
            "description": description,
            "content": content,
        },
        replacement_id,
    )
    lifecycle.transition(db, EntityKind.PLAN, plan_id, "superseded", commit=False)
    db.commit()
    db.refresh(replacement)
    audit.log(db, actor, EntityKind.PLAN, replacement_id, "create")
    audit.log(db, actor, EntityKind.PLAN, plan_id, "update", "status", old_status, "superseded")
    return replacement
