import pytest

from orc_core import audit, datastore, integrity, lifecycle
from orc_core.errors import DuplicateRelationship, InvalidStatus, TransitionRefused
from orc_core.kinds import EntityKind
from orc_core.services import cycles, plans


def _shipment(db, commission):
    return integrity.create(db, EntityKind.SHIPMENT, {"commission_id": commission.id, "title": "Ship"})


def test_approval_closes_active_plan(db, commission, imp):
    shipment = _shipment(db, commission)
    plan = plans.create_plan(db, commission.id, "Build it", shipment_id=shipment.id, actor=imp)
    assert plan.id == "PLAN-001"
    assert plans.has_active_plan_for_shipment(db, shipment.id)
    assert plans.get_active_plan_for_shipment(db, shipment.id).id == plan.id

    approval = plans.approve_plan(db, plan.id, reviewer_output="looks good", actor=imp)
    assert approval.id == "APPR-001"
    assert approval.outcome == "approved"

    approved = datastore.select_one(db, EntityKind.PLAN, plan.id)
    assert approved.status == "approved"
    assert approved.approved_at is not None
    assert not plans.has_active_plan_for_shipment(db, shipment.id)

    with pytest.raises(InvalidStatus):
        plans.approve_plan(db, plan.id)


def test_one_draft_per_shipment(db, commission):
    shipment = _shipment(db, commission)
    plans.create_plan(db, commission.id, "first", shipment_id=shipment.id)
    with pytest.raises(DuplicateRelationship):
        plans.create_plan(db, commission.id, "second", shipment_id=shipment.id)
    assert datastore.count(db, EntityKind.PLAN) == 1


def test_approval_activates_queued_cycle(db, commission):
    shipment = _shipment(db, commission)
    cycle = cycles.create_cycle(db, shipment.id)
    plan = plans.create_plan(db, commission.id, "cycle plan", shipment_id=shipment.id, cycle_id=cycle.id)

    plans.approve_plan(db, plan.id)
    activated = datastore.select_one(db, EntityKind.CYCLE, cycle.id)
    assert activated.status == "active"
    assert activated.started_at is not None


def test_escalate_and_resolve(db, commission):
    plan = plans.create_plan(db, commission.id, "risky")
    escalation = plans.escalate_plan(
        db, plan.id, "needs a human", origin_actor_id="IMP-BENCH-001", target_actor_id="GOBLIN-GATE-001"
    )
    assert escalation.status == "pending"
    assert escalation.approval_id == "APPR-001"
    assert datastore.select_one(db, EntityKind.APPROVAL, "APPR-001").outcome == "escalated"
    assert datastore.select_one(db, EntityKind.PLAN, plan.id).status == "escalated"

    with pytest.raises(InvalidStatus):
        plans.resolve_escalation(db, escalation.id, "maybe")

    resolved = plans.resolve_escalation(db, escalation.id, "approved", resolution="go ahead", resolved_by="ORC")
    assert resolved.status == "resolved"
    assert resolved.resolved_at is not None
    assert resolved.resolution == "go ahead"

    with pytest.raises(InvalidStatus):
        plans.resolve_escalation(db, escalation.id, "rejected")


def test_rejected_escalation_is_dismissed(db, commission):
    plan = plans.create_plan(db, commission.id, "risky")
    escalation = plans.escalate_plan(db, plan.id, "unclear scope")
    assert plans.resolve_escalation(db, escalation.id, "rejected").status == "dismissed"


def test_supersede_links_replacement(db, commission):
    shipment = _shipment(db, commission)
    original = plans.create_plan(db, commission.id, "v1", shipment_id=shipment.id)
    replacement = plans.supersede_plan(db, original.id, "v2", content="better")

    assert replacement.supersedes_plan_id == original.id
    assert replacement.shipment_id == shipment.id
    assert replacement.status == "draft"
    assert datastore.select_one(db, EntityKind.PLAN, original.id).status == "superseded"
    assert plans.get_active_plan_for_shipment(db, shipment.id).id == replacement.id

    with pytest.raises(InvalidStatus):
        plans.supersede_plan(db, original.id, "v3")


def test_supersede_respects_existing_draft(db, commission):
    shipment = _shipment(db, commission)
    first = plans.create_plan(db, commission.id, "v1", shipment_id=shipment.id)
    plans.approve_plan(db, first.id)
    other = plans.create_plan(db, commission.id, "parallel", shipment_id=shipment.id)

    with pytest.raises(DuplicateRelationship):
        plans.supersede_plan(db, first.id, "v2")

    drafts = datastore.select_many(db, EntityKind.PLAN, shipment_id=shipment.id, status="draft")
    assert [plan.id for plan in drafts] == [other.id]
    assert datastore.select_one(db, EntityKind.PLAN, first.id).status == "approved"


def test_supersede_of_the_active_draft_is_allowed(db, commission):
    shipment = _shipment(db, commission)
    draft = plans.create_plan(db, commission.id, "v1", shipment_id=shipment.id)
    replacement = plans.supersede_plan(db, draft.id, "v2")
    assert plans.get_active_plan_for_shipment(db, shipment.id).id == replacement.id


def test_refused_approval_writes_nothing(db, commission):
    plan = plans.create_plan(db, commission.id, "frozen")
    lifecycle.pin(db, EntityKind.PLAN, plan.id)

    with pytest.raises(TransitionRefused):
        plans.approve_plan(db, plan.id)

    assert datastore.count(db, EntityKind.APPROVAL) == 0
    row = datastore.select_one(db, EntityKind.PLAN, plan.id)
    assert row.status == "draft"
    assert row.approved_at is None
    assert audit.list_logs(db, entity_type=EntityKind.APPROVAL) == []

    lifecycle.unpin(db, EntityKind.PLAN, plan.id)
    assert plans.approve_plan(db, plan.id).plan_id == plan.id
    assert datastore.count(db, EntityKind.APPROVAL) == 1


def test_review_writes_are_audited_after_commit(db, commission, imp):
    plan = plans.create_plan(db, commission.id, "audited")
    escalation = plans.escalate_plan(db, plan.id, "second opinion", actor=imp)

    assert [log.action for log in audit.list_logs(db, entity_id=escalation.id)] == ["create"]
    status_logs = [
        log for log in audit.list_logs(db, entity_id=plan.id, action="update") if log.field_name == "status"
    ]
    assert [(log.old_value, log.new_value) for log in status_logs] == [("draft", "escalated")]
