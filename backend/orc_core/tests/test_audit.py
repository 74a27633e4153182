from datetime import datetime, timedelta, timezone

from orc_core import audit, integrity, models
from orc_core.actors import Actor, ActorKind, resolve_actor
from orc_core.errors import AllocationError
from orc_core.kinds import EntityKind
from orc_core.schemas import WorkshopLogOut


def test_resolve_actor_variants(db, workshop):
    imp = resolve_actor(db, "IMP-BENCH-001")
    assert imp.kind is ActorKind.IMP
    assert imp.workbench_id == "BENCH-001"
    assert imp.scope == workshop.id

    bare = resolve_actor(db, "BENCH-001")
    assert bare.kind is ActorKind.IMP
    assert bare.scope == workshop.id

    gate = resolve_actor(db, "GOBLIN-GATE-003")
    assert gate.kind is ActorKind.GATEHOUSE
    assert gate.gatehouse_id == "GATE-003"
    assert gate.scope is None

    missing_bench = resolve_actor(db, "IMP-BENCH-099")
    assert missing_bench.kind is ActorKind.IMP
    assert missing_bench.scope is None

    assert resolve_actor(db, "GOBLIN").kind is ActorKind.ORCHESTRATOR
    assert resolve_actor(db, None).kind is ActorKind.UNKNOWN


def test_log_records_workbench_actor(db, commission, imp):
    outcome = audit.log(db, imp, EntityKind.COMMISSION, commission.id, "update", "title", "Launch", "Relaunch")
    assert outcome.is_recorded
    record = outcome.record
    assert record.id == "WL-0001"
    assert record.workshop_id == "WORK-001"
    assert record.actor_type == "imp"

    out = WorkshopLogOut.model_validate(record)
    assert out.entity_type == "commission"
    assert out.old_value == "Launch"
    assert out.new_value == "Relaunch"


def test_log_accepts_raw_actor_ids(db, commission):
    outcome = audit.log(db, "IMP-BENCH-001", EntityKind.COMMISSION, commission.id, "delete")
    assert outcome.is_recorded
    assert outcome.record.actor_id == "IMP-BENCH-001"


def test_log_skips_without_scope(db, commission):
    gate = audit.log(db, "GOBLIN-GATE-003", EntityKind.COMMISSION, commission.id, "update", "status")
    assert not gate.is_recorded
    assert gate.reason == "no_scope"

    orphan = audit.log(db, Actor.imp("BENCH-404", None), EntityKind.COMMISSION, commission.id, "create")
    assert orphan.reason == "no_scope"
    assert db.query(models.WorkshopLog).count() == 0


def test_log_never_raises_on_storage_failure(db, commission, imp, monkeypatch):
    def unavailable(*args, **kwargs):
        raise AllocationError("down")

    monkeypatch.setattr(audit, "next_id", unavailable)
    outcome = audit.log(db, imp, EntityKind.COMMISSION, commission.id, "create")
    assert not outcome.is_recorded
    assert outcome.reason == "storage_error"


def test_list_report_and_prune(db, commission, imp):
    shipment = integrity.create(
        db, EntityKind.SHIPMENT, {"commission_id": commission.id, "title": "s"}, actor=imp
    )
    integrity.assign(db, EntityKind.SHIPMENT, shipment.id, "BENCH-001", actor=imp)
    integrity.create(db, EntityKind.TASK, {"commission_id": commission.id, "title": "t"}, actor=imp)

    assert len(audit.list_logs(db, workshop_id="WORK-001")) == 3
    assert len(audit.list_logs(db, entity_type=EntityKind.SHIPMENT)) == 2
    assert len(audit.list_logs(db, actor_id="IMP-BENCH-001", action="create")) == 2
    assert len(audit.list_logs(db, limit=1)) == 1

    now = datetime.now(timezone.utc)
    report = audit.generate_report(db, now - timedelta(hours=1), now + timedelta(hours=1), workshop_id="WORK-001")
    assert {row["action"]: row["count"] for row in report} == {"create": 2, "update": 1}

    old = db.query(models.WorkshopLog).filter(models.WorkshopLog.action == "update").one()
    old.timestamp = now - timedelta(days=40)
    db.commit()
    assert audit.prune_older_than(db, 30) == 1
    assert db.query(models.WorkshopLog).count() == 2
