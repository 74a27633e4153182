import pytest

from orc_core import aggregation, integrity
from orc_core.errors import NotFound, ParentNotFound, PromotionError, UnsupportedOperation
from orc_core.kinds import EntityKind


def test_conclave_gathers_members_across_containers(db, commission):
    shipment = integrity.create(db, EntityKind.SHIPMENT, {"commission_id": commission.id, "title": "S"})
    investigation = integrity.create(db, EntityKind.INVESTIGATION, {"commission_id": commission.id, "title": "I"})
    conclave = integrity.create(db, EntityKind.CONCLAVE, {"commission_id": commission.id, "title": "Debate"})
    assert conclave.id == "CON-001"

    task = integrity.create(
        db,
        EntityKind.TASK,
        {"commission_id": commission.id, "shipment_id": shipment.id, "conclave_id": "CON-001", "title": "t"},
    )
    question = integrity.create(
        db,
        EntityKind.QUESTION,
        {"commission_id": commission.id, "investigation_id": investigation.id, "conclave_id": "CON-001", "title": "q"},
    )
    plan = integrity.create(
        db,
        EntityKind.PLAN,
        {"commission_id": commission.id, "conclave_id": "CON-001", "title": "p"},
    )
    integrity.create(db, EntityKind.TASK, {"commission_id": commission.id, "shipment_id": shipment.id, "title": "outsider"})

    contents = aggregation.list_by_aggregator(db, "CON-001")
    assert [t.id for t in contents.tasks] == [task.id]
    assert [q.id for q in contents.questions] == [question.id]
    assert [p.id for p in contents.plans] == [plan.id]
    assert len(contents.members()) == 3

    with pytest.raises(NotFound):
        aggregation.list_by_aggregator(db, "CON-404")


def test_promote_spawns_copy_with_lineage(db, commission):
    conclave = integrity.create(db, EntityKind.CONCLAVE, {"commission_id": commission.id, "title": "Debate"})
    note = integrity.create(
        db, EntityKind.NOTE, {"commission_id": commission.id, "conclave_id": conclave.id, "title": "idea"}
    )
    shipment = integrity.create(db, EntityKind.SHIPMENT, {"commission_id": commission.id, "title": "S"})

    task = aggregation.promote(
        db,
        EntityKind.TASK,
        {"commission_id": commission.id, "shipment_id": shipment.id, "title": "Build the idea"},
        promoted_from_id=note.id,
    )
    assert task.promoted_from_id == note.id
    assert task.promoted_from_type == "note"

    origin = db.get(type(note), note.id)
    assert origin.status == "open"
    assert origin.conclave_id == conclave.id
    assert [row.id for row in aggregation.list_promoted_from(db, note.id)] == [task.id]


def test_promotion_origin_must_be_a_discussion_item(db, commission):
    shipment = integrity.create(db, EntityKind.SHIPMENT, {"commission_id": commission.id, "title": "S"})
    with pytest.raises(PromotionError):
        aggregation.promote(
            db, EntityKind.TASK, {"commission_id": commission.id, "title": "x"}, promoted_from_id=shipment.id
        )
    with pytest.raises(ParentNotFound):
        aggregation.promote(
            db, EntityKind.TASK, {"commission_id": commission.id, "title": "x"}, promoted_from_id="INV-404"
        )
    with pytest.raises(UnsupportedOperation):
        aggregation.promote(db, EntityKind.TOME, {"commission_id": commission.id, "title": "x"}, promoted_from_id="INV-001")


def test_record_promotion_is_write_once(db, commission):
    first = integrity.create(db, EntityKind.INVESTIGATION, {"commission_id": commission.id, "title": "one"})
    second = integrity.create(db, EntityKind.INVESTIGATION, {"commission_id": commission.id, "title": "two"})
    plan = integrity.create(db, EntityKind.PLAN, {"commission_id": commission.id, "title": "p"})

    stamped = aggregation.record_promotion(db, EntityKind.PLAN, plan.id, first.id, EntityKind.INVESTIGATION)
    assert stamped.promoted_from_id == first.id
    assert stamped.promoted_from_type == "investigation"

    assert aggregation.record_promotion(db, EntityKind.PLAN, plan.id, first.id).promoted_from_id == first.id
    with pytest.raises(PromotionError):
        aggregation.record_promotion(db, EntityKind.PLAN, plan.id, second.id)
    with pytest.raises(PromotionError):
        aggregation.record_promotion(db, EntityKind.PLAN, plan.id, first.id, EntityKind.CONCLAVE)
