from datetime import timedelta

import pytest

from orc_core import audit, datastore, integrity, lifecycle
from orc_core.errors import (
    InvalidStatus,
    LifecycleError,
    NotFound,
    ParentNotFound,
    TerminalMismatch,
    TransitionRefused,
    UnsupportedOperation,
)
from orc_core.kinds import EntityKind, is_terminal
from orc_core.schemas import TaskUpdate


def _task(db, commission, **fields):
    return integrity.create(
        db, EntityKind.TASK, {"commission_id": commission.id, "title": "Wire audit", **fields}
    )


def test_initial_status_comes_from_kind_table(db, commission):
    assert lifecycle.initial_status(EntityKind.SHIPMENT) == "draft"
    assert lifecycle.initial_status(EntityKind.CYCLE) == "queued"
    assert _task(db, commission).status == "ready"
    with pytest.raises(UnsupportedOperation):
        lifecycle.initial_status(EntityKind.HANDOFF)


def test_terminal_statuses_are_derived():
    assert is_terminal(EntityKind.TASK, "complete")
    assert not is_terminal(EntityKind.TASK, "blocked")
    assert is_terminal(EntityKind.PULL_REQUEST, "merged")
    assert is_terminal(EntityKind.PULL_REQUEST, "closed")
    assert not is_terminal(EntityKind.KENNEL, "occupied")


def test_completion_timestamp_is_set_once(db, commission):
    task = _task(db, commission)
    assert task.completed_at is None

    done = lifecycle.transition(db, EntityKind.TASK, task.id, "complete", reaches_terminal=True)
    first_stamp = done.completed_at
    assert first_stamp is not None

    reopened = lifecycle.transition(db, EntityKind.TASK, task.id, "in_progress")
    assert reopened.status == "in_progress"
    assert reopened.completed_at == first_stamp

    again = lifecycle.transition(db, EntityKind.TASK, task.id, "complete")
    assert again.completed_at == first_stamp


def test_start_stamp_on_claim(db, commission):
    task = _task(db, commission)
    claimed = lifecycle.transition(db, EntityKind.TASK, task.id, "in_progress")
    assert claimed.claimed_at is not None
    assert claimed.completed_at is None


def test_transition_refreshes_updated_at(db, commission):
    task = _task(db, commission)
    before = task.updated_at
    after = lifecycle.transition(db, EntityKind.TASK, task.id, "blocked").updated_at
    assert after >= before


def test_transition_rejects_unknown_status(db, commission):
    task = _task(db, commission)
    with pytest.raises(InvalidStatus):
        lifecycle.transition(db, EntityKind.TASK, task.id, "approved")
    with pytest.raises(UnsupportedOperation):
        lifecycle.transition(db, EntityKind.MESSAGE, "MSG-COMM-001-001", "read")


def test_terminal_assertion_must_match_kind_table(db, commission):
    task = _task(db, commission)
    with pytest.raises(TerminalMismatch):
        lifecycle.transition(db, EntityKind.TASK, task.id, "paused", reaches_terminal=True)
    with pytest.raises(TerminalMismatch):
        lifecycle.transition(db, EntityKind.TASK, task.id, "complete", reaches_terminal=False)
    db.refresh(task)
    assert task.status == "ready"
    assert task.completed_at is None


def test_transition_missing_entity(db, commission):
    with pytest.raises(NotFound) as excinfo:
        lifecycle.transition(db, EntityKind.TASK, "TASK-404", "complete")
    assert excinfo.value.kind is EntityKind.TASK
    assert excinfo.value.entity_id == "TASK-404"


def test_transition_is_audited(db, commission, imp):
    task = _task(db, commission)
    lifecycle.transition(db, EntityKind.TASK, task.id, "in_progress", actor=imp)
    logs = audit.list_logs(db, entity_id=task.id, action="update")
    assert len(logs) == 1
    assert logs[0].field_name == "status"
    assert logs[0].old_value == "ready"
    assert logs[0].new_value == "in_progress"


def test_pin_is_idempotent(db, commission, imp):
    task = _task(db, commission)
    assert lifecycle.pin(db, EntityKind.TASK, task.id, actor=imp).pinned is True
    assert lifecycle.pin(db, EntityKind.TASK, task.id, actor=imp).pinned is True
    assert len(audit.list_logs(db, entity_id=task.id, action="update")) == 1

    assert lifecycle.unpin(db, EntityKind.TASK, task.id).pinned is False
    with pytest.raises(UnsupportedOperation):
        lifecycle.pin(db, EntityKind.OPERATION, "OP-001")


def test_update_distinguishes_unset_from_cleared(db, commission):
    task = _task(db, commission, description="keep me", priority="high")

    updated = lifecycle.update_fields(db, EntityKind.TASK, task.id, TaskUpdate(title="Renamed"))
    assert updated.title == "Renamed"
    assert updated.description == "keep me"
    assert updated.priority == "high"

    cleared = lifecycle.update_fields(db, EntityKind.TASK, task.id, {"description": None})
    assert cleared.description is None
    assert cleared.priority == "high"

    emptied = lifecycle.update_fields(db, EntityKind.TASK, task.id, {"priority": ""})
    assert emptied.priority == ""


def test_update_validates_references_and_protected_fields(db, commission):
    task = _task(db, commission)
    with pytest.raises(ParentNotFound):
        lifecycle.update_fields(db, EntityKind.TASK, task.id, {"conclave_id": "CON-009"})
    with pytest.raises(LifecycleError):
        lifecycle.update_fields(db, EntityKind.TASK, task.id, {"status": "complete"})
    with pytest.raises(UnsupportedOperation):
        lifecycle.update_fields(db, EntityKind.TAG, "TAG-001", {"name": "x"})


def test_pinned_commission_cannot_be_completed(db, commission):
    lifecycle.pin(db, EntityKind.COMMISSION, commission.id)
    with pytest.raises(TransitionRefused) as excinfo:
        lifecycle.transition(db, EntityKind.COMMISSION, commission.id, "complete")
    assert "unpin" in str(excinfo.value)
    with pytest.raises(TransitionRefused):
        lifecycle.transition(db, EntityKind.COMMISSION, commission.id, "archived")

    row = datastore.select_one(db, EntityKind.COMMISSION, commission.id)
    assert row.status == "active"
    assert row.completed_at is None
    assert all(log.field_name != "status" for log in audit.list_logs(db, entity_id=commission.id, action="update"))

    lifecycle.unpin(db, EntityKind.COMMISSION, commission.id)
    done = lifecycle.transition(db, EntityKind.COMMISSION, commission.id, "complete")
    assert done.status == "complete"
    assert done.completed_at is not None


def test_pin_does_not_block_unguarded_moves(db, commission):
    task = _task(db, commission)
    lifecycle.pin(db, EntityKind.TASK, task.id)
    assert lifecycle.transition(db, EntityKind.TASK, task.id, "in_progress").status == "in_progress"
    with pytest.raises(TransitionRefused):
        lifecycle.transition(db, EntityKind.TASK, task.id, "complete")


def test_pause_requires_running_work(db, commission):
    task = _task(db, commission)
    with pytest.raises(TransitionRefused) as excinfo:
        lifecycle.transition(db, EntityKind.TASK, task.id, "paused")
    assert "current status: ready" in str(excinfo.value)

    lifecycle.transition(db, EntityKind.TASK, task.id, "in_progress")
    assert lifecycle.transition(db, EntityKind.TASK, task.id, "paused").status == "paused"


def test_conclave_pause_and_resume(db, commission):
    conclave = integrity.create(db, EntityKind.CONCLAVE, {"commission_id": commission.id, "title": "Naming"})
    with pytest.raises(TransitionRefused):
        lifecycle.transition(db, EntityKind.CONCLAVE, conclave.id, "open")
    assert lifecycle.transition(db, EntityKind.CONCLAVE, conclave.id, "paused").status == "paused"
    assert lifecycle.transition(db, EntityKind.CONCLAVE, conclave.id, "open").status == "open"

    lifecycle.pin(db, EntityKind.CONCLAVE, conclave.id)
    with pytest.raises(TransitionRefused):
        lifecycle.transition(db, EntityKind.CONCLAVE, conclave.id, "closed")


def test_merged_pull_request_stays_merged(db, commission):
    repo = integrity.create(db, EntityKind.REPO, {"name": "orc"})
    shipment = integrity.create(db, EntityKind.SHIPMENT, {"commission_id": commission.id, "title": "Ship"})
    pr = integrity.create(
        db,
        EntityKind.PULL_REQUEST,
        {"shipment_id": shipment.id, "repo_id": repo.id, "commission_id": commission.id, "title": "Ship it"},
    )
    merged = lifecycle.transition(db, EntityKind.PULL_REQUEST, pr.id, "merged", reaches_terminal=True)
    assert merged.merged_at is not None

    for status in ("open", "draft", "approved", "closed"):
        with pytest.raises(TransitionRefused):
            lifecycle.transition(db, EntityKind.PULL_REQUEST, pr.id, status)

    row = datastore.select_one(db, EntityKind.PULL_REQUEST, pr.id)
    assert row.status == "merged"
    assert row.closed_at is None


def test_timestamps_read_back_as_utc(db, commission):
    task = _task(db, commission)
    lifecycle.transition(db, EntityKind.TASK, task.id, "complete")
    db.expire_all()

    row = datastore.select_one(db, EntityKind.TASK, task.id)
    assert row.completed_at.tzinfo is not None
    assert row.completed_at.utcoffset() == timedelta(0)
    assert row.created_at.isoformat().endswith("+00:00")
    assert row.completed_at >= row.created_at
