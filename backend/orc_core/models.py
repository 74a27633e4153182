from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Integer,
    JSON,
    Text,
    UniqueConstraint,
)
from sqlalchemy.types import TypeDecorator

from .database import Base
from .kinds import EntityKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on backends that store them naive (SQLite)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class IdCounter(Base):
    """Per-kind, per-scope allocation counter; scope is '' for unscoped kinds."""

    __tablename__ = "id_counters"
    kind = Column(String, primary_key=True)
    scope = Column(String, primary_key=True, default="")
    value = Column(Integer, nullable=False, default=0)


class TimestampMixin:
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at = Column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


class PromotionMixin:
    promoted_from_id = Column(String, nullable=True)
    promoted_from_type = Column(String, nullable=True)


class Factory(TimestampMixin, Base):
    __tablename__ = "factories"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="active")


class Workshop(TimestampMixin, Base):
    __tablename__ = "workshops"
    id = Column(String, primary_key=True)
    factory_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="active")


class Workbench(TimestampMixin, Base):
    __tablename__ = "workbenches"
    id = Column(String, primary_key=True)
    workshop_id = Column(String, nullable=False, index=True)
    repo_id = Column(String, index=True)
    name = Column(String, nullable=False)
    path = Column(String)
    home_branch = Column(String)
    focused_id = Column(String)
    status = Column(String, nullable=False, default="active")


class Repo(TimestampMixin, Base):
    __tablename__ = "repos"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    url = Column(String)
    local_path = Column(String)
    default_branch = Column(String, default="main")
    status = Column(String, nullable=False, default="active")


class Commission(TimestampMixin, Base):
    __tablename__ = "commissions"
    id = Column(String, primary_key=True)
    workshop_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="active")
    pinned = Column(Boolean, nullable=False, default=False)
    started_at = Column(UTCDateTime())
    completed_at = Column(UTCDateTime())


class Shipment(TimestampMixin, Base):
    __tablename__ = "shipments"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    repo_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    branch = Column(String)
    status = Column(String, nullable=False, default="draft")
    assigned_workbench_id = Column(String, index=True)
    pinned = Column(Boolean, nullable=False, default=False)
    completed_at = Column(UTCDateTime())


class Task(TimestampMixin, PromotionMixin, Base):
    __tablename__ = "tasks"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    shipment_id = Column(String, index=True)
    investigation_id = Column(String, index=True)
    tome_id = Column(String, index=True)
    conclave_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    type = Column(String)
    priority = Column(String)
    status = Column(String, nullable=False, default="ready")
    assigned_workbench_id = Column(String, index=True)
    pinned = Column(Boolean, nullable=False, default=False)
    claimed_at = Column(UTCDateTime())
    completed_at = Column(UTCDateTime())


class Plan(TimestampMixin, PromotionMixin, Base):
    __tablename__ = "plans"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    shipment_id = Column(String, index=True)
    cycle_id = Column(String, index=True)
    conclave_id = Column(String, index=True)
    supersedes_plan_id = Column(String)
    title = Column(String, nullable=False)
    description = Column(Text)
    content = Column(Text)
    status = Column(String, nullable=False, default="draft")
    pinned = Column(Boolean, nullable=False, default=False)
    approved_at = Column(UTCDateTime())


class Note(TimestampMixin, PromotionMixin, Base):
    __tablename__ = "notes"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    shipment_id = Column(String, index=True)
    investigation_id = Column(String, index=True)
    tome_id = Column(String, index=True)
    conclave_id = Column(String, index=True)
    title = Column(String, nullable=False)
    content = Column(Text)
    type = Column(String)
    status = Column(String, nullable=False, default="open")
    pinned = Column(Boolean, nullable=False, default=False)
    closed_at = Column(UTCDateTime())


class Investigation(TimestampMixin, PromotionMixin, Base):
    __tablename__ = "investigations"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    shipment_id = Column(String, index=True)
    conclave_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="open")
    assigned_workbench_id = Column(String, index=True)
    pinned = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(UTCDateTime())


class Question(TimestampMixin, PromotionMixin, Base):
    __tablename__ = "questions"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    shipment_id = Column(String, index=True)
    investigation_id = Column(String, index=True)
    conclave_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    answer = Column(Text)
    status = Column(String, nullable=False, default="open")
    pinned = Column(Boolean, nullable=False, default=False)
    answered_at = Column(UTCDateTime())


class Conclave(TimestampMixin, Base):
    __tablename__ = "conclaves"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    shipment_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    decision = Column(Text)
    status = Column(String, nullable=False, default="open")
    assigned_workbench_id = Column(String, index=True)
    pinned = Column(Boolean, nullable=False, default=False)
    decided_at = Column(UTCDateTime())


class Tome(TimestampMixin, Base):
    __tablename__ = "tomes"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    conclave_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="open")
    assigned_workbench_id = Column(String, index=True)
    pinned = Column(Boolean, nullable=False, default=False)
    closed_at = Column(UTCDateTime())


class Operation(TimestampMixin, Base):
    __tablename__ = "operations"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="ready")
    completed_at = Column(UTCDateTime())


class Handoff(TimestampMixin, Base):
    __tablename__ = "handoffs"
    id = Column(String, primary_key=True)
    handoff_note = Column(Text, nullable=False)
    active_commission_id = Column(String, index=True)
    active_workbench_id = Column(String, index=True)
    todos_snapshot = Column(JSON)


class Message(TimestampMixin, Base):
    __tablename__ = "messages"
    id = Column(String, primary_key=True)
    commission_id = Column(String, nullable=False, index=True)
    sender = Column(String, nullable=False)
    recipient = Column(String, nullable=False, index=True)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)


class PullRequest(TimestampMixin, Base):
    __tablename__ = "prs"
    id = Column(String, primary_key=True)
    shipment_id = Column(String, nullable=False, unique=True)
    repo_id = Column(String, nullable=False, index=True)
    commission_id = Column(String, nullable=False, index=True)
    number = Column(Integer)
    title = Column(String, nullable=False)
    description = Column(Text)
    branch = Column(String)
    target_branch = Column(String)
    url = Column(String)
    status = Column(String, nullable=False, default="open")
    assigned_workbench_id = Column(String, index=True)
    merged_at = Column(UTCDateTime())
    closed_at = Column(UTCDateTime())


class Approval(TimestampMixin, Base):
    __tablename__ = "approvals"
    id = Column(String, primary_key=True)
    plan_id = Column(String, nullable=False, unique=True)
    mechanism = Column(String, nullable=False, default="manual")
    reviewer_input = Column(Text)
    reviewer_output = Column(Text)
    outcome = Column(String, nullable=False)


class Escalation(TimestampMixin, Base):
    __tablename__ = "escalations"
    id = Column(String, primary_key=True)
    plan_id = Column(String, nullable=False, index=True)
    approval_id = Column(String, index=True)
    reason = Column(Text, nullable=False)
    routing_rule = Column(String, nullable=False, default="workshop_gatehouse")
    origin_actor_id = Column(String)
    target_actor_id = Column(String)
    resolution = Column(Text)
    resolved_by = Column(String)
    status = Column(String, nullable=False, default="pending")
    resolved_at = Column(UTCDateTime())


class Tag(TimestampMixin, Base):
    __tablename__ = "tags"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text)


class EntityTag(Base):
    __tablename__ = "entity_tags"
    __table_args__ = (
        UniqueConstraint("entity_id", "entity_type", name="uq_entity_tags_entity"),
    )
    id = Column(String, primary_key=True)
    entity_id = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    tag_id = Column(String, nullable=False, index=True)
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)


class WorkshopLog(Base):
    """Immutable audit record; rows are appended and only ever pruned."""

    __tablename__ = "workshop_logs"
    id = Column(String, primary_key=True)
    workshop_id = Column(String, index=True)
    timestamp = Column(UTCDateTime(), default=utcnow, nullable=False, index=True)
    actor_id = Column(String)
    actor_type = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    field_name = Column(String)
    old_value = Column(Text)
    new_value = Column(Text)


class HookEvent(Base):
    __tablename__ = "hook_events"
    id = Column(String, primary_key=True)
    workbench_id = Column(String, nullable=False, index=True)
    hook_type = Column(String, nullable=False)
    timestamp = Column(UTCDateTime(), default=utcnow, nullable=False)
    payload = Column(JSON)
    cwd = Column(String)
    decision = Column(String, nullable=False)
    reason = Column(Text)
    duration_ms = Column(Integer)
    error = Column(Text)


class Kennel(TimestampMixin, Base):
    __tablename__ = "kennels"
    id = Column(String, primary_key=True)
    workbench_id = Column(String, nullable=False, unique=True)
    status = Column(String, nullable=False, default="vacant")


class Patrol(TimestampMixin, Base):
    __tablename__ = "patrols"
    id = Column(String, primary_key=True)
    kennel_id = Column(String, nullable=False, index=True)
    target = Column(String, nullable=False)
    config = Column(JSON)
    status = Column(String, nullable=False, default="active")
    ended_at = Column(UTCDateTime())


class Stuck(TimestampMixin, Base):
    __tablename__ = "stucks"
    id = Column(String, primary_key=True)
    patrol_id = Column(String, nullable=False, index=True)
    first_check_id = Column(String, nullable=False)
    check_count = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default="open")
    resolved_at = Column(UTCDateTime())


class Check(Base):
    __tablename__ = "checks"
    id = Column(String, primary_key=True)
    patrol_id = Column(String, nullable=False, index=True)
    stuck_id = Column(String, index=True)
    pane_content = Column(Text)
    outcome = Column(String, nullable=False)
    captured_at = Column(UTCDateTime(), default=utcnow, nullable=False)


class WorkOrder(TimestampMixin, Base):
    __tablename__ = "work_orders"
    id = Column(String, primary_key=True)
    shipment_id = Column(String, nullable=False, unique=True)
    outcome = Column(Text, nullable=False)
    acceptance_criteria = Column(JSON)
    status = Column(String, nullable=False, default="draft")


class Cycle(TimestampMixin, Base):
    __tablename__ = "cycles"
    __table_args__ = (
        UniqueConstraint("shipment_id", "sequence_number", name="uq_cycles_shipment_sequence"),
    )
    id = Column(String, primary_key=True)
    shipment_id = Column(String, nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="queued")
    started_at = Column(UTCDateTime())
    completed_at = Column(UTCDateTime())


class CycleWorkOrder(TimestampMixin, Base):
    __tablename__ = "cycle_work_orders"
    id = Column(String, primary_key=True)
    cycle_id = Column(String, nullable=False, unique=True)
    shipment_id = Column(String, nullable=False, index=True)
    outcome = Column(Text, nullable=False)
    acceptance_criteria = Column(JSON)
    status = Column(String, nullable=False, default="draft")


class CycleReceipt(TimestampMixin, Base):
    __tablename__ = "cycle_receipts"
    id = Column(String, primary_key=True)
    cwo_id = Column(String, nullable=False, unique=True)
    shipment_id = Column(String, nullable=False, index=True)
    delivered_outcome = Column(Text, nullable=False)
    evidence = Column(Text)
    verification_notes = Column(Text)
    status = Column(String, nullable=False, default="draft")


class Receipt(TimestampMixin, Base):
    __tablename__ = "receipts"
    id = Column(String, primary_key=True)
    shipment_id = Column(String, nullable=False, unique=True)
    delivered_outcome = Column(Text, nullable=False)
    evidence = Column(Text)
    verification_notes = Column(Text)
    status = Column(String, nullable=False, default="draft")


MODELS = {
    EntityKind.FACTORY: Factory,
    EntityKind.WORKSHOP: Workshop,
    EntityKind.WORKBENCH: Workbench,
    EntityKind.REPO: Repo,
    EntityKind.COMMISSION: Commission,
    EntityKind.SHIPMENT: Shipment,
    EntityKind.TASK: Task,
    EntityKind.PLAN: Plan,
    EntityKind.NOTE: Note,
    EntityKind.INVESTIGATION: Investigation,
    EntityKind.QUESTION: Question,
    EntityKind.CONCLAVE: Conclave,
    EntityKind.TOME: Tome,
    EntityKind.OPERATION: Operation,
    EntityKind.HANDOFF: Handoff,
    EntityKind.MESSAGE: Message,
    EntityKind.PULL_REQUEST: PullRequest,
    EntityKind.APPROVAL: Approval,
    EntityKind.ESCALATION: Escalation,
    EntityKind.TAG: Tag,
    EntityKind.ENTITY_TAG: EntityTag,
    EntityKind.WORKSHOP_LOG: WorkshopLog,
    EntityKind.HOOK_EVENT: HookEvent,
    EntityKind.KENNEL: Kennel,
    EntityKind.PATROL: Patrol,
    EntityKind.STUCK: Stuck,
    EntityKind.CHECK: Check,
    EntityKind.WORK_ORDER: WorkOrder,
    EntityKind.CYCLE: Cycle,
    EntityKind.CYCLE_WORK_ORDER: CycleWorkOrder,
    EntityKind.CYCLE_RECEIPT: CycleReceipt,
    EntityKind.RECEIPT: Receipt,
}


def model_for(kind: EntityKind):
    return MODELS[kind]
