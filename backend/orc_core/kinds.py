"""Closed registry of entity kinds and their static lifecycle configuration."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Mapping

from .errors import InvalidStatus, LifecycleError, UnsupportedOperation

# purpose: replace string switching on entity_type with one table looked up by variant
# inputs: EntityKind members
# outputs: KindSpec rows carrying prefix, padding, state machine, containment and capabilities
# status: active


class EntityKind(str, enum.Enum):
    FACTORY = "factory"
    WORKSHOP = "workshop"
    WORKBENCH = "workbench"
    REPO = "repo"
    COMMISSION = "commission"
    SHIPMENT = "shipment"
    TASK = "task"
    PLAN = "plan"
    NOTE = "note"
    INVESTIGATION = "investigation"
    QUESTION = "question"
    CONCLAVE = "conclave"
    TOME = "tome"
    OPERATION = "operation"
    HANDOFF = "handoff"
    MESSAGE = "message"
    PULL_REQUEST = "pr"
    APPROVAL = "approval"
    ESCALATION = "escalation"
    TAG = "tag"
    ENTITY_TAG = "entity_tag"
    WORKSHOP_LOG = "workshop_log"
    HOOK_EVENT = "hook_event"
    KENNEL = "kennel"
    PATROL = "patrol"
    STUCK = "stuck"
    CHECK = "check"
    WORK_ORDER = "work_order"
    CYCLE = "cycle"
    CYCLE_WORK_ORDER = "cycle_work_order"
    CYCLE_RECEIPT = "cycle_receipt"
    RECEIPT = "receipt"


@dataclass(frozen=True, slots=True)
class ParentRef:
    """A containment reference from a child column to a parent kind."""

    field: str
    kind: EntityKind
    required: bool = False


@dataclass(frozen=True, slots=True)
class KindSpec:
    prefix: str
    table: str
    width: int = 3
    initial_status: str | None = None
    statuses: frozenset[str] = frozenset()
    # terminal status -> completion field stamped on first arrival (None: no stamp)
    terminal: Mapping[str, str | None] = field(default_factory=dict)
    started: tuple[str, str] | None = None
    # target status -> statuses it may be entered from (absent: from anywhere)
    allowed_from: Mapping[str, frozenset[str]] = field(default_factory=dict)
    # statuses a pinned entity may not enter
    pin_guarded: frozenset[str] = frozenset()
    parents: tuple[ParentRef, ...] = ()
    exclusive_containers: tuple[str, ...] = ()
    aggregator: str | None = None
    one_to_one: str | None = None
    scope_field: str | None = None
    assignable: bool = False
    pinnable: bool = False
    taggable: bool = False
    promotable: bool = False

    @property
    def has_status(self) -> bool:
        return self.initial_status is not None

    @property
    def terminal_statuses(self) -> frozenset[str]:
        return frozenset(self.terminal)

    @property
    def references(self) -> tuple[ParentRef, ...]:
        """Containment parents plus the aggregator reference, if any."""
        if self.aggregator:
            return self.parents + (ParentRef(self.aggregator, EntityKind.CONCLAVE),)
        return self.parents

    def reference(self, field_name: str) -> ParentRef | None:
        for ref in self.references:
            if ref.field == field_name:
                return ref
        return None

    def parents_of_kind(self, kind: EntityKind) -> list[ParentRef]:
        return [ref for ref in self.references if ref.kind is kind]


def _statuses(*values: str) -> frozenset[str]:
    return frozenset(values)


_COMMISSION = ParentRef("commission_id", EntityKind.COMMISSION, required=True)
_SHIPMENT = ParentRef("shipment_id", EntityKind.SHIPMENT, required=True)
_ARCHIVABLE = _statuses("active", "archived")
_REVIEWED = _statuses("draft", "active", "complete")
_VERIFIED = _statuses("draft", "submitted", "verified")
_RECEIPT_FLOW = {"submitted": _statuses("draft"), "verified": _statuses("submitted")}

KIND_SPECS: dict[EntityKind, KindSpec] = {
    EntityKind.FACTORY: KindSpec(
        prefix="FACT",
        table="factories",
        initial_status="active",
        statuses=_ARCHIVABLE,
    ),
    EntityKind.WORKSHOP: KindSpec(
        prefix="WORK",
        table="workshops",
        initial_status="active",
        statuses=_ARCHIVABLE,
        parents=(ParentRef("factory_id", EntityKind.FACTORY, required=True),),
    ),
    EntityKind.WORKBENCH: KindSpec(
        prefix="BENCH",
        table="workbenches",
        initial_status="active",
        statuses=_ARCHIVABLE,
        parents=(
            ParentRef("workshop_id", EntityKind.WORKSHOP, required=True),
            ParentRef("repo_id", EntityKind.REPO),
        ),
    ),
    EntityKind.REPO: KindSpec(
        prefix="REPO",
        table="repos",
        initial_status="active",
        statuses=_ARCHIVABLE,
    ),
    EntityKind.COMMISSION: KindSpec(
        prefix="COMM",
        table="commissions",
        initial_status="active",
        statuses=_statuses("active", "paused", "complete", "archived"),
        terminal={"complete": "completed_at"},
        started=("active", "started_at"),
        allowed_from={"paused": _statuses("active"), "active": _statuses("paused")},
        pin_guarded=_statuses("complete", "archived"),
        parents=(ParentRef("workshop_id", EntityKind.WORKSHOP),),
        pinnable=True,
    ),
    EntityKind.SHIPMENT: KindSpec(
        prefix="SHIP",
        table="shipments",
        initial_status="draft",
        statuses=_statuses("draft", "ready", "in_progress", "paused", "complete"),
        terminal={"complete": "completed_at"},
        allowed_from={"paused": _statuses("ready", "in_progress")},
        pin_guarded=_statuses("complete"),
        parents=(_COMMISSION, ParentRef("repo_id", EntityKind.REPO)),
        assignable=True,
        pinnable=True,
        taggable=True,
    ),
    EntityKind.TASK: KindSpec(
        prefix="TASK",
        table="tasks",
        initial_status="ready",
        statuses=_statuses("ready", "in_progress", "paused", "blocked", "complete"),
        terminal={"complete": "completed_at"},
        started=("in_progress", "claimed_at"),
        allowed_from={"paused": _statuses("in_progress")},
        pin_guarded=_statuses("complete"),
        parents=(
            _COMMISSION,
            ParentRef("shipment_id", EntityKind.SHIPMENT),
            ParentRef("investigation_id", EntityKind.INVESTIGATION),
            ParentRef("tome_id", EntityKind.TOME),
        ),
        exclusive_containers=("shipment_id", "investigation_id", "tome_id"),
        aggregator="conclave_id",
        assignable=True,
        pinnable=True,
        taggable=True,
        promotable=True,
    ),
    EntityKind.PLAN: KindSpec(
        prefix="PLAN",
        table="plans",
        initial_status="draft",
        statuses=_statuses("draft", "pending_review", "approved", "escalated", "superseded"),
        terminal={"approved": "approved_at"},
        allowed_from={
            "pending_review": _statuses("draft"),
            "approved": _statuses("draft", "pending_review"),
            "escalated": _statuses("draft", "pending_review"),
            "superseded": _statuses("draft", "pending_review", "approved", "escalated"),
        },
        pin_guarded=_statuses("approved"),
        parents=(
            _COMMISSION,
            ParentRef("shipment_id", EntityKind.SHIPMENT),
            ParentRef("cycle_id", EntityKind.CYCLE),
            ParentRef("supersedes_plan_id", EntityKind.PLAN),
        ),
        aggregator="conclave_id",
        pinnable=True,
        taggable=True,
        promotable=True,
    ),
    EntityKind.NOTE: KindSpec(
        prefix="NOTE",
        table="notes",
        initial_status="open",
        statuses=_statuses("open", "in_flight", "resolved", "closed"),
        terminal={"closed": "closed_at"},
        parents=(
            _COMMISSION,
            ParentRef("shipment_id", EntityKind.SHIPMENT),
            ParentRef("investigation_id", EntityKind.INVESTIGATION),
            ParentRef("tome_id", EntityKind.TOME),
        ),
        exclusive_containers=("shipment_id", "investigation_id", "tome_id"),
        aggregator="conclave_id",
        pinnable=True,
        taggable=True,
        promotable=True,
    ),
    EntityKind.INVESTIGATION: KindSpec(
        prefix="INV",
        table="investigations",
        initial_status="open",
        statuses=_statuses("open", "in_progress", "resolved", "closed"),
        terminal={"resolved": "resolved_at", "closed": "resolved_at"},
        pin_guarded=_statuses("resolved", "closed"),
        parents=(
            _COMMISSION,
            ParentRef("shipment_id", EntityKind.SHIPMENT),
            ParentRef("conclave_id", EntityKind.CONCLAVE),
        ),
        assignable=True,
        pinnable=True,
        promotable=True,
    ),
    EntityKind.QUESTION: KindSpec(
        prefix="Q",
        table="questions",
        initial_status="open",
        statuses=_statuses("open", "answered", "closed"),
        terminal={"answered": "answered_at"},
        allowed_from={"answered": _statuses("open")},
        pin_guarded=_statuses("answered"),
        parents=(
            _COMMISSION,
            ParentRef("shipment_id", EntityKind.SHIPMENT),
            ParentRef("investigation_id", EntityKind.INVESTIGATION),
        ),
        exclusive_containers=("shipment_id", "investigation_id"),
        aggregator="conclave_id",
        pinnable=True,
        promotable=True,
    ),
    EntityKind.CONCLAVE: KindSpec(
        prefix="CON",
        table="conclaves",
        initial_status="open",
        statuses=_statuses("open", "paused", "closed"),
        terminal={"closed": "decided_at"},
        allowed_from={"paused": _statuses("open"), "open": _statuses("paused")},
        pin_guarded=_statuses("closed"),
        parents=(_COMMISSION, ParentRef("shipment_id", EntityKind.SHIPMENT)),
        assignable=True,
        pinnable=True,
    ),
    EntityKind.TOME: KindSpec(
        prefix="TOME",
        table="tomes",
        initial_status="open",
        statuses=_statuses("open", "closed"),
        terminal={"closed": "closed_at"},
        parents=(_COMMISSION, ParentRef("conclave_id", EntityKind.CONCLAVE)),
        assignable=True,
        pinnable=True,
        taggable=True,
    ),
    EntityKind.OPERATION: KindSpec(
        prefix="OP",
        table="operations",
        initial_status="ready",
        statuses=_statuses("ready", "in_progress", "complete"),
        terminal={"complete": "completed_at"},
        parents=(_COMMISSION,),
    ),
    EntityKind.HANDOFF: KindSpec(
        prefix="HO",
        table="handoffs",
        parents=(
            ParentRef("active_commission_id", EntityKind.COMMISSION),
            ParentRef("active_workbench_id", EntityKind.WORKBENCH),
        ),
    ),
    EntityKind.MESSAGE: KindSpec(
        prefix="MSG",
        table="messages",
        parents=(_COMMISSION,),
        scope_field="commission_id",
    ),
    EntityKind.PULL_REQUEST: KindSpec(
        prefix="PR",
        table="prs",
        initial_status="open",
        statuses=_statuses("open", "draft", "approved", "merged", "closed"),
        terminal={"merged": "merged_at", "closed": "closed_at"},
        allowed_from={
            "draft": _statuses("open"),
            "open": _statuses("draft"),
            "approved": _statuses("open"),
            "merged": _statuses("open", "approved"),
            "closed": _statuses("open", "approved"),
        },
        parents=(
            _SHIPMENT,
            ParentRef("repo_id", EntityKind.REPO, required=True),
            _COMMISSION,
        ),
        one_to_one="shipment_id",
        assignable=True,
    ),
    EntityKind.APPROVAL: KindSpec(
        prefix="APPR",
        table="approvals",
        parents=(ParentRef("plan_id", EntityKind.PLAN, required=True),),
        one_to_one="plan_id",
    ),
    EntityKind.ESCALATION: KindSpec(
        prefix="ESC",
        table="escalations",
        initial_status="pending",
        statuses=_statuses("pending", "resolved", "dismissed"),
        terminal={"resolved": "resolved_at", "dismissed": "resolved_at"},
        allowed_from={"resolved": _statuses("pending"), "dismissed": _statuses("pending")},
        parents=(
            ParentRef("plan_id", EntityKind.PLAN, required=True),
            ParentRef("approval_id", EntityKind.APPROVAL),
        ),
    ),
    EntityKind.TAG: KindSpec(prefix="TAG", table="tags"),
    EntityKind.ENTITY_TAG: KindSpec(
        prefix="ET",
        table="entity_tags",
        parents=(ParentRef("tag_id", EntityKind.TAG, required=True),),
    ),
    EntityKind.WORKSHOP_LOG: KindSpec(
        prefix="WL",
        table="workshop_logs",
        width=4,
        parents=(ParentRef("workshop_id", EntityKind.WORKSHOP),),
    ),
    EntityKind.HOOK_EVENT: KindSpec(
        prefix="HEV",
        table="hook_events",
        width=4,
        parents=(ParentRef("workbench_id", EntityKind.WORKBENCH, required=True),),
    ),
    EntityKind.KENNEL: KindSpec(
        prefix="KENNEL",
        table="kennels",
        initial_status="vacant",
        statuses=_statuses("vacant", "occupied", "away"),
        parents=(ParentRef("workbench_id", EntityKind.WORKBENCH, required=True),),
        one_to_one="workbench_id",
    ),
    EntityKind.PATROL: KindSpec(
        prefix="PATROL",
        table="patrols",
        initial_status="active",
        statuses=_statuses("active", "completed", "escalated"),
        terminal={"completed": "ended_at", "escalated": "ended_at"},
        allowed_from={"completed": _statuses("active"), "escalated": _statuses("active")},
        parents=(ParentRef("kennel_id", EntityKind.KENNEL, required=True),),
    ),
    EntityKind.STUCK: KindSpec(
        prefix="STUCK",
        table="stucks",
        initial_status="open",
        statuses=_statuses("open", "resolved", "escalated"),
        terminal={"resolved": "resolved_at"},
        parents=(ParentRef("patrol_id", EntityKind.PATROL, required=True),),
    ),
    EntityKind.CHECK: KindSpec(
        prefix="CHECK",
        table="checks",
        parents=(
            ParentRef("patrol_id", EntityKind.PATROL, required=True),
            ParentRef("stuck_id", EntityKind.STUCK),
        ),
    ),
    EntityKind.WORK_ORDER: KindSpec(
        prefix="WO",
        table="work_orders",
        initial_status="draft",
        statuses=_REVIEWED,
        terminal={"complete": None},
        parents=(_SHIPMENT,),
        one_to_one="shipment_id",
    ),
    EntityKind.CYCLE: KindSpec(
        prefix="CYC",
        table="cycles",
        initial_status="queued",
        statuses=_statuses("queued", "active", "complete"),
        terminal={"complete": "completed_at"},
        started=("active", "started_at"),
        allowed_from={"active": _statuses("queued"), "complete": _statuses("active")},
        parents=(_SHIPMENT,),
    ),
    EntityKind.CYCLE_WORK_ORDER: KindSpec(
        prefix="CWO",
        table="cycle_work_orders",
        initial_status="draft",
        statuses=_REVIEWED,
        terminal={"complete": None},
        parents=(ParentRef("cycle_id", EntityKind.CYCLE, required=True), _SHIPMENT),
        one_to_one="cycle_id",
    ),
    EntityKind.CYCLE_RECEIPT: KindSpec(
        prefix="CREC",
        table="cycle_receipts",
        initial_status="draft",
        statuses=_VERIFIED,
        terminal={"verified": None},
        allowed_from=_RECEIPT_FLOW,
        parents=(ParentRef("cwo_id", EntityKind.CYCLE_WORK_ORDER, required=True), _SHIPMENT),
        one_to_one="cwo_id",
    ),
    EntityKind.RECEIPT: KindSpec(
        prefix="REC",
        table="receipts",
        initial_status="draft",
        statuses=_VERIFIED,
        terminal={"verified": None},
        allowed_from=_RECEIPT_FLOW,
        parents=(_SHIPMENT,),
        one_to_one="shipment_id",
    ),
}

_KIND_BY_PREFIX = {spec.prefix: kind for kind, spec in KIND_SPECS.items()}

# kinds whose discussion items may be promoted into first-class work
PROMOTION_ORIGINS = frozenset(
    {EntityKind.INVESTIGATION, EntityKind.CONCLAVE, EntityKind.NOTE, EntityKind.QUESTION}
)


def spec_for(kind: EntityKind) -> KindSpec:
    return KIND_SPECS[kind]


def kind_for_identifier(identifier: str) -> EntityKind:
    """Resolve the kind of an identifier from its prefix."""

    prefix = identifier.split("-", 1)[0]
    try:
        return _KIND_BY_PREFIX[prefix]
    except KeyError:
        raise LifecycleError(f"unrecognised identifier {identifier!r}", entity_id=identifier) from None


def validate_status(kind: EntityKind, status: str) -> None:
    spec = KIND_SPECS[kind]
    if not spec.has_status:
        raise UnsupportedOperation(f"{kind.value} has no status lifecycle", kind=kind)
    if status not in spec.statuses:
        allowed = ", ".join(sorted(spec.statuses))
        raise InvalidStatus(
            f"status {status!r} is not valid for {kind.value} (expected one of: {allowed})",
            kind=kind,
        )


def is_terminal(kind: EntityKind, status: str) -> bool:
    return status in KIND_SPECS[kind].terminal


def require_capability(kind: EntityKind, capability: str) -> KindSpec:
    spec = KIND_SPECS[kind]
    if not getattr(spec, capability):
        raise UnsupportedOperation(f"{kind.value} is not {capability}", kind=kind)
    return spec
