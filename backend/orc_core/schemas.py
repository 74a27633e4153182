from datetime import datetime
from typing import Optional, Any, Dict, List

from pydantic import BaseModel, ConfigDict

from .kinds import EntityKind


class EntityUpdate(BaseModel):
    """Partial update payload.

    Fields left out of the payload stay unchanged; fields passed explicitly as
    ``None`` are cleared. Callers read the difference through
    ``model_dump(exclude_unset=True)``.
    """

    model_config = ConfigDict(extra="forbid")


class CommissionUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    workshop_id: Optional[str] = None


class ShipmentUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    branch: Optional[str] = None
    repo_id: Optional[str] = None


class TaskUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[str] = None
    conclave_id: Optional[str] = None


class PlanUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    conclave_id: Optional[str] = None


class NoteUpdate(EntityUpdate):
    title: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None
    conclave_id: Optional[str] = None


class InvestigationUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    conclave_id: Optional[str] = None


class QuestionUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    answer: Optional[str] = None
    conclave_id: Optional[str] = None


class ConclaveUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    decision: Optional[str] = None


class TomeUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    conclave_id: Optional[str] = None


class PullRequestUpdate(EntityUpdate):
    title: Optional[str] = None
    description: Optional[str] = None
    number: Optional[int] = None
    url: Optional[str] = None
    branch: Optional[str] = None
    target_branch: Optional[str] = None


class WorkbenchUpdate(EntityUpdate):
    name: Optional[str] = None
    path: Optional[str] = None
    home_branch: Optional[str] = None
    focused_id: Optional[str] = None
    repo_id: Optional[str] = None


class WorkOrderUpdate(EntityUpdate):
    outcome: Optional[str] = None
    acceptance_criteria: Optional[List[str]] = None


class ReceiptUpdate(EntityUpdate):
    delivered_outcome: Optional[str] = None
    evidence: Optional[str] = None
    verification_notes: Optional[str] = None


UPDATE_SCHEMAS: Dict[EntityKind, type[EntityUpdate]] = {
    EntityKind.COMMISSION: CommissionUpdate,
    EntityKind.SHIPMENT: ShipmentUpdate,
    EntityKind.TASK: TaskUpdate,
    EntityKind.PLAN: PlanUpdate,
    EntityKind.NOTE: NoteUpdate,
    EntityKind.INVESTIGATION: InvestigationUpdate,
    EntityKind.QUESTION: QuestionUpdate,
    EntityKind.CONCLAVE: ConclaveUpdate,
    EntityKind.TOME: TomeUpdate,
    EntityKind.PULL_REQUEST: PullRequestUpdate,
    EntityKind.WORKBENCH: WorkbenchUpdate,
    EntityKind.WORK_ORDER: WorkOrderUpdate,
    EntityKind.CYCLE_WORK_ORDER: WorkOrderUpdate,
    EntityKind.RECEIPT: ReceiptUpdate,
    EntityKind.CYCLE_RECEIPT: ReceiptUpdate,
}


class WorkshopLogOut(BaseModel):
    id: str
    workshop_id: Optional[str] = None
    timestamp: datetime
    actor_id: Optional[str] = None
    actor_type: str
    entity_type: str
    entity_id: str
    action: str
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class TagOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class HookEventIn(BaseModel):
    hook_type: str
    decision: str
    payload: Optional[Dict[str, Any]] = None
    cwd: Optional[str] = None
    reason: Optional[str] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
