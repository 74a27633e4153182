"""Actor identity resolved once into a tagged type carrying its audit scope."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

import structlog
from sqlalchemy.orm import Session

from .errors import StorageUnavailable
from .kinds import EntityKind
from . import datastore

logger = structlog.get_logger(__name__)

_BENCH = re.compile(r"(?:^|-)BENCH-(\d+)")
_GATE = re.compile(r"(?:^|-)GATE-(\d+)")


class ActorKind(str, enum.Enum):
    ORCHESTRATOR = "orchestrator"
    IMP = "imp"
    GATEHOUSE = "gatehouse"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Actor:
    kind: ActorKind
    actor_id: str | None = None
    workbench_id: str | None = None
    gatehouse_id: str | None = None
    workshop_id: str | None = None

    @property
    def scope(self) -> str | None:
        """Workshop the actor's mutations are attributed to, if any."""
        return self.workshop_id

    @classmethod
    def imp(cls, workbench_id: str, workshop_id: str | None, actor_id: str | None = None) -> "Actor":
        return cls(ActorKind.IMP, actor_id or workbench_id, workbench_id=workbench_id, workshop_id=workshop_id)

    @classmethod
    def gatehouse(cls, gatehouse_id: str, actor_id: str | None = None) -> "Actor":
        return cls(ActorKind.GATEHOUSE, actor_id or gatehouse_id, gatehouse_id=gatehouse_id)

    @classmethod
    def orchestrator(cls, actor_id: str = "ORC") -> "Actor":
        return cls(ActorKind.ORCHESTRATOR, actor_id)


UNKNOWN_ACTOR = Actor(ActorKind.UNKNOWN)


def resolve_actor(db: Session, actor_id: str | None) -> Actor:
    """Build an Actor from an identifier such as ``IMP-BENCH-014`` or ``GOBLIN-GATE-003``.

    Workbench actors resolve to the workbench's workshop. Gatehouse actors
    are orchestrators outside workshop scope and carry none. A workbench that
    cannot be looked up yields an imp without scope rather than an error.
    """

    # purpose: parse actor strings once at actor-creation time instead of per audit call
    # inputs: session for the workbench lookup, raw actor identifier
    # outputs: Actor tagged with its kind and resolved workshop scope
    # status: active
    if not actor_id:
        return UNKNOWN_ACTOR

    bench = _BENCH.search(actor_id)
    if bench:
        workbench_id = f"BENCH-{bench.group(1)}"
        workshop_id = None
        try:
            workbench = datastore.get(db, EntityKind.WORKBENCH, workbench_id)
        except StorageUnavailable as exc:
            logger.warning("actor_scope_unresolved", actor_id=actor_id, error=str(exc))
            workbench = None
        if workbench is not None:
            workshop_id = workbench.workshop_id
        return Actor.imp(workbench_id, workshop_id, actor_id=actor_id)

    gate = _GATE.search(actor_id)
    if gate:
        return Actor.gatehouse(f"GATE-{gate.group(1)}", actor_id=actor_id)

    return Actor.orchestrator(actor_id)
