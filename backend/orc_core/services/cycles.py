"""Shipment cycles with their 1:1 work orders and receipts."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .. import datastore, integrity, models
from ..actors import Actor
from ..identifiers import next_sequence
from ..kinds import EntityKind

_SEQUENCE_COUNTER = "cycle_sequence"


def create_cycle(db: Session, shipment_id: str, *, actor: Actor | str | None = None) -> models.Cycle:
    """Append the next numbered cycle to a shipment (1, 2, 3, ... per shipment)."""

    integrity.check_references(db, EntityKind.CYCLE, {"shipment_id": shipment_id})
    sequence = next_sequence(
        db,
        _SEQUENCE_COUNTER,
        shipment_id,
        seed_query=select(func.max(models.Cycle.sequence_number)).where(
            models.Cycle.shipment_id == shipment_id
        ),
    )
    return integrity.create(
        db,
        EntityKind.CYCLE,
        {"shipment_id": shipment_id, "sequence_number": sequence},
        actor=actor,
    )


def list_cycles(db: Session, shipment_id: str) -> list[models.Cycle]:
    return datastore.select_many(db, EntityKind.CYCLE, order_by=("sequence_number",), shipment_id=shipment_id)


def create_cycle_work_order(
    db: Session,
    cycle_id: str,
    outcome: str,
    *,
    acceptance_criteria: Iterable[str] | None = None,
    actor: Actor | str | None = None,
) -> models.CycleWorkOrder:
    cycle = datastore.select_one(db, EntityKind.CYCLE, cycle_id)
    return integrity.create(
        db,
        EntityKind.CYCLE_WORK_ORDER,
        {
            "cycle_id": cycle_id,
            "shipment_id": cycle.shipment_id,
            "outcome": outcome,
            "acceptance_criteria": list(acceptance_criteria or []),
        },
        actor=actor,
    )


def create_cycle_receipt(
    db: Session,
    cwo_id: str,
    delivered_outcome: str,
    *,
    evidence: str | None = None,
    verification_notes: str | None = None,
    actor: Actor | str | None = None,
) -> models.CycleReceipt:
    cwo = datastore.select_one(db, EntityKind.CYCLE_WORK_ORDER, cwo_id)
    return integrity.create(
        db,
        EntityKind.CYCLE_RECEIPT,
        {
            "cwo_id": cwo_id,
            "shipment_id": cwo.shipment_id,
            "delivered_outcome": delivered_outcome,
            "evidence": evidence,
            "verification_notes": verification_notes,
        },
        actor=actor,
    )
