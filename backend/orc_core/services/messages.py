"""Commission-scoped mail between agents."""

from __future__ import annotations

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from .. import datastore, integrity, models
from ..actors import Actor
from ..kinds import EntityKind


def send_message(
    db: Session,
    commission_id: str,
    sender: str,
    recipient: str,
    subject: str,
    body: str,
    *,
    actor: Actor | str | None = None,
) -> models.Message:
    """Create a message numbered within its commission (``MSG-COMM-001-001``)."""

    return integrity.create(
        db,
        EntityKind.MESSAGE,
        {
            "commission_id": commission_id,
            "sender": sender,
            "recipient": recipient,
            "subject": subject,
            "body": body,
        },
        actor=actor,
    )


def mark_read(db: Session, message_id: str) -> models.Message:
    message = datastore.select_one(db, EntityKind.MESSAGE, message_id)
    if not message.read:
        datastore.update_where(db, EntityKind.MESSAGE, {"read": True}, id=message_id)
        db.refresh(message)
    return message


def list_messages(db: Session, recipient: str, *, unread_only: bool = False) -> list[models.Message]:
    filters = {"recipient": recipient}
    if unread_only:
        filters["read"] = False
    return datastore.select_many(db, EntityKind.MESSAGE, **filters)


def get_conversation(db: Session, agent_a: str, agent_b: str) -> list[models.Message]:
    return (
        db.query(models.Message)
        .filter(
            or_(
                and_(models.Message.sender == agent_a, models.Message.recipient == agent_b),
                and_(models.Message.sender == agent_b, models.Message.recipient == agent_a),
            )
        )
        .order_by(models.Message.created_at, models.Message.id)
        .all()
    )


def unread_count(db: Session, recipient: str) -> int:
    return datastore.count(db, EntityKind.MESSAGE, recipient=recipient, read=False)
