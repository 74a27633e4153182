"""Single-tag-per-entity annotation."""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import audit, datastore, models
from .actors import Actor
from .errors import DuplicateRelationship, ParentNotFound
from .identifiers import next_id
from .kinds import EntityKind, require_capability


def create_tag(db: Session, name: str, description: str | None = None) -> models.Tag:
    if get_tag_by_name(db, name) is not None:
        raise DuplicateRelationship(f"tag {name!r} already exists", kind=EntityKind.TAG)
    tag = models.Tag(id=next_id(db, EntityKind.TAG), name=name, description=description)
    db.add(tag)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateRelationship(f"tag {name!r} already exists", kind=EntityKind.TAG) from exc
    db.refresh(tag)
    return tag


def get_tag_by_name(db: Session, name: str) -> models.Tag | None:
    return db.query(models.Tag).filter(models.Tag.name == name).first()


def get_entity_tag(db: Session, kind: EntityKind, entity_id: str) -> models.Tag | None:
    link = (
        db.query(models.EntityTag)
        .filter(models.EntityTag.entity_id == entity_id, models.EntityTag.entity_type == kind.value)
        .first()
    )
    if link is None:
        return None
    return db.get(models.Tag, link.tag_id)


def tag_entity(
    db: Session,
    kind: EntityKind,
    entity_id: str,
    tag_id: str,
    actor: Actor | str | None = None,
) -> models.EntityTag:
    """Attach ``tag_id`` to an entity, replacing whatever tag it carried."""

    # purpose: keep exactly one tag per entity; replacement is delete-then-insert in one transaction
    # inputs: taggable kind, entity id, tag id
    # outputs: the new EntityTag edge
    # status: active
    require_capability(kind, "taggable")
    datastore.select_one(db, kind, entity_id)
    if db.get(models.Tag, tag_id) is None:
        raise ParentNotFound(f"tag {tag_id} not found", kind=EntityKind.TAG, entity_id=tag_id)

    previous = get_entity_tag(db, kind, entity_id)
    link_id = next_id(db, EntityKind.ENTITY_TAG)
    try:
        datastore.delete_where(
            db, EntityKind.ENTITY_TAG, commit=False, entity_id=entity_id, entity_type=kind.value
        )
        link = datastore.insert(
            db,
            EntityKind.ENTITY_TAG,
            {"id": link_id, "entity_id": entity_id, "entity_type": kind.value, "tag_id": tag_id},
            commit=False,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateRelationship(
            f"{kind.value} {entity_id} was tagged concurrently", kind=kind, entity_id=entity_id
        ) from exc
    db.refresh(link)
    audit.log(
        db,
        actor,
        kind,
        entity_id,
        "update",
        "tag",
        previous.id if previous is not None else None,
        tag_id,
    )
    return link


def untag_entity(db: Session, kind: EntityKind, entity_id: str, actor: Actor | str | None = None) -> bool:
    previous = get_entity_tag(db, kind, entity_id)
    removed = datastore.delete_where(
        db, EntityKind.ENTITY_TAG, entity_id=entity_id, entity_type=kind.value
    )
    if removed:
        audit.log(db, actor, kind, entity_id, "update", "tag", previous.id if previous else None, None)
    return bool(removed)


def list_by_tag(db: Session, tag_id: str, kind: EntityKind | None = None) -> list[models.EntityTag]:
    query = db.query(models.EntityTag).filter(models.EntityTag.tag_id == tag_id)
    if kind is not None:
        query = query.filter(models.EntityTag.entity_type == kind.value)
    return query.order_by(models.EntityTag.entity_id).all()
