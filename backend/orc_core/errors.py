"""Error taxonomy shared by the lifecycle, identity and integrity layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .kinds import EntityKind

# purpose: give every failure a kind and identifier so callers can trace it
# status: active


class LifecycleError(RuntimeError):
    """Base error for core operations."""

    def __init__(
        self,
        message: str,
        *,
        kind: "EntityKind | None" = None,
        entity_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.entity_id = entity_id


class NotFound(LifecycleError):
    """Raised when an operation targets an entity that does not exist."""


class ParentNotFound(NotFound):
    """Raised when a create or assignment references a missing container."""


class DuplicateRelationship(LifecycleError):
    """Raised when a 1:1 owner already has its dependent."""


class AllocationConflict(LifecycleError):
    """Raised when identifier allocation keeps colliding after bounded retries."""


class StorageUnavailable(LifecycleError):
    """Raised when the datastore cannot be reached; callers retry with backoff."""


class AllocationError(StorageUnavailable):
    """Raised when the identifier allocator cannot reach the datastore."""


class InvalidStatus(LifecycleError):
    """Raised when a status is not part of the kind's vocabulary."""


class TransitionRefused(InvalidStatus):
    """Raised when the current status or the pinned flag forbids a move."""


class TerminalMismatch(LifecycleError):
    """Raised when a caller's terminal assertion disagrees with the kind table."""


class InvalidContainment(LifecycleError):
    """Raised when an entity would sit in more than one exclusive container."""


class PromotionError(LifecycleError):
    """Raised when provenance cannot be recorded."""


class UnsupportedOperation(LifecycleError):
    """Raised when a kind lacks the capability an operation needs."""
