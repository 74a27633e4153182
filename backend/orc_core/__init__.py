"""Lifecycle, identity and relationship-integrity core for commission work tracking."""

from .errors import (
    AllocationConflict,
    AllocationError,
    DuplicateRelationship,
    InvalidContainment,
    InvalidStatus,
    LifecycleError,
    NotFound,
    ParentNotFound,
    PromotionError,
    StorageUnavailable,
    TerminalMismatch,
    TransitionRefused,
    UnsupportedOperation,
)
from .kinds import EntityKind

__version__ = "0.1.0"
