"""
Soft Delete Module - recoverable deletion for platform entities.

Provides mixins, services, and value models implementing the active,
soft-deleted, restored or permanently removed lifecycle.
"""

from .exceptions import (
    GuardRefusedError,
    InvalidItemIdError,
    NotInTrashError,
    OperationNotImplementedError,
    RestoreConflictError,
    TrashError,
    UnknownModuleError,
)
from .mixins import AuditUserMixin, EmbeddedCollectionMixin, SoftDeleteMixin
from .models import Actor, LifecycleOutcome, Operation, TrashFilters, TrashPage
from .services import EmbeddedSoftDeleteService, SoftDeleteService

__all__ = [
    # Mixins
    "SoftDeleteMixin",
    "AuditUserMixin",
    "EmbeddedCollectionMixin",
    # Services
    "SoftDeleteService",
    "EmbeddedSoftDeleteService",
    # Models
    "Actor",
    "Operation",
    "TrashFilters",
    "TrashPage",
    "LifecycleOutcome",
    # Exceptions
    "TrashError",
    "UnknownModuleError",
    "OperationNotImplementedError",
    "InvalidItemIdError",
    "NotInTrashError",
    "RestoreConflictError",
    "GuardRefusedError",
]
