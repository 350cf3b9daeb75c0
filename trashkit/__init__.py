"""
trashkit - Soft delete lifecycle, trash registry and activity audit trail.

This toolkit provides the cross-cutting data lifecycle of the event
engagement platform: every entity moves through active, soft-deleted and
then restored or permanently removed states, the trash of every module can
be listed from one place, and every lifecycle action leaves an activity log
entry without slowing down the caller.

Key Features
------------
* **Soft Delete**: Uniform ``is_deleted``/``deleted_at``/``deleted_by`` lifecycle
  with actor attribution on creation and update
* **Module Registry**: Immutable table describing how each module's trash is
  queried and which lifecycle operations it supports
* **Trash Query Engine**: Flat, joined and embedded query strategies behind
  one listing and counting interface
* **Lifecycle Dispatcher**: Restore and permanent delete routed by module key,
  audited and broadcast on success
* **Audit Trail**: Fire-and-forget activity logging with subject name
  resolution and live broadcast

Quick Start
-----------
>>> from trashkit import Actor, TrashKit, TrashKitConfig
>>>
>>> kit = TrashKit(TrashKitConfig(database_url="sqlite+aiosqlite:///./demo.db"))
>>> await kit.init()
>>>
>>> admin = Actor(id=user_id, tenant_id=business_id)
>>> pages = await kit.trash.list_deleted("poll", page=1)
>>> outcome = await kit.dispatcher.restore("poll", poll_id, admin)
>>> await kit.close()
"""

__version__ = "1.0.0"

from .app import TrashKit
from .audit_trail import ActionKind, AuditLogger, EventHub, ModuleLabel, SubjectKind
from .config import TrashKitConfig, configure, get_config, set_config
from .database import Database
from .registry import ModuleDescriptor, ModuleRegistry, QueryStrategy
from .soft_delete import (
    Actor,
    AuditUserMixin,
    LifecycleOutcome,
    SoftDeleteMixin,
    SoftDeleteService,
    TrashError,
    TrashFilters,
)
from .trash import LifecycleDispatcher, TrashQueryEngine

__all__ = [
    # Application
    "TrashKit",
    "Database",
    # Soft Delete
    "SoftDeleteMixin",
    "AuditUserMixin",
    "SoftDeleteService",
    "Actor",
    "TrashFilters",
    "LifecycleOutcome",
    "TrashError",
    # Registry
    "ModuleDescriptor",
    "ModuleRegistry",
    "QueryStrategy",
    # Trash
    "TrashQueryEngine",
    "LifecycleDispatcher",
    # Audit Trail
    "AuditLogger",
    "EventHub",
    "ActionKind",
    "SubjectKind",
    "ModuleLabel",
    # Configuration
    "TrashKitConfig",
    "get_config",
    "set_config",
    "configure",
]
