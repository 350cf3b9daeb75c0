"""
Lifecycle operations dispatcher.

Resolves restore and permanent-delete requests through the module registry
to the module's lifecycle service, then audits and broadcasts successful
outcomes. Module services know nothing about auditing.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from ..audit_trail.broadcast import Broadcaster, tenant_room
from ..audit_trail.classify import classify_module
from ..audit_trail.logger import AuditLogger
from ..audit_trail.models import ActionKind
from ..database import Database
from ..registry import ModuleDescriptor, ModuleRegistry
from ..soft_delete.exceptions import InvalidItemIdError, OperationNotImplementedError
from ..soft_delete.models import Actor, LifecycleOutcome, Operation

logger = logging.getLogger(__name__)

TRASH_UPDATED_EVENT = "trashUpdated"
TRASH_ROOM = "trash"


def validate_item_id(item_id: Any) -> str:
    """Return the canonical string form of a UUID item id."""
    try:
        return str(uuid.UUID(str(item_id)))
    except (ValueError, TypeError, AttributeError):
        raise InvalidItemIdError(str(item_id)) from None


class LifecycleDispatcher:
    """
    Entry point for restore and permanent-delete requests.

    Each call:

    1. looks the module up in the registry (``UnknownModuleError``);
    2. checks the module supports the operation
       (``OperationNotImplementedError``);
    3. validates the item id (``InvalidItemIdError``);
    4. delegates to the module's service, surfacing its errors unchanged;
    5. on success, records an audit entry and broadcasts ``trashUpdated``.

    Anonymous calls (no actor) still transition the entity. Whether they are
    audited is up to the audit logger's ``require_actor`` setting.
    """

    def __init__(
        self,
        database: Database,
        registry: ModuleRegistry,
        audit_logger: Optional[AuditLogger] = None,
        broadcaster: Optional[Broadcaster] = None,
    ):
        self.database = database
        self.registry = registry
        self.audit_logger = audit_logger
        self.broadcaster = broadcaster

    async def restore(
        self, module_key: str, item_id: str, actor: Optional[Actor] = None
    ) -> LifecycleOutcome:
        """Restore one trashed item."""
        return await self._dispatch(module_key, Operation.RESTORE, actor, item_id)

    async def permanent_delete(
        self, module_key: str, item_id: str, actor: Optional[Actor] = None
    ) -> LifecycleOutcome:
        """Permanently remove one trashed item."""
        return await self._dispatch(module_key, Operation.PERMANENT_DELETE, actor, item_id)

    async def restore_all(
        self, module_key: str, actor: Optional[Actor] = None
    ) -> LifecycleOutcome:
        """Restore every trashed item of a module."""
        return await self._dispatch(module_key, Operation.RESTORE_ALL, actor)

    async def permanent_delete_all(
        self, module_key: str, actor: Optional[Actor] = None
    ) -> LifecycleOutcome:
        """Permanently remove every trashed item of a module."""
        return await self._dispatch(module_key, Operation.PERMANENT_DELETE_ALL, actor)

    async def _dispatch(
        self,
        module_key: str,
        operation: Operation,
        actor: Optional[Actor],
        item_id: Optional[str] = None,
    ) -> LifecycleOutcome:
        descriptor = self.registry.get_module(module_key)
        if not descriptor.supports(operation) or descriptor.service is None:
            raise OperationNotImplementedError(descriptor.key, operation.value)

        service = descriptor.service(self.database, descriptor, actor)
        if operation.is_bulk:
            outcome = await getattr(service, operation.value)()
        else:
            item_id = validate_item_id(item_id)
            outcome = await getattr(service, operation.value)(item_id)

        if outcome.succeeded:
            self._audit(descriptor, operation, outcome, actor)
            await self._broadcast(descriptor, outcome, actor)
        return outcome

    def _audit(
        self,
        descriptor: ModuleDescriptor,
        operation: Operation,
        outcome: LifecycleOutcome,
        actor: Optional[Actor],
    ) -> None:
        if self.audit_logger is None:
            return

        context: Dict[str, Any] = {
            "module_key": descriptor.key,
            "operation": operation.value,
            "affected": outcome.affected,
        }
        if outcome.skipped:
            context["skipped"] = list(outcome.skipped)

        self.audit_logger.record(
            ActionKind.RESTORE if operation.is_restore else ActionKind.DELETE,
            actor_id=actor.id if actor else None,
            subject_kind=descriptor.subject_kind,
            subject_id=None if operation.is_bulk else outcome.item_id,
            tenant_id=outcome.tenant_id,
            module=descriptor.label or classify_module(descriptor.key),
            context=context,
        )

    async def _broadcast(
        self,
        descriptor: ModuleDescriptor,
        outcome: LifecycleOutcome,
        actor: Optional[Actor],
    ) -> None:
        if self.broadcaster is None:
            return

        room = tenant_room(outcome.tenant_id) if outcome.tenant_id else TRASH_ROOM
        payload = {
            "module": descriptor.key,
            "operation": outcome.operation,
            "item_id": outcome.item_id,
            "affected": outcome.affected,
            "actor_id": actor.id if actor else None,
        }
        try:
            await self.broadcaster.publish(room, TRASH_UPDATED_EVENT, payload)
        except Exception:
            logger.warning("Failed to broadcast trash update for %s", descriptor.key, exc_info=True)
