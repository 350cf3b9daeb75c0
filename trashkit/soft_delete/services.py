"""
Service layer for trash lifecycle operations.

Implements restore, permanent delete and their bulk variants once, driven by
a registry descriptor, so modules do not re-implement them. Modules with
special rules subclass ``SoftDeleteService`` and point their registry row at
the subclass.
"""

import logging
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Database
from .exceptions import GuardRefusedError, NotInTrashError, RestoreConflictError
from .mixins import AuditUserMixin, EmbeddedCollectionMixin
from .models import Actor, LifecycleOutcome, Operation

if TYPE_CHECKING:
    from ..registry import ModuleDescriptor

logger = logging.getLogger(__name__)


class SoftDeleteService:
    """
    Generic trash lifecycle routines for one registry entry.

    Every query is narrowed to the descriptor's condition, to its join
    condition when the module is joined, and to the actor's business when the
    actor belongs to one.
    """

    def __init__(
        self,
        database: Database,
        descriptor: "ModuleDescriptor",
        actor: Optional[Actor] = None,
    ):
        """
        Initialize the service.

        Args:
            database: Database providing sessions
            descriptor: Registry row of the module being operated on
            actor: Acting user, None for anonymous callers
        """
        self.database = database
        self.descriptor = descriptor
        self.actor = actor

    @property
    def entity(self) -> Any:
        return self.descriptor.entity

    @property
    def actor_id(self) -> Optional[str]:
        return self.actor.id if self.actor else None

    def scope(self) -> Tuple[Any, ...]:
        """Criteria limiting statements to this module and actor."""
        criteria = list(self.descriptor.where_condition())

        join = self.descriptor.join
        if join is not None and join.condition:
            related_key = getattr(join.related, join.related_key)
            related = select(related_key).where(
                *[getattr(join.related, k) == v for k, v in join.condition.items()]
            )
            criteria.append(getattr(self.entity, join.local_key).in_(related))

        tenant_field = self.descriptor.tenant_field
        if self.actor is not None and self.actor.tenant_id and tenant_field:
            criteria.append(getattr(self.entity, tenant_field) == self.actor.tenant_id)

        return tuple(criteria)

    def tenant_of(self, record: Any) -> Optional[str]:
        tenant_field = self.descriptor.tenant_field
        if tenant_field:
            value = getattr(record, tenant_field, None)
            if value is not None:
                return str(value)
        return self.actor.tenant_id if self.actor else None

    def outcome(self, operation: Operation, message: str, **kwargs: Any) -> LifecycleOutcome:
        kwargs.setdefault("tenant_id", self.actor.tenant_id if self.actor else None)
        return LifecycleOutcome(
            message=message,
            module=self.descriptor.key,
            operation=operation,
            **kwargs,
        )

    async def _get_trashed(self, session: AsyncSession, item_id: str) -> Any:
        stmt = self.entity.select_deleted().where(
            self.entity.id == item_id, *self.scope()
        )
        record = (await session.scalars(stmt)).first()
        if record is None:
            raise NotInTrashError(
                f"{self.descriptor.name} not found in trash", entity_id=item_id
            )
        return record

    async def _all_trashed(self, session: AsyncSession) -> List[Any]:
        records = await self.entity.find_deleted(session, *self.scope())
        if not records:
            raise NotInTrashError(f"No {self.descriptor.name} items found in trash")
        return records

    async def _check_restore(self, session: AsyncSession, record: Any) -> None:
        """Raise RestoreConflictError when the record cannot become active."""
        conflicts = await record.find_active_conflicts(session)
        if conflicts:
            fields = ", ".join(conflicts[0])
            raise RestoreConflictError(
                f"Cannot restore: {fields} already in use", entity_id=str(record.id)
            )

        guard = self.descriptor.restore_guard
        if guard is not None:
            refusal = await guard(session, record)
            if refusal:
                raise RestoreConflictError(refusal, entity_id=str(record.id))

    async def _check_purge(self, session: AsyncSession, record: Any) -> None:
        guard = self.descriptor.purge_guard
        if guard is not None:
            refusal = await guard(session, record)
            if refusal:
                raise GuardRefusedError(refusal, entity_id=str(record.id))

    def _restore_record(self, record: Any) -> None:
        record.restore()
        if isinstance(record, AuditUserMixin):
            record.stamp_update(self.actor_id)

    async def _purge_record(self, session: AsyncSession, record: Any) -> None:
        for cascade in self.descriptor.cascades:
            dependents = await session.scalars(
                select(cascade.entity).where(
                    getattr(cascade.entity, cascade.foreign_key) == record.id
                )
            )
            for dependent in dependents.all():
                await session.delete(dependent)
        await session.delete(record)

    async def restore(self, item_id: str) -> LifecycleOutcome:
        """
        Restore one trashed record.

        Raises:
            NotInTrashError: The record is not in this module's trash
            RestoreConflictError: An active record holds the same unique values
        """
        async with self.database.session() as session:
            record = await self._get_trashed(session, item_id)
            await self._check_restore(session, record)
            self._restore_record(record)
            await session.flush()
            data = record.to_dict()

        logger.info("Restored %s %s", self.descriptor.key, item_id)
        return self.outcome(
            Operation.RESTORE,
            f"{self.descriptor.name} restored",
            item_id=item_id,
            affected=1,
            tenant_id=self.tenant_of(record),
            data=data,
        )

    async def permanent_delete(self, item_id: str) -> LifecycleOutcome:
        """
        Permanently remove one trashed record and its declared dependents.

        Raises:
            NotInTrashError: The record is not in this module's trash
            GuardRefusedError: The module refuses to remove the record
        """
        async with self.database.session() as session:
            record = await self._get_trashed(session, item_id)
            await self._check_purge(session, record)
            tenant_id = self.tenant_of(record)
            await self._purge_record(session, record)

        logger.info("Permanently deleted %s %s", self.descriptor.key, item_id)
        return self.outcome(
            Operation.PERMANENT_DELETE,
            f"{self.descriptor.name} permanently deleted",
            item_id=item_id,
            affected=1,
            tenant_id=tenant_id,
        )

    async def restore_all(self) -> LifecycleOutcome:
        """
        Restore every trashed record of the module, best effort.

        Records that would collide with an active record, including one
        restored earlier in the same call, are skipped and reported.
        """
        restored = 0
        skipped: List[str] = []

        async with self.database.session() as session:
            for record in await self._all_trashed(session):
                try:
                    await self._check_restore(session, record)
                except RestoreConflictError as exc:
                    logger.info("Skipping %s %s: %s", self.descriptor.key, record.id, exc)
                    skipped.append(str(record.id))
                    continue
                self._restore_record(record)
                await session.flush()
                restored += 1

        return self.outcome(
            Operation.RESTORE_ALL,
            f"Restored {restored} {self.descriptor.name} items",
            affected=restored,
            skipped=skipped,
        )

    async def permanent_delete_all(self) -> LifecycleOutcome:
        """Permanently remove every trashed record the module's guard allows."""
        removed = 0
        skipped: List[str] = []

        async with self.database.session() as session:
            for record in await self._all_trashed(session):
                try:
                    await self._check_purge(session, record)
                except GuardRefusedError as exc:
                    logger.info("Skipping %s %s: %s", self.descriptor.key, record.id, exc)
                    skipped.append(str(record.id))
                    continue
                await self._purge_record(session, record)
                removed += 1

        return self.outcome(
            Operation.PERMANENT_DELETE_ALL,
            f"Permanently deleted {removed} {self.descriptor.name} items",
            affected=removed,
            skipped=skipped,
        )


class EmbeddedSoftDeleteService(SoftDeleteService):
    """
    Lifecycle routines for children embedded in a parent's JSON array.

    The parent is located by the child id; the parent's ``updated_by`` is
    stamped on every change.
    """

    @property
    def collection(self) -> str:
        embedded = self.descriptor.embedded
        if embedded is None:
            raise ValueError(f"Module {self.descriptor.key!r} has no embedded collection")
        return embedded.collection

    async def _parents(self, session: AsyncSession) -> List[EmbeddedCollectionMixin]:
        stmt = select(self.entity).where(*self.scope())
        return list((await session.scalars(stmt)).all())

    async def _find_trashed_child(
        self, session: AsyncSession, item_id: str
    ) -> Tuple[Any, dict]:
        for parent in await self._parents(session):
            element = parent.find_embedded(self.collection, item_id)
            if element is not None and element.get("is_deleted"):
                return parent, element
        raise NotInTrashError(
            f"{self.descriptor.name} not found in trash", entity_id=item_id
        )

    def _touch(self, parent: Any) -> None:
        if isinstance(parent, AuditUserMixin):
            parent.set_audit_user(self.actor_id)

    async def restore(self, item_id: str) -> LifecycleOutcome:
        async with self.database.session() as session:
            parent, _ = await self._find_trashed_child(session, item_id)
            parent.restore_embedded(self.collection, item_id)
            self._touch(parent)
            data = parent.find_embedded(self.collection, item_id)
            tenant_id = self.tenant_of(parent)

        return self.outcome(
            Operation.RESTORE,
            f"{self.descriptor.name} restored",
            item_id=item_id,
            affected=1,
            tenant_id=tenant_id,
            data=data,
        )

    async def permanent_delete(self, item_id: str) -> LifecycleOutcome:
        async with self.database.session() as session:
            parent, _ = await self._find_trashed_child(session, item_id)
            parent.remove_embedded(self.collection, item_id)
            self._touch(parent)
            tenant_id = self.tenant_of(parent)

        return self.outcome(
            Operation.PERMANENT_DELETE,
            f"{self.descriptor.name} permanently deleted",
            item_id=item_id,
            affected=1,
            tenant_id=tenant_id,
        )

    async def restore_all(self) -> LifecycleOutcome:
        restored = 0
        async with self.database.session() as session:
            for parent in await self._parents(session):
                elements = parent.embedded(self.collection)
                trashed = [str(e["id"]) for e in elements if e.get("is_deleted")]
                for element_id in trashed:
                    parent.restore_embedded(self.collection, element_id)
                if trashed:
                    self._touch(parent)
                    restored += len(trashed)

            if restored == 0:
                raise NotInTrashError(f"No {self.descriptor.name} items found in trash")

        return self.outcome(
            Operation.RESTORE_ALL,
            f"Restored {restored} {self.descriptor.name} items",
            affected=restored,
        )

    async def permanent_delete_all(self) -> LifecycleOutcome:
        removed = 0
        async with self.database.session() as session:
            for parent in await self._parents(session):
                elements = parent.embedded(self.collection)
                kept = [e for e in elements if not e.get("is_deleted")]
                if len(kept) != len(elements):
                    parent.replace_embedded(self.collection, kept)
                    self._touch(parent)
                    removed += len(elements) - len(kept)

            if removed == 0:
                raise NotInTrashError(f"No {self.descriptor.name} items found in trash")

        return self.outcome(
            Operation.PERMANENT_DELETE_ALL,
            f"Permanently deleted {removed} {self.descriptor.name} items",
            affected=removed,
        )
