"""
SQLAlchemy mixins for soft delete functionality.

These mixins attach the trash lifecycle (active, soft-deleted, restored or
permanently removed) and creator/modifier attribution to any mapped entity.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Select,
    String,
    delete,
    func,
    inspect,
    select,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.orm.attributes import flag_modified

SOFT_DELETE_FIELDS = ("is_deleted", "deleted_at", "deleted_by")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SoftDeleteMixin:
    """
    Mixin to add soft delete functionality to SQLAlchemy models.

    Provides:
    - Soft delete fields (is_deleted, deleted_at, deleted_by)
    - A check constraint keeping the three fields consistent
    - Uniqueness among active records only, via ``__active_unique__``
    - Statement builders for active, deleted and all records

    Usage:
        class Business(Base, SoftDeleteMixin):
            __tablename__ = 'businesses'
            __active_unique__ = (("slug",),)
            id: Mapped[str] = mapped_column(String(36), primary_key=True)
            slug: Mapped[str] = mapped_column(String(120))

    The mapped class must expose its primary key as ``id``.
    """

    # Field groups unique among active records; deleted rows never collide
    __active_unique__: Tuple[Tuple[str, ...], ...] = ()

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    @declared_attr
    def __table_args__(cls: Any) -> Any:
        """Add the lifecycle constraint, the trash index and active-only uniques."""
        table_name = getattr(cls, "__tablename__", cls.__name__.lower())

        args: List[Any] = [
            CheckConstraint(
                "(is_deleted = false AND deleted_at IS NULL AND deleted_by IS NULL) "
                "OR (is_deleted = true AND deleted_at IS NOT NULL)",
                name=f"ck_{table_name}_deletion_consistency",
            ),
            Index(f"ix_{table_name}_trash", "is_deleted", "deleted_at"),
        ]

        for fields in cls.__active_unique__:
            args.append(
                Index(
                    f"uq_{table_name}_{'_'.join(fields)}_active",
                    *fields,
                    unique=True,
                    sqlite_where=text("is_deleted = false"),
                    postgresql_where=text("is_deleted = false"),
                )
            )

        args.extend(getattr(cls, "__extra_table_args__", ()))
        return tuple(args)

    def soft_delete(self, actor_id: Optional[str] = None) -> None:
        """
        Soft delete this record.

        Re-invoking on a deleted record re-stamps ``deleted_at`` and
        ``deleted_by``.

        Args:
            actor_id: ID of the acting user, None for anonymous actions
        """
        self.is_deleted = True
        self.deleted_at = utcnow()
        self.deleted_by = actor_id

    def restore(self) -> None:
        """
        Restore a soft-deleted record.

        Collision checks against active records belong to the caller.
        """
        self.is_deleted = False
        self.deleted_at = None
        self.deleted_by = None

    @classmethod
    def select_active(cls) -> Select[Any]:
        """Return a select for active (non-deleted) records only."""
        return select(cls).where(cls.is_deleted.is_(False))

    @classmethod
    def select_deleted(cls) -> Select[Any]:
        """Return a select for deleted records only."""
        return select(cls).where(cls.is_deleted.is_(True))

    @classmethod
    def select_all(cls) -> Select[Any]:
        """Return a select with no soft delete filter."""
        return select(cls)

    @classmethod
    async def find_deleted(cls, session: AsyncSession, *criteria: Any) -> List[Any]:
        stmt = cls.select_deleted().where(*criteria).order_by(cls.deleted_at.desc())
        return list((await session.scalars(stmt)).all())

    @classmethod
    async def count_deleted(cls, session: AsyncSession, *criteria: Any) -> int:
        stmt = (
            select(func.count())
            .select_from(cls)
            .where(cls.is_deleted.is_(True), *criteria)
        )
        return int((await session.execute(stmt)).scalar_one())

    @classmethod
    async def delete_many_deleted(cls, session: AsyncSession, *criteria: Any) -> int:
        """Hard delete every trashed record matching ``criteria``."""
        stmt = delete(cls).where(cls.is_deleted.is_(True), *criteria)
        result = await session.execute(stmt)
        return int(result.rowcount or 0)

    async def find_active_conflicts(
        self, session: AsyncSession
    ) -> List[Tuple[str, ...]]:
        """
        Return the ``__active_unique__`` groups this record collides on.

        A group collides when another active record holds the same values.
        Groups with a NULL member never collide.
        """
        cls = type(self)
        conflicts: List[Tuple[str, ...]] = []

        for fields in cls.__active_unique__:
            values = [getattr(self, name) for name in fields]
            if any(value is None for value in values):
                continue

            stmt = (
                select(cls.id)
                .where(
                    cls.is_deleted.is_(False),
                    cls.id != self.id,
                    *[getattr(cls, name) == value for name, value in zip(fields, values)],
                )
                .limit(1)
            )
            if (await session.execute(stmt)).first() is not None:
                conflicts.append(fields)

        return conflicts

    def to_dict(self, include_deleted_fields: bool = True) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Args:
            include_deleted_fields: Whether to include soft delete fields

        Returns:
            Dictionary representation of the model
        """
        result: Dict[str, Any] = {}

        table = getattr(self, "__table__", None)
        if table is None:
            return result

        for column in table.columns:
            if hasattr(self, column.key):
                value = getattr(self, column.key)
                if isinstance(value, datetime):
                    value = value.isoformat()
                result[column.key] = value

        if not include_deleted_fields:
            for field in SOFT_DELETE_FIELDS:
                result.pop(field, None)

        return result


class AuditUserMixin:
    """
    Mixin recording which actor created and last modified a record.

    ``created_by`` is written once, when the record is new. ``updated_by`` is
    overwritten by every later mutation made by a known actor. Anonymous
    mutations leave both untouched.
    """

    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    def stamp_create(self, actor_id: Optional[str] = None) -> None:
        if actor_id and self.created_by is None:
            self.created_by = actor_id

    def stamp_update(self, actor_id: Optional[str] = None) -> None:
        if actor_id:
            self.updated_by = actor_id

    def set_audit_user(self, actor_id: Optional[str] = None) -> None:
        """Stamp ``created_by`` on new records, ``updated_by`` otherwise."""
        if inspect(self).has_identity:
            self.stamp_update(actor_id)
        else:
            self.stamp_create(actor_id)

    @classmethod
    async def create_with_audit_user(
        cls,
        session: AsyncSession,
        payload: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        actor_id: Optional[str] = None,
    ) -> Any:
        """
        Create one or many records, each stamped with the acting user.

        Args:
            session: Async session the records are added to
            payload: A single mapping of column values, or a sequence of them
            actor_id: ID of the acting user

        Returns:
            The created record when given a mapping, otherwise a list of
            records in input order
        """
        single = isinstance(payload, Mapping)
        payloads: Iterable[Mapping[str, Any]] = [payload] if single else payload  # type: ignore[list-item]

        records = []
        for values in payloads:
            record = cls(**values)
            record.stamp_create(actor_id)
            session.add(record)
            records.append(record)

        await session.flush()
        return records[0] if single else records

    @staticmethod
    def add_updated_by(
        update: Mapping[str, Any], actor_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Return ``update`` with ``updated_by`` merged in when the actor is known."""
        merged = dict(update)
        if actor_id:
            merged["updated_by"] = actor_id
        return merged


def soft_delete_element(
    element: Mapping[str, Any], actor_id: Optional[str] = None
) -> Dict[str, Any]:
    """Return a copy of an embedded element marked deleted."""
    marked = dict(element)
    marked["is_deleted"] = True
    marked["deleted_at"] = utcnow().isoformat()
    marked["deleted_by"] = actor_id
    return marked


def restore_element(element: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of an embedded element with its deletion cleared."""
    restored = dict(element)
    restored["is_deleted"] = False
    restored["deleted_at"] = None
    restored["deleted_by"] = None
    return restored


class EmbeddedCollectionMixin:
    """
    Helpers for soft-deletable children stored inside a JSON array column.

    Each element is a dict with an ``id`` plus the soft delete fields. The
    array is replaced on every change so the ORM sees the mutation.
    """

    def embedded(self, collection: str) -> List[Dict[str, Any]]:
        return list(getattr(self, collection) or [])

    def find_embedded(
        self, collection: str, element_id: str
    ) -> Optional[Dict[str, Any]]:
        for element in self.embedded(collection):
            if str(element.get("id")) == element_id:
                return element
        return None

    def replace_embedded(
        self, collection: str, elements: List[Dict[str, Any]]
    ) -> None:
        setattr(self, collection, elements)
        flag_modified(self, collection)

    def soft_delete_embedded(
        self, collection: str, element_id: str, actor_id: Optional[str] = None
    ) -> bool:
        return self._rewrite_embedded(
            collection, element_id, lambda e: soft_delete_element(e, actor_id)
        )

    def restore_embedded(self, collection: str, element_id: str) -> bool:
        return self._rewrite_embedded(collection, element_id, restore_element)

    def remove_embedded(self, collection: str, element_id: str) -> bool:
        elements = self.embedded(collection)
        kept = [e for e in elements if str(e.get("id")) != element_id]
        if len(kept) == len(elements):
            return False
        self.replace_embedded(collection, kept)
        return True

    def _rewrite_embedded(self, collection: str, element_id: str, change: Any) -> bool:
        found = False
        elements = []
        for element in self.embedded(collection):
            if str(element.get("id")) == element_id:
                element = change(element)
                found = True
            elements.append(element)
        if found:
            self.replace_embedded(collection, elements)
        return found
