"""
Trash query engine.

Lists and counts soft-deleted items for registry modules. Each module is
served by one of three strategies, all producing the same ``TrashPage``
shape:

* flat: the module entity filtered on ``is_deleted`` plus the module
  condition.
* joined: the module entity outer-joined to a related entity whose fields
  decide visibility, e.g. registrations of public events.
* embedded: children stored in a JSON array of a parent entity, unwound and
  reshaped into independent rows.

Every page is produced by two independent pipelines, one limited and one
count-only, run concurrently in separate sessions. Under concurrent writes
the two may disagree slightly.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Select, cast, false, func, select, true
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..database import Database
from ..registry import ModuleDescriptor, ModuleRegistry, QueryStrategy
from ..soft_delete.models import TrashFilters, TrashPage

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


def _as_dict(record: Any) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    if hasattr(record, "to_dict"):
        return record.to_dict()
    return {
        column.key: getattr(record, column.key) for column in record.__table__.columns
    }


class TrashStrategy(ABC):
    """Produces one module's trash page and count."""

    def __init__(self, engine: "TrashQueryEngine", descriptor: ModuleDescriptor):
        self.engine = engine
        self.descriptor = descriptor
        self.entity = descriptor.entity

    def tenant_criteria(self, filters: TrashFilters) -> List[Any]:
        if not filters.tenant_id:
            return []
        tenant_field = self.descriptor.tenant_field
        if tenant_field is None:
            # Modules without a tenant column are invisible to tenant users
            return [false()]
        return [getattr(self.entity, tenant_field) == filters.tenant_id]

    @abstractmethod
    async def page(
        self,
        session: AsyncSession,
        filters: TrashFilters,
        offset: int,
        limit: Optional[int],
    ) -> List[Dict[str, Any]]:
        """Return the requested window of trash rows, newest deletion first."""

    @abstractmethod
    async def count(self, session: AsyncSession, filters: TrashFilters) -> int:
        """Return the number of trash rows matching the filters."""


class FlatStrategy(TrashStrategy):
    """Direct query on the module entity."""

    def criteria(self, filters: TrashFilters) -> List[Any]:
        entity = self.entity
        criteria = [entity.is_deleted.is_(True), *self.descriptor.where_condition()]

        if filters.deleted_by:
            criteria.append(entity.deleted_by == filters.deleted_by)
        if filters.start_date:
            criteria.append(entity.deleted_at >= filters.start_date)
        if filters.end_date:
            criteria.append(entity.deleted_at <= filters.end_date)

        criteria.extend(self.tenant_criteria(filters))
        return criteria

    def apply_joins(self, stmt: Select[Any]) -> Select[Any]:
        return stmt

    def extra_entities(self) -> Tuple[Any, ...]:
        return ()

    def build_row(self, record: Any, display: Any, *extras: Any) -> Dict[str, Any]:
        row = _as_dict(record) or {}
        row["deleted_by_display"] = display
        return row

    async def page(
        self,
        session: AsyncSession,
        filters: TrashFilters,
        offset: int,
        limit: Optional[int],
    ) -> List[Dict[str, Any]]:
        entity = self.entity
        display, actor = self.engine.actor_display(entity.deleted_by)

        stmt = select(entity, *self.extra_entities(), display.label("deleted_by_display"))
        stmt = self.apply_joins(stmt.select_from(entity))
        if actor is not None:
            stmt = stmt.outerjoin(actor, actor.id == entity.deleted_by)

        stmt = (
            stmt.where(*self.criteria(filters))
            .order_by(entity.deleted_at.desc(), entity.id)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        return [self.build_row(row[0], row[-1], *row[1:-1]) for row in result.all()]

    async def count(self, session: AsyncSession, filters: TrashFilters) -> int:
        stmt = select(func.count()).select_from(self.entity)
        stmt = self.apply_joins(stmt).where(*self.criteria(filters))
        return int((await session.execute(stmt)).scalar_one())


class JoinedStrategy(FlatStrategy):
    """
    Outer join to a related entity, then the related entity's condition.

    Rows whose related record is missing survive the join; they are then
    dropped only if the join condition requires a related value.
    """

    def __init__(self, engine: "TrashQueryEngine", descriptor: ModuleDescriptor):
        super().__init__(engine, descriptor)
        join = descriptor.join
        if join is None:
            raise ValueError(f"Module {descriptor.key!r} has no join")
        self.join = join
        self.related = aliased(join.related)

    def criteria(self, filters: TrashFilters) -> List[Any]:
        criteria = super().criteria(filters)
        criteria.extend(
            getattr(self.related, name) == value
            for name, value in self.join.condition.items()
        )
        return criteria

    def apply_joins(self, stmt: Select[Any]) -> Select[Any]:
        return stmt.outerjoin(
            self.related,
            getattr(self.related, self.join.related_key)
            == getattr(self.entity, self.join.local_key),
        )

    def extra_entities(self) -> Tuple[Any, ...]:
        return (self.related,) if self.join.as_field else ()

    def build_row(self, record: Any, display: Any, *extras: Any) -> Dict[str, Any]:
        row = super().build_row(record, display)
        if self.join.as_field:
            row[self.join.as_field] = _as_dict(extras[0]) if extras else None
        return row


class JsonElements:
    """
    Set-returning unwind of a JSON array column, one row per element.

    Uses ``json_each`` on SQLite and ``jsonb_array_elements`` on PostgreSQL.
    Element fields are read as text.
    """

    def __init__(self, collection: Any, dialect: str):
        self.postgres = dialect == "postgresql"
        if self.postgres:
            fn = func.jsonb_array_elements(cast(collection, JSONB))
        else:
            fn = func.json_each(collection)
        self.table = fn.table_valued("value", joins_implicitly=True)
        self.value = self.table.c.value

    def field(self, name: str) -> Any:
        if self.postgres:
            return self.value.op("->>")(name)
        return func.json_extract(self.value, f"$.{name}")

    def is_true(self, name: str) -> Any:
        # json_extract yields 1 for JSON true; ->> yields 'true'
        return self.field(name) == ("true" if self.postgres else 1)


def _decode_element(value: Any) -> Dict[str, Any]:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)


class EmbeddedStrategy(TrashStrategy):
    """
    Unwinds a parent's JSON array into one trash row per deleted child.

    Rows carry ``parent_id``, ``parent_title``, ``parent_key`` and
    ``parent_is_deleted`` so callers can link back to the aggregate. The
    unwind, filters, ordering and window all run in the database.
    """

    def __init__(self, engine: "TrashQueryEngine", descriptor: ModuleDescriptor):
        super().__init__(engine, descriptor)
        embedded = descriptor.embedded
        if embedded is None:
            raise ValueError(f"Module {descriptor.key!r} has no embedded collection")
        self.spec = embedded
        self.collection = getattr(self.entity, embedded.collection)

    def elements(self) -> JsonElements:
        return JsonElements(self.collection, self.engine.database.engine.dialect.name)

    def criteria(self, elements: JsonElements, filters: TrashFilters) -> List[Any]:
        criteria = [
            *self.descriptor.where_condition(),
            *self.tenant_criteria(filters),
            elements.is_true("is_deleted"),
        ]
        if filters.deleted_by:
            criteria.append(elements.field("deleted_by") == filters.deleted_by)
        # Stored as naive UTC isoformat strings, which order lexically
        if filters.start_date:
            criteria.append(elements.field("deleted_at") >= filters.start_date.isoformat())
        if filters.end_date:
            criteria.append(elements.field("deleted_at") <= filters.end_date.isoformat())
        return criteria

    def _parent_column(self, name: Optional[str]) -> Any:
        if name and hasattr(self.entity, name):
            return getattr(self.entity, name)
        return None

    def _unwound(self, elements: JsonElements, *columns: Any) -> Select[Any]:
        return (
            select(*columns)
            .select_from(self.entity)
            .join(elements.table, true())
        )

    async def page(
        self,
        session: AsyncSession,
        filters: TrashFilters,
        offset: int,
        limit: Optional[int],
    ) -> List[Dict[str, Any]]:
        entity = self.entity
        elements = self.elements()
        optional = [
            ("parent_title", self._parent_column(self.spec.title_field)),
            ("parent_key", self._parent_column(self.spec.key_field)),
            ("parent_is_deleted", self._parent_column("is_deleted")),
        ]
        columns = [entity.id, elements.value]
        columns.extend(col for _, col in optional if col is not None)

        stmt = (
            self._unwound(elements, *columns)
            .where(*self.criteria(elements, filters))
            .order_by(
                elements.field("deleted_at").desc(), entity.id, elements.field("id")
            )
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        rows: List[Dict[str, Any]] = []
        for parent in (await session.execute(stmt)).all():
            values = iter(parent[2:])
            row = _decode_element(parent[1])
            row["parent_id"] = parent[0]
            row.update(
                (name, next(values) if col is not None else None)
                for name, col in optional
            )
            rows.append(row)

        displays = await self.engine.resolve_actor_displays(
            session, [r.get("deleted_by") for r in rows]
        )
        for row in rows:
            actor_id = row.get("deleted_by")
            row["deleted_by_display"] = displays.get(actor_id, actor_id)
        return rows

    async def count(self, session: AsyncSession, filters: TrashFilters) -> int:
        elements = self.elements()
        stmt = self._unwound(elements, func.count()).where(
            *self.criteria(elements, filters)
        )
        return int((await session.execute(stmt)).scalar_one())


STRATEGIES = {
    QueryStrategy.FLAT: FlatStrategy,
    QueryStrategy.JOINED: JoinedStrategy,
    QueryStrategy.EMBEDDED: EmbeddedStrategy,
}


class TrashQueryEngine:
    """
    Lists and counts trashed items for one module or for all of them.

    Listing all modules fans out concurrently, bounded by ``concurrency``. A
    module whose query fails is logged and reported as an empty page so the
    other modules still answer.

    Example:
        >>> engine = TrashQueryEngine(database, registry, actor_entity=User)
        >>> pages = await engine.list_deleted("poll", TrashFilters(), page=1)
        >>> pages["poll"].total
        3
    """

    def __init__(
        self,
        database: Database,
        registry: ModuleRegistry,
        actor_entity: Optional[type] = None,
        actor_label_fields: Sequence[str] = ("full_name", "email"),
        concurrency: int = 4,
        max_page_size: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            database: Database providing sessions
            registry: Module registry
            actor_entity: Mapped user class used to label ``deleted_by``
            actor_label_fields: User attributes tried in order for the label
            concurrency: Modules queried at once when listing all modules
            max_page_size: Upper bound applied to requested page sizes
        """
        self.database = database
        self.registry = registry
        self.actor_entity = actor_entity
        self.actor_label_fields = tuple(actor_label_fields)
        self.concurrency = concurrency
        self.max_page_size = max_page_size

    def strategy_for(self, descriptor: ModuleDescriptor) -> TrashStrategy:
        return STRATEGIES[QueryStrategy(descriptor.strategy)](self, descriptor)

    def actor_display(self, actor_id_column: Any) -> Tuple[Any, Any]:
        """
        Build the SQL label for a deleting actor.

        Returns:
            The label expression and the aliased actor entity to outer join,
            or the raw id column and None when no actor entity is configured
        """
        if self.actor_entity is None:
            return actor_id_column, None
        actor = aliased(self.actor_entity)
        labels = [func.nullif(getattr(actor, name), "") for name in self.actor_label_fields]
        return func.coalesce(*labels, actor_id_column), actor

    async def resolve_actor_displays(
        self, session: AsyncSession, actor_ids: Sequence[Optional[str]]
    ) -> Dict[str, str]:
        """Map actor ids to their label; unknown ids are left out."""
        ids = {actor_id for actor_id in actor_ids if actor_id}
        if not ids or self.actor_entity is None:
            return {}

        actor = self.actor_entity
        columns = [getattr(actor, name) for name in self.actor_label_fields]
        result = await session.execute(
            select(actor.id, *columns).where(actor.id.in_(ids))
        )

        displays: Dict[str, str] = {}
        for row in result.all():
            label = next((value for value in row[1:] if value), None)
            if label:
                displays[row[0]] = label
        return displays

    def _window(self, page: int, page_size: Optional[int]) -> Tuple[int, Optional[int]]:
        if page < 1:
            raise ValueError("page must be 1 or greater")
        if page_size is None:
            return 0, None
        if page_size < 1:
            raise ValueError("page_size must be 1 or greater")
        if self.max_page_size is not None:
            page_size = min(page_size, self.max_page_size)
        return (page - 1) * page_size, page_size

    async def _in_session(self, fn: Any, *args: Any) -> Any:
        async with self.database.session() as session:
            return await fn(session, *args)

    async def _list(
        self,
        descriptor: ModuleDescriptor,
        filters: TrashFilters,
        page: int,
        page_size: Optional[int],
    ) -> TrashPage:
        offset, limit = self._window(page, page_size)
        strategy = self.strategy_for(descriptor)
        results = await asyncio.gather(
            self._in_session(strategy.page, filters, offset, limit),
            self._in_session(strategy.count, filters),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        items, total = results
        return TrashPage(items=items, total=total)

    async def _count(self, descriptor: ModuleDescriptor, filters: TrashFilters) -> int:
        strategy = self.strategy_for(descriptor)
        return await self._in_session(strategy.count, filters)

    async def _fan_out(self, run: Any, fallback: Any) -> Dict[str, Any]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def one(descriptor: ModuleDescriptor) -> Tuple[str, Any]:
            async with semaphore:
                try:
                    return descriptor.key, await run(descriptor)
                except Exception:
                    logger.exception("Trash query failed for module %s", descriptor.key)
                    return descriptor.key, fallback()

        results = await asyncio.gather(
            *(one(descriptor) for descriptor in self.registry.descriptors())
        )
        return dict(results)

    async def list_module(
        self,
        module_key: str,
        filters: Optional[TrashFilters] = None,
        page: int = 1,
        page_size: Optional[int] = DEFAULT_PAGE_SIZE,
    ) -> TrashPage:
        """
        List one module's trash.

        Raises:
            UnknownModuleError: If the module key is not registered
        """
        descriptor = self.registry.get_module(module_key)
        return await self._list(descriptor, filters or TrashFilters(), page, page_size)

    async def count_module(
        self, module_key: str, filters: Optional[TrashFilters] = None
    ) -> int:
        descriptor = self.registry.get_module(module_key)
        return await self._count(descriptor, filters or TrashFilters())

    async def list_deleted(
        self,
        module_key: Optional[str] = None,
        filters: Optional[TrashFilters] = None,
        page: int = 1,
        page_size: Optional[int] = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, TrashPage]:
        """
        List trashed items for one module, or for every module.

        Args:
            module_key: Module to list, None for all modules
            filters: Deletion filters and tenant scope
            page: 1-based page number
            page_size: Items per page, None for no limit

        Returns:
            Mapping of module key to its page
        """
        filters = filters or TrashFilters()
        if module_key is not None:
            descriptor = self.registry.get_module(module_key)
            return {descriptor.key: await self._list(descriptor, filters, page, page_size)}

        self._window(page, page_size)
        return await self._fan_out(
            lambda descriptor: self._list(descriptor, filters, page, page_size),
            TrashPage,
        )

    async def count_deleted(
        self, module_key: Optional[str] = None, filters: Optional[TrashFilters] = None
    ) -> Dict[str, int]:
        """
        Count trashed items for one module, or for every module.

        Returns:
            Mapping of module key to its count
        """
        filters = filters or TrashFilters()
        if module_key is not None:
            descriptor = self.registry.get_module(module_key)
            return {descriptor.key: await self._count(descriptor, filters)}

        return await self._fan_out(
            lambda descriptor: self._count(descriptor, filters), lambda: 0
        )
