"""
Display-name resolution for log subjects.

Each subject kind maps to an ordered list of label sources. Sources query
records whether or not they are soft-deleted, since the subject of a delete
log is usually in the trash by the time its name is resolved.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import String, cast, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Database
from .models import SubjectKind

logger = logging.getLogger(__name__)


class LabelSource(ABC):
    """Finds a display label for a subject id."""

    @abstractmethod
    async def lookup(self, session: AsyncSession, subject_id: str) -> Optional[str]:
        pass

    async def lookup_many(
        self, session: AsyncSession, subject_ids: Sequence[str]
    ) -> Dict[str, str]:
        labels = {}
        for subject_id in subject_ids:
            label = await self.lookup(session, subject_id)
            if label:
                labels[subject_id] = label
        return labels


@dataclass(frozen=True)
class ColumnLabel(LabelSource):
    """First non-empty attribute of the entity row with the subject id."""

    entity: type
    fields: Tuple[str, ...]

    async def lookup(self, session: AsyncSession, subject_id: str) -> Optional[str]:
        labels = await self.lookup_many(session, [subject_id])
        return labels.get(subject_id)

    async def lookup_many(
        self, session: AsyncSession, subject_ids: Sequence[str]
    ) -> Dict[str, str]:
        columns = [getattr(self.entity, name) for name in self.fields]
        stmt = select(self.entity.id, *columns).where(self.entity.id.in_(list(subject_ids)))

        labels = {}
        for row in (await session.execute(stmt)).all():
            label = next((str(value) for value in row[1:] if value), None)
            if label:
                labels[str(row[0])] = label
        return labels


@dataclass(frozen=True)
class EmbeddedLabel(LabelSource):
    """Text of a child element embedded in a parent's JSON array."""

    parent: type
    collection: str
    field: str

    async def lookup(self, session: AsyncSession, subject_id: str) -> Optional[str]:
        column = getattr(self.parent, self.collection)
        stmt = select(column).where(cast(column, String).contains(subject_id))
        for elements in (await session.scalars(stmt)).all():
            for element in elements or []:
                if str(element.get("id")) == subject_id and element.get(self.field):
                    return str(element[self.field])
        return None


@dataclass(frozen=True)
class NoLabel(LabelSource):
    """Kinds with no human-readable label."""

    async def lookup(self, session: AsyncSession, subject_id: str) -> Optional[str]:
        return None


class NameResolver:
    """
    Resolves subject display names for log entries.

    The table must cover every ``SubjectKind``; a kind with no label source
    maps to ``NoLabel()`` explicitly. Resolution never raises: any failure is
    logged and yields None.
    """

    def __init__(
        self,
        database: Database,
        table: Mapping[SubjectKind, Sequence[LabelSource]],
    ):
        missing = [kind.value for kind in SubjectKind if kind not in table]
        if missing:
            raise ValueError(f"No label source for subject kinds: {', '.join(missing)}")

        self.database = database
        self.table: Dict[SubjectKind, Tuple[LabelSource, ...]] = {
            SubjectKind(kind): tuple(sources) for kind, sources in table.items()
        }

    async def resolve(
        self, subject_kind: Optional[SubjectKind], subject_id: Optional[str]
    ) -> Optional[str]:
        """
        Return the display name of a subject, or None.

        Args:
            subject_kind: Kind of the subject
            subject_id: ID of the subject
        """
        if not subject_kind or not subject_id:
            return None

        try:
            sources = self.table[SubjectKind(subject_kind)]
            async with self.database.session() as session:
                for source in sources:
                    label = await source.lookup(session, subject_id)
                    if label:
                        return label
        except Exception:
            logger.warning(
                "Could not resolve name for %s %s", subject_kind, subject_id, exc_info=True
            )
        return None

    async def resolve_many(
        self, subjects: Iterable[Tuple[Optional[SubjectKind], Optional[str]]]
    ) -> Dict[Tuple[str, str], str]:
        """
        Resolve many subjects, batched per kind.

        Returns:
            Mapping of (subject kind value, subject id) to display name;
            unresolved subjects are absent
        """
        by_kind: Dict[SubjectKind, List[str]] = {}
        for kind, subject_id in subjects:
            if kind and subject_id:
                ids = by_kind.setdefault(SubjectKind(kind), [])
                if subject_id not in ids:
                    ids.append(subject_id)

        names: Dict[Tuple[str, str], str] = {}
        for kind, ids in by_kind.items():
            try:
                async with self.database.session() as session:
                    pending = list(ids)
                    for source in self.table[kind]:
                        if not pending:
                            break
                        found = await source.lookup_many(session, pending)
                        for subject_id, label in found.items():
                            names[(kind.value, subject_id)] = label
                        pending = [i for i in pending if i not in found]
            except Exception:
                logger.warning("Could not resolve names for %s", kind.value, exc_info=True)
        return names
