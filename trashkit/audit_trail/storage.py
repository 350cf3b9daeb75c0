"""
Storage backends for the activity log.

Log rows are append-only. The storage exposes no update or delete.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from sqlalchemy import JSON, Column, DateTime, Index, String, desc, func, select
from sqlalchemy.orm import declarative_base

from ..database import Database
from .models import ActionKind, LogEntry, LogQuery, LogStats

Base = declarative_base()


class LogEntryDB(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for activity log entries."""

    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True)
    created_at = Column(DateTime, nullable=False)

    actor_id = Column(String(36), nullable=True)
    action = Column(String(20), nullable=False)
    subject_kind = Column(String(50), nullable=True)
    subject_id = Column(String(64), nullable=True)
    tenant_id = Column(String(36), nullable=True)
    module = Column(String(50), nullable=False)

    context = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_logs_actor", actor_id),
        Index("idx_logs_tenant", tenant_id),
        Index("idx_logs_action", action),
        Index("idx_logs_module", module),
        Index("idx_logs_created_at", created_at.desc()),
    )


class AuditStorage(ABC):
    """Abstract base class for activity log storage backends."""

    @abstractmethod
    async def store(self, entry: LogEntry) -> None:
        """
        Append a log entry.

        Args:
            entry: Log entry to store
        """
        pass

    @abstractmethod
    async def query(self, query: LogQuery) -> Tuple[List[LogEntry], int]:
        """
        Query log entries, newest first.

        Args:
            query: Query parameters

        Returns:
            The requested page of entries and the total number matching
        """
        pass

    @abstractmethod
    async def get_by_id(self, entry_id: str) -> Optional[LogEntry]:
        pass

    @abstractmethod
    async def stats(self, query: LogQuery) -> LogStats:
        """
        Count entries by action, module and subject kind.

        Pagination fields of ``query`` are ignored.
        """
        pass


class SQLAuditStorage(AuditStorage):
    """SQL database storage backend for the activity log."""

    def __init__(self, database: Database):
        """
        Initialize SQL audit storage.

        Args:
            database: Database providing sessions
        """
        self.database = database

    async def initialize(self) -> None:
        """Create the log table."""
        await self.database.create_all(Base.metadata)

    def _entry_to_db(self, entry: LogEntry) -> LogEntryDB:
        return LogEntryDB(
            id=entry.id,
            created_at=entry.created_at,
            actor_id=entry.actor_id,
            action=entry.action,
            subject_kind=entry.subject_kind,
            subject_id=entry.subject_id,
            tenant_id=entry.tenant_id,
            module=entry.module,
            context=entry.context,
        )

    def _db_to_entry(self, db_entry: LogEntryDB) -> LogEntry:
        return LogEntry(
            id=db_entry.id,
            created_at=db_entry.created_at,
            actor_id=db_entry.actor_id,
            action=db_entry.action,
            subject_kind=db_entry.subject_kind,
            subject_id=db_entry.subject_id,
            tenant_id=db_entry.tenant_id,
            module=db_entry.module,
            context=db_entry.context or {},
        )

    def _criteria(self, query: LogQuery) -> list:
        criteria = []
        if query.start_date:
            criteria.append(LogEntryDB.created_at >= query.start_date)
        if query.end_date:
            criteria.append(LogEntryDB.created_at <= query.end_date)
        if query.actor_id:
            criteria.append(LogEntryDB.actor_id == query.actor_id)
        if query.tenant_id:
            criteria.append(LogEntryDB.tenant_id == query.tenant_id)
        if query.actions:
            criteria.append(LogEntryDB.action.in_([ActionKind(a).value for a in query.actions]))
        if query.modules:
            criteria.append(LogEntryDB.module.in_([str(getattr(m, "value", m)) for m in query.modules]))
        if query.subject_kind:
            criteria.append(
                LogEntryDB.subject_kind == getattr(query.subject_kind, "value", query.subject_kind)
            )
        if query.subject_id:
            criteria.append(LogEntryDB.subject_id == query.subject_id)
        return criteria

    async def store(self, entry: LogEntry) -> None:
        """Append a single log entry."""
        async with self.database.session() as session:
            session.add(self._entry_to_db(entry))

    async def query(self, query: LogQuery) -> Tuple[List[LogEntry], int]:
        """Query log entries with filters."""
        criteria = self._criteria(query)
        async with self.database.session() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(LogEntryDB).where(*criteria)
                )
            ).scalar_one()

            stmt = (
                select(LogEntryDB)
                .where(*criteria)
                .order_by(desc(LogEntryDB.created_at), LogEntryDB.id)
                .limit(query.limit)
                .offset(query.offset)
            )
            rows = (await session.scalars(stmt)).all()

        return [self._db_to_entry(r) for r in rows], int(total)

    async def get_by_id(self, entry_id: str) -> Optional[LogEntry]:
        """Get a specific log entry."""
        async with self.database.session() as session:
            db_entry = await session.get(LogEntryDB, entry_id)
            if db_entry:
                return self._db_to_entry(db_entry)
            return None

    async def stats(self, query: LogQuery) -> LogStats:
        """Aggregate log counts."""
        criteria = self._criteria(query)
        stats = LogStats()

        async with self.database.session() as session:
            for column, bucket in (
                (LogEntryDB.action, stats.by_action),
                (LogEntryDB.module, stats.by_module),
                (LogEntryDB.subject_kind, stats.by_subject_kind),
            ):
                stmt = (
                    select(column, func.count())
                    .where(*criteria, column.is_not(None))
                    .group_by(column)
                )
                for value, count in (await session.execute(stmt)).all():
                    bucket[value] = int(count)

            stats.total = int(
                (
                    await session.execute(
                        select(func.count()).select_from(LogEntryDB).where(*criteria)
                    )
                ).scalar_one()
            )

        return stats


def sort_counts(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    """Counts ordered from most to least frequent."""
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)
