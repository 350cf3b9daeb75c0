"""
Core audit logger implementation.

Records activity log entries without blocking or failing the caller. Entries
are queued and handled by a small pool of background workers that persist
the entry, resolve the subject's display name, and broadcast the enriched
entry to live subscribers.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from .broadcast import LOGS_ROOM, Broadcaster, tenant_room
from .classify import classify_module
from .models import (
    ActionKind,
    LogEntry,
    LogPage,
    LogQuery,
    LogRecord,
    LogStats,
    ModuleLabel,
    SubjectKind,
)
from .names import NameResolver
from .storage import AuditStorage

logger = logging.getLogger(__name__)

LOG_CREATED_EVENT = "logCreated"


class AuditLogger:
    """Fire-and-forget activity logger.

    ``record`` validates the entry, puts it on a bounded queue and returns at
    once. Background workers then:

    1. persist the entry (append-only);
    2. resolve the subject's display name, tolerating missing subjects;
    3. broadcast the enriched entry to the ``logs`` room and to the tenant's
       room.

    A failure in any step is logged and never reaches the caller. Broadcast
    happens after persistence, so a broadcast failure cannot lose the entry.
    Live subscribers must treat broadcasts as best-effort.

    Attributes:
        storage (AuditStorage): Append-only log storage.
        resolver (NameResolver): Subject name resolution, optional.
        broadcaster (Broadcaster): Live subscriber fan-out, optional.
        workers (int): Number of background workers.

    Example:
        >>> audit = AuditLogger(storage, resolver, hub)
        >>> audit.record(
        ...     ActionKind.DELETE,
        ...     actor_id=user.id,
        ...     subject_kind=SubjectKind.POLL,
        ...     subject_id=poll.id,
        ...     module="poll",
        ... )
        >>> await audit.drain()  # tests and shutdown only
    """

    def __init__(
        self,
        storage: AuditStorage,
        resolver: Optional[NameResolver] = None,
        broadcaster: Optional[Broadcaster] = None,
        workers: int = 2,
        queue_size: int = 1000,
        enabled: bool = True,
        require_actor: bool = False,
    ):
        """Initialize the audit logger.

        Args:
            storage: Storage backend for log entries.
            resolver: Resolves subject display names. Without one, broadcast
                entries carry no name.
            broadcaster: Receives enriched entries. Without one, nothing is
                broadcast.
            workers: Number of background workers handling queued entries.
            queue_size: Entries waiting beyond this bound are dropped.
            enabled: When False, ``record`` does nothing.
            require_actor: When True, entries without an actor are not
                recorded.

        Raises:
            ValueError: If workers or queue_size is less than 1.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.storage = storage
        self.resolver = resolver
        self.broadcaster = broadcaster
        self.workers = workers
        self.queue_size = queue_size
        self.enabled = enabled
        self.require_actor = require_actor

        self._queue: Optional["asyncio.Queue[LogEntry]"] = None
        self._tasks: List["asyncio.Task[None]"] = []

    def _ensure_workers(self) -> "asyncio.Queue[LogEntry]":
        """Start the queue and workers on the running loop if needed."""
        loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)

        self._tasks = [task for task in self._tasks if not task.done()]
        while len(self._tasks) < self.workers:
            self._tasks.append(loop.create_task(self._worker(self._queue)))
        return self._queue

    def record(
        self,
        action: Union[str, ActionKind],
        actor_id: Optional[str] = None,
        subject_kind: Optional[Union[str, SubjectKind]] = None,
        subject_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        module: Optional[Union[str, ModuleLabel]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Queue an activity log entry. Never raises, never blocks.

        Args:
            action: Action performed
            actor_id: ID of the acting user
            subject_kind: Kind of entity affected
            subject_id: ID of entity affected
            tenant_id: Business the action belongs to
            module: Module label, or a free-form module key to classify
            context: Additional details

        Returns:
            ID of the queued entry, or None when it was not queued, e.g.
            for an anonymous action while ``require_actor`` is set
        """
        if not self.enabled:
            return None
        if not actor_id and self.require_actor:
            logger.debug("Skipping anonymous %s entry", action)
            return None

        try:
            entry = LogEntry(
                actor_id=actor_id,
                action=action,
                subject_kind=subject_kind,
                subject_id=str(subject_id) if subject_id is not None else None,
                tenant_id=str(tenant_id) if tenant_id is not None else None,
                module=self._module_label(module),
                context=context or {},
            )
            queue = self._ensure_workers()
            queue.put_nowait(entry)
        except asyncio.QueueFull:
            logger.warning("Audit queue full, dropping %s entry", action)
            return None
        except RuntimeError:
            logger.warning("No running event loop, dropping %s entry", action)
            return None
        except Exception:
            logger.exception("Could not queue %s audit entry", action)
            return None

        return entry.id

    @staticmethod
    def _module_label(module: Optional[Union[str, ModuleLabel]]) -> ModuleLabel:
        if isinstance(module, ModuleLabel):
            return module
        return classify_module(module)

    async def _worker(self, queue: "asyncio.Queue[LogEntry]") -> None:
        while True:
            entry = await queue.get()
            try:
                await self._process(entry)
            finally:
                queue.task_done()

    async def _process(self, entry: LogEntry) -> None:
        """Persist, resolve and broadcast one entry."""
        try:
            await self.storage.store(entry)
        except Exception:
            logger.exception("Failed to persist audit entry %s", entry.to_log_format())
            return

        item_name = None
        if self.resolver is not None:
            try:
                item_name = await self.resolver.resolve(
                    entry.subject_kind, entry.subject_id
                )
            except Exception:
                logger.warning("Name resolution failed for %s", entry.id, exc_info=True)

        if self.broadcaster is None:
            return

        payload = LogRecord(**entry.model_dump(), item_name=item_name).model_dump(mode="json")
        rooms = [LOGS_ROOM]
        if entry.tenant_id:
            rooms.append(tenant_room(entry.tenant_id))

        for room in rooms:
            try:
                await self.broadcaster.publish(room, LOG_CREATED_EVENT, payload)
            except Exception:
                logger.warning("Failed to broadcast audit entry to %s", room, exc_info=True)

    async def drain(self) -> None:
        """Wait until every queued entry has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue, then stop the workers."""
        await self.drain()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def search(self, query: LogQuery) -> LogPage:
        """
        Query the log and enrich each entry with its subject's name.

        Args:
            query: Query parameters

        Returns:
            Page of enriched entries with the total match count
        """
        entries, total = await self.storage.query(query)

        names: Dict[Any, str] = {}
        if self.resolver is not None:
            names = await self.resolver.resolve_many(
                (entry.subject_kind, entry.subject_id) for entry in entries
            )

        items = [
            LogRecord(
                **entry.model_dump(),
                item_name=names.get((entry.subject_kind, entry.subject_id)),
            )
            for entry in entries
        ]
        return LogPage(items=items, total=total)

    async def stats(self, query: Optional[LogQuery] = None) -> LogStats:
        """Count log entries by action, module and subject kind."""
        return await self.storage.stats(query or LogQuery())

    async def get_entity_history(
        self, subject_kind: Union[str, SubjectKind], subject_id: str, limit: int = 200
    ) -> List[LogRecord]:
        """
        Get the newest log entries for one subject.

        Args:
            subject_kind: Kind of the subject
            subject_id: Subject identifier
            limit: Maximum entries to return

        Returns:
            Enriched entries, newest first
        """
        page = await self.search(
            LogQuery(subject_kind=subject_kind, subject_id=subject_id, limit=limit)
        )
        return page.items
