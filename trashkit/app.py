"""
Composition root for trashkit.

Builds the database, the module registry, the audit trail and the trash
components from one configuration, and hands the same registry and database
to every component that needs them. Nothing here is a process global; tests
build their own ``TrashKit`` against a temporary database.
"""

import logging
from typing import Optional

from .audit_trail.broadcast import EventHub
from .audit_trail.logger import AuditLogger
from .audit_trail.storage import SQLAuditStorage
from .config import TrashKitConfig, get_config
from .database import Database
from .platform.models import Base as PlatformBase
from .platform.models import User
from .platform.registry import build_name_resolver, build_registry
from .registry import ModuleRegistry
from .trash.dispatcher import LifecycleDispatcher
from .trash.query import TrashQueryEngine

logger = logging.getLogger(__name__)


class TrashKit:
    """
    Wired set of trash and audit components.

    Attributes:
        config (TrashKitConfig): Configuration the components were built from
        database (Database): Shared async database
        registry (ModuleRegistry): Immutable module table
        hub (EventHub): In-process live broadcaster
        storage (SQLAuditStorage): Activity log storage
        names (NameResolver): Subject label lookup
        audit (AuditLogger): Fire-and-forget activity logger
        trash (TrashQueryEngine): Trash listing and counting
        dispatcher (LifecycleDispatcher): Restore and permanent delete

    Example:
        >>> kit = TrashKit(TrashKitConfig(database_url="sqlite+aiosqlite:///./kit.db"))
        >>> await kit.init()
        >>> counts = await kit.trash.count_deleted()
        >>> await kit.close()
    """

    def __init__(
        self,
        config: Optional[TrashKitConfig] = None,
        registry: Optional[ModuleRegistry] = None,
        database: Optional[Database] = None,
    ):
        self.config = config or get_config()
        self.database = database or Database(
            self.config.database_url, echo=self.config.database_echo
        )
        self.registry = registry if registry is not None else build_registry()

        self.hub = EventHub()
        self.storage = SQLAuditStorage(self.database)
        self.names = build_name_resolver(self.database)

        audit_config = self.config.get_audit_config()
        self.audit = AuditLogger(
            self.storage,
            resolver=self.names,
            broadcaster=self.hub,
            workers=audit_config["workers"],
            queue_size=audit_config["queue_size"],
            enabled=audit_config["enabled"],
            require_actor=audit_config["require_actor"],
        )
        self.trash = TrashQueryEngine(
            self.database,
            self.registry,
            actor_entity=User,
            concurrency=self.config.fanout_concurrency,
            max_page_size=self.config.max_page_size,
        )
        self.dispatcher = LifecycleDispatcher(
            self.database,
            self.registry,
            audit_logger=self.audit,
            broadcaster=self.hub,
        )

    async def init(self) -> None:
        """Create platform and activity log tables."""
        await self.database.create_all(PlatformBase.metadata)
        await self.storage.initialize()
        logger.info(
            "trashkit ready: %d modules, environment %s",
            len(self.registry),
            self.config.environment,
        )

    async def close(self) -> None:
        """Flush pending audit work and release connections."""
        await self.audit.close()
        await self.database.dispose()

    async def __aenter__(self) -> "TrashKit":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
