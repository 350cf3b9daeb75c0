"""
Audit Trail Module - activity logging for platform actions.

Provides the fire-and-forget audit logger, append-only log storage, subject
name resolution, module classification and live broadcast.
"""

from .broadcast import LOGS_ROOM, Broadcaster, EventHub, Message, Subscription, tenant_room
from .classify import classify_module
from .logger import LOG_CREATED_EVENT, AuditLogger
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
from .names import ColumnLabel, EmbeddedLabel, LabelSource, NameResolver, NoLabel
from .storage import AuditStorage, SQLAuditStorage

__all__ = [
    # Logger
    "AuditLogger",
    "LOG_CREATED_EVENT",
    # Models
    "ActionKind",
    "SubjectKind",
    "ModuleLabel",
    "LogEntry",
    "LogRecord",
    "LogQuery",
    "LogPage",
    "LogStats",
    # Storage
    "AuditStorage",
    "SQLAuditStorage",
    # Names
    "NameResolver",
    "LabelSource",
    "ColumnLabel",
    "EmbeddedLabel",
    "NoLabel",
    # Classification
    "classify_module",
    # Broadcast
    "Broadcaster",
    "EventHub",
    "Message",
    "Subscription",
    "LOGS_ROOM",
    "tenant_room",
]
