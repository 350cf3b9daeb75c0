"""
Data models for the activity audit trail.

Log entries are append-only: written once by the audit logger, never updated.
Subject kinds and module labels are closed enumerations so every dispatch on
them is an explicit table lookup.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationInfo, field_validator

from ..soft_delete.mixins import as_naive_utc, utcnow

_CONTEXT_ADAPTER = TypeAdapter(Dict[str, Any])


class ActionKind(str, Enum):
    """Actions recorded in the activity log."""

    LOGIN = "login"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"


class SubjectKind(str, Enum):
    """Kinds of entity an activity log entry can point at."""

    EVENT = "Event"
    REGISTRATION = "Registration"
    WHEEL_SPIN = "WheelSpin"
    SPIN_WHEEL = "SpinWheel"
    MOSAIC_WALL = "MosaicWall"
    POLL = "Poll"
    GAME = "Game"
    QUESTION = "Question"
    USER = "User"
    SURVEY_RECIPIENT = "SurveyRecipient"


class ModuleLabel(str, Enum):
    """Canonical product modules used to group log entries."""

    EVENT_REG = "EventReg"
    QUIZ_NEST = "QuizNest"
    EVENT_DUEL = "EventDuel"
    TAP_MATCH = "TapMatch"
    VOTE_CAST = "VoteCast"
    SURVEY_GURU = "SurveyGuru"
    CHECK_IN = "CheckIn"
    DIGI_PASS = "DigiPass"
    STAGE_Q = "StageQ"
    MOSAIC_WALL = "MosaicWall"
    EVENT_WHEEL = "EventWheel"
    AUTH = "Auth"
    USER = "User"
    OTHER = "Other"


class LogEntry(BaseModel):
    """
    Immutable activity log entry.

    ``subject_kind`` and ``subject_id`` are absent for actions without a single
    affected entity, such as a bulk restore.
    """

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for the log entry",
    )
    created_at: datetime = Field(
        default_factory=utcnow, description="UTC timestamp of the action"
    )

    # Who
    actor_id: Optional[str] = Field(None, description="ID of the acting user")

    # What
    action: ActionKind = Field(..., description="Type of action performed")
    subject_kind: Optional[SubjectKind] = Field(
        None, description="Kind of entity affected"
    )
    subject_id: Optional[str] = Field(
        None, description="ID of entity affected", max_length=64
    )

    # Where
    tenant_id: Optional[str] = Field(None, description="Business the action belongs to")
    module: ModuleLabel = Field(ModuleLabel.OTHER, description="Product module")

    context: Dict[str, Any] = Field(
        default_factory=dict, description="Additional context-specific details"
    )

    @field_validator("context")
    @classmethod
    def json_safe_context(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """Reduce context values to JSON types before they reach the JSON column."""
        return _CONTEXT_ADAPTER.dump_python(v, mode="json")

    def to_log_format(self) -> str:
        """
        Convert to a standardized log format string.

        Returns:
            Formatted log string
        """
        parts = [
            f"[{self.created_at.isoformat()}]",
            f"ACTOR={self.actor_id or '-'}",
            f"ACTION={self.action}",
            f"MODULE={self.module}",
        ]

        if self.subject_kind and self.subject_id:
            parts.append(f"SUBJECT={self.subject_kind}:{self.subject_id}")

        if self.tenant_id:
            parts.append(f"TENANT={self.tenant_id}")

        return " ".join(parts)


class LogRecord(LogEntry):
    """A log entry enriched with the subject's display name."""

    item_name: Optional[str] = Field(
        None, description="Resolved label of the subject, None when unknown"
    )


class LogQuery(BaseModel):
    """Query parameters for searching the activity log."""

    # Time range
    start_date: Optional[datetime] = Field(None, description="Start of time range")
    end_date: Optional[datetime] = Field(None, description="End of time range")

    actor_id: Optional[str] = Field(None, description="Filter by acting user")
    tenant_id: Optional[str] = Field(None, description="Filter by business")
    actions: Optional[List[ActionKind]] = Field(
        None, description="Filter by action kinds"
    )
    modules: Optional[List[ModuleLabel]] = Field(
        None, description="Filter by module labels"
    )
    subject_kind: Optional[SubjectKind] = Field(
        None, description="Filter by subject kind"
    )
    subject_id: Optional[str] = Field(None, description="Filter by subject ID")

    # Pagination
    limit: int = Field(50, description="Maximum results to return", gt=0, le=200)
    offset: int = Field(0, description="Result offset for pagination", ge=0)

    @field_validator("start_date")
    @classmethod
    def normalize_start_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(v)

    @field_validator("end_date")
    @classmethod
    def validate_date_range(
        cls, v: Optional[datetime], info: ValidationInfo
    ) -> Optional[datetime]:
        """Ensure end date is after start date."""
        v = as_naive_utc(v)
        if v and "start_date" in info.data and info.data["start_date"]:
            if v < info.data["start_date"]:
                raise ValueError("End date must be after start date")
        return v


class LogPage(BaseModel):
    """A page of enriched log entries."""

    items: List[LogRecord] = Field(default_factory=list)
    total: int = Field(0, ge=0)


class LogStats(BaseModel):
    """Aggregate counts over the activity log."""

    by_action: Dict[str, int] = Field(
        default_factory=lambda: {action.value: 0 for action in ActionKind}
    )
    by_module: Dict[str, int] = Field(default_factory=dict)
    by_subject_kind: Dict[str, int] = Field(default_factory=dict)
    total: int = Field(0, ge=0)
