"""
Data models for trash operations.

These models describe who is acting, how a trash listing is filtered, and
what a lifecycle operation reports back to its caller.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .mixins import as_naive_utc


class Operation(str, Enum):
    """Lifecycle operations a registry entry may support."""

    RESTORE = "restore"
    PERMANENT_DELETE = "permanent_delete"
    RESTORE_ALL = "restore_all"
    PERMANENT_DELETE_ALL = "permanent_delete_all"

    @property
    def is_bulk(self) -> bool:
        return self in (Operation.RESTORE_ALL, Operation.PERMANENT_DELETE_ALL)

    @property
    def is_restore(self) -> bool:
        return self in (Operation.RESTORE, Operation.RESTORE_ALL)


class Actor(BaseModel):
    """The identity performing an action."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="User ID", min_length=1, max_length=36)
    tenant_id: Optional[str] = Field(
        None, description="Business the actor is scoped to, None for admins"
    )
    role: str = Field("admin", description="Role of the actor")


class TrashFilters(BaseModel):
    """Filters applied to trash listings and counts."""

    tenant_id: Optional[str] = Field(None, description="Restrict to one business")
    deleted_by: Optional[str] = Field(None, description="ID of the deleting user")
    start_date: Optional[datetime] = Field(
        None, description="Earliest deletion time (inclusive)"
    )
    end_date: Optional[datetime] = Field(
        None, description="Latest deletion time (inclusive)"
    )

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store deletion bounds as naive UTC, like the stored timestamps."""
        return as_naive_utc(v)

    @model_validator(mode="after")
    def validate_date_range(self) -> "TrashFilters":
        """Ensure the deletion window is not inverted."""
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be before end_date")
        return self

    @classmethod
    def for_actor(cls, actor: Optional[Actor], **kwargs: Any) -> "TrashFilters":
        """Build filters scoped to the actor's business."""
        if actor is not None and actor.tenant_id:
            kwargs["tenant_id"] = actor.tenant_id
        return cls(**kwargs)


class TrashPage(BaseModel):
    """One page of trashed items plus the total across all pages."""

    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = Field(0, ge=0)


class LifecycleOutcome(BaseModel):
    """Result of a restore or permanent delete, single or bulk."""

    model_config = ConfigDict(use_enum_values=True)

    success: bool = Field(True, description="Whether the operation succeeded")
    status: int = Field(200, description="HTTP-equivalent status code")
    message: str = Field(..., description="Human-readable result")
    module: str = Field(..., description="Registry key of the module")
    operation: Operation = Field(..., description="Operation performed")
    item_id: Optional[str] = Field(None, description="Affected item, None for bulk")
    affected: int = Field(0, ge=0, description="Items transitioned")
    skipped: List[str] = Field(
        default_factory=list, description="Items left untouched by a bulk restore"
    )
    tenant_id: Optional[str] = Field(None, description="Business of the items")
    data: Optional[Dict[str, Any]] = Field(None, description="Restored record")

    @property
    def succeeded(self) -> bool:
        return self.success and 200 <= self.status < 300
