"""
Module registry for the trash subsystem.

A registry row tells the trash query engine and the lifecycle dispatcher
everything they need about one logical module: which entity backs it, which
extra condition narrows it to the module's subset of that entity, which query
strategy lists its trash, and which lifecycle operations it supports.

The registry is built once at start-up and passed to the components that
need it. It is immutable, so concurrent readers need no locking.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    Mapping,
    Optional,
    Tuple,
)

from sqlalchemy.ext.asyncio import AsyncSession

from .audit_trail.models import ModuleLabel, SubjectKind
from .soft_delete.exceptions import UnknownModuleError
from .soft_delete.models import Operation

# Returns a refusal message, or None to let the operation proceed
Guard = Callable[[AsyncSession, Any], Awaitable[Optional[str]]]

ALL_OPERATIONS: FrozenSet[Operation] = frozenset(Operation)
SINGLE_OPERATIONS: FrozenSet[Operation] = frozenset(
    {Operation.RESTORE, Operation.PERMANENT_DELETE}
)


class QueryStrategy(str, Enum):
    """How a module's trash is listed and counted."""

    FLAT = "flat"
    JOINED = "joined"
    EMBEDDED = "embedded"


@dataclass(frozen=True)
class JoinSpec:
    """
    Relation to the entity whose fields decide the module's visibility.

    Attributes:
        related: Mapped class joined to
        local_key: Attribute on the module entity holding the related id
        condition: Attribute/value pairs the related row must match
        related_key: Attribute on the related entity matched by local_key
        as_field: Key under which the related row is attached to each item
    """

    related: type
    local_key: str
    condition: Mapping[str, Any] = field(default_factory=dict)
    related_key: str = "id"
    as_field: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "condition", MappingProxyType(dict(self.condition)))


@dataclass(frozen=True)
class EmbeddedSpec:
    """
    Soft-deletable children stored in a JSON array of a parent entity.

    Attributes:
        collection: Name of the JSON array column on the parent
        title_field: Parent attribute copied to each row as ``parent_title``
        key_field: Parent attribute copied to each row as ``parent_key``
        label_field: Element key holding the child's display text
    """

    collection: str
    title_field: str = "title"
    key_field: Optional[str] = "slug"
    label_field: str = "question"


@dataclass(frozen=True)
class Cascade:
    """Dependent entity hard-deleted together with a purged record."""

    entity: type
    foreign_key: str


@dataclass(frozen=True)
class ModuleDescriptor:
    """
    One registry row.

    ``entity`` is the mapped class listed by the module; for the embedded
    strategy it is the parent aggregate. ``condition`` holds attribute/value
    pairs on ``entity`` narrowing it to the module's subset.
    """

    key: str
    entity: type
    strategy: QueryStrategy = QueryStrategy.FLAT
    condition: Mapping[str, Any] = field(default_factory=dict)
    join: Optional[JoinSpec] = None
    embedded: Optional[EmbeddedSpec] = None
    service: Optional[type] = None
    operations: FrozenSet[Operation] = ALL_OPERATIONS
    tenant_field: Optional[str] = "business_id"
    subject_kind: Optional[SubjectKind] = None
    label: Optional[ModuleLabel] = None
    display_name: Optional[str] = None
    restore_guard: Optional[Guard] = None
    purge_guard: Optional[Guard] = None
    cascades: Tuple[Cascade, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", self.key.lower())
        object.__setattr__(self, "condition", MappingProxyType(dict(self.condition)))
        object.__setattr__(self, "operations", frozenset(self.operations))

        if self.strategy == QueryStrategy.JOINED and self.join is None:
            raise ValueError(f"Module {self.key!r} uses the joined strategy without a join")
        if self.strategy == QueryStrategy.EMBEDDED and self.embedded is None:
            raise ValueError(
                f"Module {self.key!r} uses the embedded strategy without a collection"
            )
        if self.operations and self.service is None:
            raise ValueError(f"Module {self.key!r} declares operations without a service")

        for name in self.condition:
            if not hasattr(self.entity, name):
                raise ValueError(
                    f"Module {self.key!r}: {self.entity.__name__} has no attribute {name!r}"
                )
        if self.tenant_field and not hasattr(self.entity, self.tenant_field):
            raise ValueError(
                f"Module {self.key!r}: {self.entity.__name__} has no tenant field "
                f"{self.tenant_field!r}"
            )

    @property
    def name(self) -> str:
        return self.display_name or self.entity.__name__

    def supports(self, operation: Operation) -> bool:
        return operation in self.operations

    def where_condition(self) -> Tuple[Any, ...]:
        """SQL criteria for ``condition`` against ``entity``."""
        return tuple(
            getattr(self.entity, name) == value for name, value in self.condition.items()
        )


class ModuleRegistry(Mapping[str, ModuleDescriptor]):
    """
    Immutable table of module descriptors keyed by module key.

    Keys are case-insensitive. Lookups of unknown keys through ``get_module``
    raise ``UnknownModuleError``.
    """

    def __init__(self, descriptors: Iterable[ModuleDescriptor]):
        table: Dict[str, ModuleDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.key in table:
                raise ValueError(f"Duplicate module key: {descriptor.key!r}")
            table[descriptor.key] = descriptor
        self._table = MappingProxyType(table)

    def __getitem__(self, key: str) -> ModuleDescriptor:
        return self._table[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def get_module(self, key: str) -> ModuleDescriptor:
        try:
            return self[key]
        except (KeyError, AttributeError):
            raise UnknownModuleError(str(key)) from None

    def descriptors(self) -> Tuple[ModuleDescriptor, ...]:
        return tuple(self._table.values())
