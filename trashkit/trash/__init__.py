"""Trash listing and lifecycle dispatch across registry modules."""

from .dispatcher import TRASH_ROOM, TRASH_UPDATED_EVENT, LifecycleDispatcher, validate_item_id
from .query import DEFAULT_PAGE_SIZE, TrashQueryEngine

__all__ = [
    "TrashQueryEngine",
    "LifecycleDispatcher",
    "validate_item_id",
    "DEFAULT_PAGE_SIZE",
    "TRASH_ROOM",
    "TRASH_UPDATED_EVENT",
]
