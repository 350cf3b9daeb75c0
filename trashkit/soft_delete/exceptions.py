"""Exceptions for trash lifecycle operations."""

from typing import Optional


class TrashError(Exception):
    """Base exception for trash lifecycle operations."""

    status_code = 400

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.message = message
        self.entity_id = entity_id
        super().__init__(message)


class UnknownModuleError(TrashError):
    """Raised when a module key is not in the registry."""

    def __init__(self, module_key: str):
        self.module_key = module_key
        super().__init__(f"Invalid module: {module_key}")


class OperationNotImplementedError(TrashError):
    """Raised when a module does not support the requested operation."""

    def __init__(self, module_key: str, operation: str):
        self.module_key = module_key
        self.operation = operation
        label = operation.replace("_", " ").capitalize()
        super().__init__(f"{label} not implemented for this module")


class InvalidItemIdError(TrashError):
    """Raised when an item id is malformed."""

    def __init__(self, entity_id: str):
        super().__init__(f"Invalid item id: {entity_id!r}", entity_id=entity_id)


class NotInTrashError(TrashError):
    """Raised when an item, or any item for a bulk operation, is not in trash."""

    status_code = 404


class RestoreConflictError(TrashError):
    """Raised when restoring would collide with an active record."""

    status_code = 409


class GuardRefusedError(TrashError):
    """Raised when a module refuses a permanent delete."""
