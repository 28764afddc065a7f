"""Exceptions raised by the production core."""

from __future__ import annotations


class ProductionError(RuntimeError):
    """Base exception for production tracking errors."""


class ValidationError(ProductionError, ValueError):
    """Raised when a command is rejected before any mutation."""


class InvalidPartition(ValidationError):
    """Raised when split groups do not partition the item quantity."""


class IllegalTransition(ValidationError):
    """Raised when a status, pause or move transition is not allowed."""


class ItemPausedError(ValidationError):
    """Raised when work is recorded against a paused item or sub-task."""


class WorkOrderLockedError(ProductionError):
    """Raised when an in-progress work order is moved off the calendar."""


class PersistenceFailure(ProductionError):
    """Raised when the storage collaborator fails to write a record."""


__all__ = [
    "ProductionError",
    "ValidationError",
    "InvalidPartition",
    "IllegalTransition",
    "ItemPausedError",
    "WorkOrderLockedError",
    "PersistenceFailure",
]
