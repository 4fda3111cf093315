"""
Application-level exception types.

Not-found conditions inside the media core are modelled as ``None`` and data
quality findings as report warnings; only the cases below are raised.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class StorageError(AppError):
    """Raised when the underlying database fails (I/O, constraint, abort)."""


class InvalidAssetKindError(AppError):
    """Raised when a value cannot be interpreted as an asset kind."""

    def __init__(self, value: object) -> None:
        super().__init__(f"unknown asset kind: {value!r}", detail="unknown asset kind")
        self.value = value


class BackupFormatError(AppError):
    """Raised when a backup snapshot cannot be restored."""


class EntityNotFoundError(AppError):
    """Raised when a database entity cannot be found."""

    def __init__(self, entity_type: str, entity_id: object) -> None:
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            detail=f"{entity_type} not found",
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
