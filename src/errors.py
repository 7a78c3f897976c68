"""Domain errors shared by the restaurants and menus modules."""

from __future__ import annotations


class DizmenError(RuntimeError):
    """Base domain error."""


class AccessDeniedError(DizmenError):
    """Raised when the caller cannot perform the operation."""


class ValidationError(DizmenError):
    """Raised when input/state is invalid.

    `field_errors` maps form field names to messages for inline display.
    """

    def __init__(self, message: str, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.field_errors: dict[str, str] = dict(field_errors or {})


class NotFoundError(DizmenError):
    """Raised when the requested object doesn't exist."""


class ConflictError(DizmenError):
    """Raised when the object changed since the caller last read it."""


class StorageError(DizmenError):
    """Raised when the backing store fails or times out."""


class UploadError(DizmenError):
    """Raised when a document cannot be accepted or written."""
