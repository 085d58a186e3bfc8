"""
Structured errors raised by the attendance core.

Every error carries a machine-readable ``kind`` and a ``context`` dict so the
HTTP layer can map it to a response without parsing the message.
"""

from typing import Any, Dict, Optional


class AttendanceError(Exception):
    """Base class for all core errors."""

    kind = "error"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "context": self.context,
        }

    def __repr__(self):
        return f"<{type(self).__name__}(kind='{self.kind}', message='{self.message}')>"


class ValidationError(AttendanceError):
    """Input rejected before any storage is touched."""

    kind = "validation"


class NotFoundError(AttendanceError):
    """Referenced file or identity does not exist."""

    kind = "not_found"


class DuplicateIdentityError(AttendanceError):
    """A student with the same identifier is already registered."""

    kind = "duplicate_identity"


class StorageIOError(AttendanceError):
    """Disk read/write failure. Partial files are removed before raising."""

    kind = "storage_io"


class IngestionError(AttendanceError):
    """Unexpected failure inside the capture pipeline, tagged with the step it hit."""

    kind = "ingestion"
