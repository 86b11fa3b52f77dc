"""Error types raised by the decision support core.

Per-item problems (one CSV row, one rule) are collected into result
objects instead of being raised. These exceptions are for failures that
make a whole operation meaningless, or that callers must handle as a
distinct condition (lookup of an unknown rule).
"""

from typing import Any


class DAKError(Exception):
    """Base exception for decision support errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DAKError):
    """Input failed a structural or clinical validation rule."""

    def __init__(self, message: str, field: str | None = None, **kwargs: Any):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class UnknownModuleError(ValidationError):
    """Module code is not part of the controlled vocabulary."""

    def __init__(self, module_code: str):
        super().__init__(
            f"Unrecognized module code '{module_code}'",
            field="module_code",
        )
        self.module_code = module_code


class NotFoundError(DAKError):
    """Lookup by id or rule code found nothing."""

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} '{entity_id}' not found",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ImportAbortedError(DAKError):
    """Bulk import could not run at all (unreadable file, missing headers)."""
