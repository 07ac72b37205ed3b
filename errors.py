"""
Booking Errors

Every failure raised by the booking core carries a machine-readable
``kind``, a human-readable message and an optional detail payload.
The HTTP layer renders them as ``{success, error, message, detail}``.
"""
from typing import Any, Dict, List, Optional


class BookingError(Exception):
    """Base class for all booking core failures."""

    kind = "booking_error"
    status_code = 500

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.kind,
            "message": self.message,
            "detail": self.detail,
        }


class ValidationFailed(BookingError):
    """Missing or malformed input. Not retryable without correction."""

    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        detail = dict(detail or {})
        if field:
            detail.setdefault("field", field)
        super().__init__(message, detail)
        self.field = field


class IllegalTransition(ValidationFailed):
    """Status change rejected by the strict transition policy."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Invalid booking status transition: {current} -> {target}",
            field="status",
            detail={"current": current, "target": target},
        )
        self.current = current
        self.target = target


class NotFound(BookingError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, identifier: str):
        super().__init__(f"{entity} not found", {"entity": entity.lower(), "id": identifier})
        self.entity = entity
        self.identifier = identifier


class BookingConflict(BookingError):
    """Requested dates overlap active bookings of the same vehicle."""

    kind = "conflict"
    status_code = 409

    def __init__(self, conflicts: List[Dict[str, Any]]):
        count = len(conflicts)
        super().__init__(
            f"This vehicle has {count} conflicting booking(s) during your requested period.",
            {"conflicts": conflicts},
        )
        self.conflicts = conflicts


class PersistenceError(BookingError):
    """Storage unavailable or rejected the write."""

    kind = "persistence_error"
    status_code = 503

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message, {"transient": transient})
        self.transient = transient


class DuplicateReference(BookingError):
    """Booking reference collided with an existing one."""

    kind = "duplicate_reference"
    status_code = 500

    def __init__(self, reference: str, attempts: int = 1):
        super().__init__(
            f"Could not allocate a unique booking reference after {attempts} attempt(s)",
            {"reference": reference, "attempts": attempts},
        )
        self.reference = reference
        self.attempts = attempts


def _field_path(loc) -> str:
    return ".".join(str(part) for part in loc if part not in ("body", "query", "path"))


def validation_failed_from_errors(errors: List[Dict[str, Any]]) -> ValidationFailed:
    """Collapse pydantic error dicts into one ValidationFailed naming the first bad field."""
    if not errors:
        return ValidationFailed("Invalid request")
    first = errors[0]
    field = _field_path(first.get("loc", ()))
    message = str(first.get("msg", "Invalid value"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    if first.get("type") in ("missing", "string_too_short") and field:
        text = f"Missing required field: {field}"
    elif field:
        text = f"Invalid value for {field}: {message}"
    else:
        text = message
    issues = [
        {"field": _field_path(err.get("loc", ())), "message": str(err.get("msg", ""))}
        for err in errors
    ]
    return ValidationFailed(text, field=field or None, detail={"errors": issues})
