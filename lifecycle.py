"""
Booking status lifecycle.

    pending -> confirmed -> in_progress -> completed
    pending | confirmed | in_progress -> cancelled

completed and cancelled are terminal. The ``permissive`` policy accepts
any change between known statuses; ``strict`` accepts only the edges above.
"""
from typing import Dict, FrozenSet, Optional

from config import get_settings
from errors import IllegalTransition, ValidationFailed
from schemas import ACTIVE_STATUSES, BookingStatus

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

POLICIES = ("permissive", "strict")


def parse_status(value) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in BookingStatus)
        raise ValidationFailed(f"Invalid status '{value}'. Allowed: {allowed}", field="status")


def can_transition(current: BookingStatus, target: BookingStatus, policy: Optional[str] = None) -> bool:
    policy = policy or get_settings().STATUS_TRANSITION_POLICY
    if policy not in POLICIES:
        raise ValueError(f"Unknown transition policy: {policy}")
    if current == target or policy == "permissive":
        return True
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(current, target, policy: Optional[str] = None) -> BookingStatus:
    """Return the parsed target status, or raise IllegalTransition."""
    current = parse_status(current)
    target = parse_status(target)
    if not can_transition(current, target, policy):
        raise IllegalTransition(current.value, target.value)
    return target


def activates(current: BookingStatus, target: BookingStatus) -> bool:
    """True when the change makes the booking start blocking its dates."""
    return current not in ACTIVE_STATUSES and target in ACTIVE_STATUSES
