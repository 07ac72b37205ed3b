"""
Vehicle availability.

A candidate range conflicts with an existing booking when the two closed
ranges share at least one calendar day:

    candidate_start <= existing_return and candidate_end >= existing_pickup

Boundary-touching ranges conflict (no same-day turnover). Only bookings
in an active status are considered.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set

from errors import BookingConflict
from schemas import ACTIVE_STATUSES, Booking

logger = logging.getLogger(__name__)


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a <= end_b and end_a >= start_b


@dataclass
class Conflict:
    booking_reference: str
    pickup_date: date
    return_date: date
    customer: str

    @classmethod
    def from_booking(cls, booking: Booking) -> "Conflict":
        return cls(
            booking_reference=booking.booking_reference,
            pickup_date=booking.pickup_date,
            return_date=booking.return_date,
            customer=booking.client_info.display_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookingReference": self.booking_reference,
            "dates": f"{self.pickup_date.isoformat()} - {self.return_date.isoformat()}",
            "pickupDate": self.pickup_date.isoformat(),
            "returnDate": self.return_date.isoformat(),
            "customer": self.customer,
        }


@dataclass
class AvailabilityResult:
    vehicle_id: str
    pickup_date: date
    return_date: date
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return not self.conflicts


class AvailabilityChecker:
    """Reads active bookings through a booking store; never writes."""

    def __init__(self, bookings):
        self.bookings = bookings

    def _active_overlapping(self, vehicle_ids: List[str], start: date, end: date) -> List[Booking]:
        candidates = self.bookings.find_overlapping(vehicle_ids, start, end, ACTIVE_STATUSES)
        # The store query already filters; re-check so every store honours the same rule
        return [
            booking for booking in candidates
            if booking.is_active and ranges_overlap(start, end, booking.pickup_date, booking.return_date)
        ]

    def check(
        self,
        vehicle_id: str,
        pickup_date: date,
        return_date: date,
        exclude_booking_id: Optional[str] = None,
    ) -> AvailabilityResult:
        overlapping = self._active_overlapping([vehicle_id], pickup_date, return_date)
        conflicts = [
            Conflict.from_booking(booking) for booking in overlapping
            if booking.vehicle_id == vehicle_id and booking.id != exclude_booking_id
        ]
        if conflicts:
            logger.info(
                f"Vehicle {vehicle_id} has {len(conflicts)} conflict(s) "
                f"for {pickup_date.isoformat()} - {return_date.isoformat()}"
            )
        return AvailabilityResult(vehicle_id, pickup_date, return_date, conflicts)

    def ensure_available(
        self,
        vehicle_id: str,
        pickup_date: date,
        return_date: date,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        result = self.check(vehicle_id, pickup_date, return_date, exclude_booking_id)
        if not result.available:
            raise BookingConflict([conflict.to_dict() for conflict in result.conflicts])

    def blocked_vehicle_ids(self, vehicle_ids: Iterable[str], pickup_date: date, return_date: date) -> Set[str]:
        """Vehicles among ``vehicle_ids`` with at least one conflict, in one query."""
        vehicle_ids = list(vehicle_ids)
        if not vehicle_ids:
            return set()
        return {booking.vehicle_id for booking in self._active_overlapping(vehicle_ids, pickup_date, return_date)}
