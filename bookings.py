"""
Booking Service

Creation, lookup and status management for rental bookings.

Availability check and insert run under a per-vehicle lock, so two
overlapping requests for the same vehicle handled by this process cannot
both pass the check before either is written. Status changes that make
a booking active re-check availability under the same lock.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from availability import AvailabilityChecker
from config import Settings, get_settings
from errors import (
    BookingConflict,
    DuplicateReference,
    NotFound,
    PersistenceError,
    ValidationFailed,
    validation_failed_from_errors,
)
from lifecycle import activates, parse_status, validate_transition
from logging_config import get_logger
from pricing import (
    ADD_ON_NAMES,
    PriceTable,
    calculate_rental_days,
    check_pricing,
    get_price_table,
    price_rental,
    priced_days,
)
from reference import generate_booking_reference, is_booking_reference
from schemas import (
    ACTIVE_STATUSES,
    Booking,
    BookingRequest,
    BookingStatus,
    CoverageTier,
    Pricing,
    Vehicle,
    VehicleSnapshot,
    to_calendar_date,
)

logger = logging.getLogger(__name__)
events = get_logger("bookings.events")

# Bookings counted as revenue on the dashboard
EARNING_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED})


class VehicleLocks:
    """One lock per vehicle id, created on first use."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, vehicle_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(vehicle_id)
            if lock is None:
                lock = self._locks[vehicle_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, vehicle_id: str) -> Iterator[None]:
        with self.get(vehicle_id):
            yield


# Shared by every service instance in this process
VEHICLE_LOCKS = VehicleLocks()


def parse_date_param(value, field: str) -> date:
    if value in (None, ""):
        raise ValidationFailed(f"{field} is required", field=field)
    try:
        parsed = to_calendar_date(value)
    except ValueError as exc:
        raise ValidationFailed(str(exc), field=field) from exc
    if not isinstance(parsed, date):
        raise ValidationFailed(f"Invalid date: {value!r}", field=field)
    return parsed


def parse_date_range(pickup, return_) -> Tuple[date, date]:
    pickup_date = parse_date_param(pickup, "pickupDate")
    return_date = parse_date_param(return_, "returnDate")
    if pickup_date >= return_date:
        raise ValidationFailed("Return date must be after pickup date", field="returnDate")
    return pickup_date, return_date


class BookingService:
    def __init__(
        self,
        bookings,
        vehicles,
        settings: Optional[Settings] = None,
        locks: Optional[VehicleLocks] = None,
        price_table: Optional[PriceTable] = None,
        reference_factory: Callable[[], str] = generate_booking_reference,
    ):
        self.bookings = bookings
        self.vehicles = vehicles
        self.settings = settings or get_settings()
        self.locks = locks or VEHICLE_LOCKS
        self.price_table = price_table or get_price_table(self.settings.PRICE_TABLE)
        self.reference_factory = reference_factory
        self.availability = AvailabilityChecker(bookings)

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_booking(self, request: Union[BookingRequest, Dict[str, Any]]) -> Booking:
        if not isinstance(request, BookingRequest):
            try:
                request = BookingRequest.model_validate(request)
            except ValidationError as exc:
                raise validation_failed_from_errors(exc.errors()) from exc

        if request.pickup_date >= request.return_date:
            raise ValidationFailed("Return date must be after pickup date", field="returnDate")
        expected_days = calculate_rental_days(request.pickup_date, request.return_date)
        if request.rental_days != expected_days:
            raise ValidationFailed(
                f"rentalDays must be {expected_days} for the selected dates",
                field="rentalDays",
                detail={"expected": expected_days, "received": request.rental_days},
            )

        vehicle = self.get_vehicle(request.vehicle_id)

        with self.locks.hold(vehicle.id):
            self.availability.ensure_available(vehicle.id, request.pickup_date, request.return_date)
            pricing = price_rental(
                vehicle,
                request.pickup_date,
                request.return_date,
                request.cdw_coverage,
                request.add_ons,
                self.price_table,
            )
            check_pricing(pricing, expected_days)
            booking = self._insert_with_fresh_reference(
                lambda reference: self._build_booking(reference, request, vehicle, pricing)
            )

        events.info(
            "booking_created",
            booking_reference=booking.booking_reference,
            vehicle_id=booking.vehicle_id,
            pickup_date=booking.pickup_date.isoformat(),
            return_date=booking.return_date.isoformat(),
            total_cost=str(booking.pricing.total_cost),
        )
        return booking

    def _build_booking(self, reference: str, request: BookingRequest, vehicle: Vehicle, pricing: Pricing) -> Booking:
        now = datetime.now(timezone.utc)
        return Booking(
            booking_reference=reference,
            client_info=request.client_info,
            vehicle_id=vehicle.id,
            vehicle_info=VehicleSnapshot(
                make=vehicle.make,
                model=vehicle.model,
                category=vehicle.category,
                daily_rate=vehicle.daily_rate,
                currency=vehicle.currency,
            ),
            pickup_date=request.pickup_date,
            return_date=request.return_date,
            pickup_location=request.pickup_location,
            rental_days=request.rental_days,
            cdw_coverage=request.cdw_coverage,
            add_ons={name: bool(request.add_ons.get(name, False)) for name in ADD_ON_NAMES},
            pricing=pricing,
            status=BookingStatus(self.settings.INITIAL_BOOKING_STATUS),
            created_at=now,
            updated_at=now,
        )

    def _insert_with_fresh_reference(self, build: Callable[[str], Booking]) -> Booking:
        attempts = self.settings.REFERENCE_MAX_ATTEMPTS
        reference = ""
        for attempt in range(1, attempts + 1):
            reference = self.reference_factory()
            try:
                return self.bookings.insert(build(reference))
            except DuplicateReference:
                logger.warning(f"Booking reference {reference} already taken (attempt {attempt}/{attempts})")
        raise DuplicateReference(reference, attempts)

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get_vehicle(self, vehicle_id: str) -> Vehicle:
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        return vehicle

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFound("Booking", booking_id)
        return booking

    def find_customer_bookings(self, email: Optional[str], reference: Optional[str] = None) -> List[Booking]:
        """Self-service lookup by email, optionally narrowed to one reference. Newest first."""
        if not email or not email.strip():
            raise ValidationFailed("Email parameter is required", field="email")
        reference = reference.strip().upper() if reference else None
        if reference and not is_booking_reference(reference, self.settings.REFERENCE_PREFIX):
            raise ValidationFailed(f"Invalid booking reference: {reference}", field="reference")
        return self.bookings.find_by_email(email.strip().lower(), reference)

    def list_bookings(
        self,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Booking], int]:
        """Admin listing, newest first, with the total count for the filter."""
        parsed = None if status in (None, "", "all") else parse_status(status)
        if limit is not None and limit < 1:
            raise ValidationFailed("limit must be positive", field="limit")
        if offset < 0:
            raise ValidationFailed("offset must not be negative", field="offset")
        items = self.bookings.list_bookings(parsed, limit, offset)
        return items, self.bookings.count(parsed)

    def vehicle_bookings(self, vehicle_id: str) -> List[Booking]:
        """Active bookings of a vehicle, for its calendar."""
        self.get_vehicle(vehicle_id)
        return self.bookings.find_for_vehicle(vehicle_id, ACTIVE_STATUSES)

    # =========================================================================
    # STATUS
    # =========================================================================

    def update_status(self, booking_id: str, status) -> Booking:
        return self._transition(self.get_booking(booking_id), status)

    def _transition(self, booking: Booking, status) -> Booking:
        """Move ``booking`` to ``status``; the write only applies if the stored status still matches."""
        target = validate_transition(booking.status, status, self.settings.STATUS_TRANSITION_POLICY)
        if target == booking.status:
            return booking

        if activates(booking.status, target):
            with self.locks.hold(booking.vehicle_id):
                self.availability.ensure_available(
                    booking.vehicle_id, booking.pickup_date, booking.return_date, exclude_booking_id=booking.id,
                )
                updated = self.bookings.update_status(booking.id, target, expected=booking.status)
        else:
            updated = self.bookings.update_status(booking.id, target, expected=booking.status)

        if updated is None:
            raise PersistenceError(f"Booking {booking.booking_reference} changed concurrently; retry", transient=True)

        events.info(
            "booking_status_changed",
            booking_reference=booking.booking_reference,
            previous=booking.status.value,
            status=target.value,
        )
        return updated

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.status == BookingStatus.COMPLETED:
            raise ValidationFailed("Cannot cancel a completed booking", field="status")
        # Same snapshot as the check above, so a booking completed meanwhile fails the status guard
        return self._transition(booking, BookingStatus.CANCELLED)

    def update_booking(
        self,
        booking_id: str,
        status=None,
        phone_number: Optional[str] = None,
        flight_number: Optional[str] = None,
    ) -> Booking:
        """Change the status and/or the customer's phone and flight number."""
        contact = {
            name: value.strip()
            for name, value in (("phone_number", phone_number), ("flight_number", flight_number))
            if value and value.strip()
        }
        if status in (None, "") and not contact:
            raise ValidationFailed("Nothing to update: provide status or clientInfo.phoneNumber/flightNumber")

        booking = self.get_booking(booking_id)
        if status not in (None, ""):
            booking = self._transition(booking, status)
        if contact:
            updated = self.bookings.update_contact(booking.id, contact)
            if updated is None:
                raise NotFound("Booking", booking_id)
            booking = updated
            logger.info(f"Contact details of booking {booking.booking_reference} updated: {sorted(contact)}")
        return booking

    def bulk_update_status(self, booking_ids, status) -> Tuple[int, List[Dict[str, Any]]]:
        """
        Apply one status to many bookings.

        Each booking goes through the same transition rules as a single
        update. Returns the number of bookings whose status changed and the
        failures, one per booking that could not be updated.
        """
        if not isinstance(booking_ids, list) or not booking_ids:
            raise ValidationFailed("Booking IDs are required", field="bookingIds")
        if status in (None, ""):
            raise ValidationFailed("Updates are required", field="updates.status")
        target = parse_status(status)

        modified = 0
        failures: List[Dict[str, Any]] = []
        for booking_id in booking_ids:
            try:
                booking = self.get_booking(str(booking_id))
                updated = self._transition(booking, target)
            except (ValidationFailed, NotFound, BookingConflict) as exc:
                logger.warning(f"Bulk status update skipped booking {booking_id}: {exc.message}")
                failures.append({"id": str(booking_id), **exc.to_dict()})
                continue
            if updated.status != booking.status:
                modified += 1
        return modified, failures

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    def dashboard_stats(self, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or datetime.now(timezone.utc).date()
        return {
            "active_rentals": self.bookings.count_covering(today, ACTIVE_STATUSES),
            "total_bookings": self.bookings.count(),
            "upcoming_bookings": self.bookings.count_pickups_after(today, BookingStatus.CONFIRMED),
            "total_earned": self.bookings.total_cost(EARNING_STATUSES),
        }

    # =========================================================================
    # AVAILABILITY & QUOTES
    # =========================================================================

    def available_vehicles(self, pickup, return_, vehicle_id: Optional[str] = None) -> Tuple[List[Vehicle], date, date]:
        pickup_date, return_date = parse_date_range(pickup, return_)
        if vehicle_id:
            vehicle = self.vehicles.get(vehicle_id)
            candidates = [vehicle] if vehicle is not None and vehicle.status == "Available" else []
        else:
            candidates = self.vehicles.list_vehicles(status="Available")
        blocked = self.availability.blocked_vehicle_ids([v.id for v in candidates], pickup_date, return_date)
        return [v for v in candidates if v.id not in blocked], pickup_date, return_date

    def quote(
        self,
        vehicle_id: str,
        pickup,
        return_,
        cdw_coverage=CoverageTier.BASIC,
        add_ons: Optional[Dict[str, bool]] = None,
    ) -> Dict[str, Any]:
        pickup_date, return_date = parse_date_range(pickup, return_)
        try:
            coverage = CoverageTier(cdw_coverage or CoverageTier.BASIC)
        except ValueError as exc:
            raise ValidationFailed("cdwCoverage must be 'basic' or 'full'", field="cdwCoverage") from exc
        vehicle = self.get_vehicle(vehicle_id)
        availability = self.availability.check(vehicle.id, pickup_date, return_date)
        pricing = price_rental(vehicle, pickup_date, return_date, coverage, add_ons, self.price_table)
        rental_days = calculate_rental_days(pickup_date, return_date)
        return {
            "vehicle": vehicle,
            "pickup_date": pickup_date,
            "return_date": return_date,
            "rental_days": rental_days,
            "priced_days": priced_days(pricing, rental_days),
            "pricing": pricing,
            "available": availability.available,
            "conflicts": availability.conflicts,
        }
