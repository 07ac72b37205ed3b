"""
Test Configuration and Fixtures

In-memory stores with the same interface as the MongoDB stores, plus
sample vehicles and booking payloads.
"""

import threading
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from availability import ranges_overlap
from bookings import BookingService, VehicleLocks
from config import Settings
from errors import DuplicateReference
from schemas import Booking, BookingStatus, CustomPrice, Vehicle


# ============================================================================
# IN-MEMORY STORES
# ============================================================================

class InMemoryBookingStore:
    def __init__(self):
        self.items: Dict[str, Booking] = {}
        self.query_delay = 0.0
        self.overlap_queries = 0
        self._lock = threading.Lock()

    def insert(self, booking: Booking) -> Booking:
        with self._lock:
            if any(b.booking_reference == booking.booking_reference for b in self.items.values()):
                raise DuplicateReference(booking.booking_reference)
            stored = booking.model_copy(update={"id": uuid.uuid4().hex})
            self.items[stored.id] = stored
            return stored

    def get(self, booking_id: str) -> Optional[Booking]:
        return self.items.get(booking_id)

    def find_overlapping(self, vehicle_ids, start, end, statuses) -> List[Booking]:
        self.overlap_queries += 1
        statuses = {BookingStatus(s) for s in statuses}
        with self._lock:
            snapshot = list(self.items.values())
        if self.query_delay:
            # Widen the window between the availability read and the insert
            time.sleep(self.query_delay)
        return [
            b for b in snapshot
            if b.vehicle_id in vehicle_ids
            and b.status in statuses
            and ranges_overlap(start, end, b.pickup_date, b.return_date)
        ]

    def find_for_vehicle(self, vehicle_id, statuses) -> List[Booking]:
        statuses = {BookingStatus(s) for s in statuses}
        found = [b for b in self.items.values() if b.vehicle_id == vehicle_id and b.status in statuses]
        return sorted(found, key=lambda b: b.pickup_date)

    def find_by_email(self, email, reference=None) -> List[Booking]:
        found = [
            b for b in self.items.values()
            if b.client_info.email == email and (reference is None or b.booking_reference == reference)
        ]
        return sorted(found, key=lambda b: b.created_at, reverse=True)

    def list_bookings(self, status=None, limit=None, offset=0) -> List[Booking]:
        found = [b for b in self.items.values() if status is None or b.status == status]
        found.sort(key=lambda b: b.created_at, reverse=True)
        found = found[offset:]
        return found[:limit] if limit else found

    def count(self, status=None) -> int:
        return len([b for b in self.items.values() if status is None or b.status == status])

    def count_covering(self, day, statuses) -> int:
        statuses = {BookingStatus(s) for s in statuses}
        return len([
            b for b in self.items.values()
            if b.status in statuses and b.pickup_date <= day <= b.return_date
        ])

    def count_pickups_after(self, day, status) -> int:
        return len([b for b in self.items.values() if b.status == status and b.pickup_date > day])

    def total_cost(self, statuses) -> Decimal:
        statuses = {BookingStatus(s) for s in statuses}
        return sum((b.pricing.total_cost for b in self.items.values() if b.status in statuses), Decimal("0.00"))

    def update_contact(self, booking_id, fields) -> Optional[Booking]:
        with self._lock:
            booking = self.items.get(booking_id)
            if booking is None:
                return None
            client_info = booking.client_info.model_copy(update=fields)
            updated = booking.model_copy(update={"client_info": client_info, "updated_at": datetime.now(timezone.utc)})
            self.items[booking_id] = updated
            return updated

    def update_status(self, booking_id, status, expected=None) -> Optional[Booking]:
        with self._lock:
            booking = self.items.get(booking_id)
            if booking is None or (expected is not None and booking.status != expected):
                return None
            updated = booking.model_copy(update={
                "status": BookingStatus(status),
                "updated_at": datetime.now(timezone.utc),
            })
            self.items[booking_id] = updated
            return updated


class InMemoryVehicleStore:
    def __init__(self):
        self.items: Dict[str, Vehicle] = {}

    def add(self, **fields: Any) -> Vehicle:
        data = {"make": "Toyota", "model": "Corolla", "category": "C", "daily_rate": Decimal("50.00")}
        data.update(fields)
        return self.insert(Vehicle(**data))

    def get(self, vehicle_id: str) -> Optional[Vehicle]:
        return self.items.get(vehicle_id)

    def list_vehicles(self, status=None) -> List[Vehicle]:
        return [v for v in self.items.values() if status is None or v.status == status]

    def insert(self, vehicle: Vehicle) -> Vehicle:
        stored = vehicle.model_copy(update={"id": uuid.uuid4().hex})
        self.items[stored.id] = stored
        return stored

    def upsert_custom_price(self, vehicle_id: str, entry: CustomPrice) -> Optional[Vehicle]:
        vehicle = self.items.get(vehicle_id)
        if vehicle is None:
            return None
        pricing = list(vehicle.custom_pricing)
        for index, existing in enumerate(pricing):
            if existing.date == entry.date:
                pricing[index] = entry
                break
        else:
            pricing.append(entry)
        return self.replace_custom_pricing(vehicle_id, pricing)

    def remove_custom_price(self, vehicle_id, day) -> Optional[Vehicle]:
        vehicle = self.items.get(vehicle_id)
        if vehicle is None:
            return None
        return self.replace_custom_pricing(vehicle_id, [p for p in vehicle.custom_pricing if p.date != day])

    def replace_custom_pricing(self, vehicle_id, entries) -> Optional[Vehicle]:
        vehicle = self.items.get(vehicle_id)
        if vehicle is None:
            return None
        updated = vehicle.model_copy(update={"custom_pricing": list(entries)})
        self.items[vehicle_id] = updated
        return updated


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        INITIAL_BOOKING_STATUS="confirmed",
        STATUS_TRANSITION_POLICY="permissive",
        PRICE_TABLE="booking",
        REFERENCE_PREFIX="CAR",
        REFERENCE_MAX_ATTEMPTS=5,
    )


@pytest.fixture
def booking_store() -> InMemoryBookingStore:
    return InMemoryBookingStore()


@pytest.fixture
def vehicle_store() -> InMemoryVehicleStore:
    return InMemoryVehicleStore()


@pytest.fixture
def vehicle(vehicle_store) -> Vehicle:
    return vehicle_store.add(make="Volkswagen", model="Golf", daily_rate=Decimal("50.00"))


@pytest.fixture
def service(booking_store, vehicle_store, settings) -> BookingService:
    return BookingService(booking_store, vehicle_store, settings=settings, locks=VehicleLocks())


@pytest.fixture
def make_payload():
    """Build a camelCase booking submission."""

    def _make(vehicle_id: str, pickup: str = "2024-06-10", return_: str = "2024-06-15", **overrides) -> Dict[str, Any]:
        start = datetime.fromisoformat(pickup[:10])
        end = datetime.fromisoformat(return_[:10])
        payload = {
            "clientInfo": {
                "firstName": "Ana",
                "lastName": "Horvat",
                "email": "ana.horvat@example.com",
                "phoneNumber": "991234567",
                "countryCode": "+385",
            },
            "vehicleId": vehicle_id,
            "pickupDate": pickup,
            "returnDate": return_,
            "pickupLocation": "Split Airport",
            "rentalDays": max(1, (end - start).days),
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def booked_factory(service, vehicle, make_payload):
    """Create a booking through the service; defaults to the shared vehicle."""

    def _book(vehicle_id: Optional[str] = None, pickup: str = "2024-06-10", return_: str = "2024-06-15") -> Booking:
        return service.create_booking(make_payload(vehicle_id or vehicle.id, pickup, return_))

    return _book
