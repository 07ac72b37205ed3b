"""
Database Schemas

Car Rental booking schemas using Pydantic models.
Each top-level model maps to a MongoDB collection using the lowercase class name.
- Vehicle -> "vehicle"
- Booking -> "booking"

Fields are snake_case in Python and in MongoDB, camelCase on the wire.
"""

import re
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Only these statuses reserve a vehicle's dates
ACTIVE_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS})


class CoverageTier(str, Enum):
    BASIC = "basic"
    FULL = "full"


def to_decimal(value):
    if isinstance(value, float):
        return Decimal(str(value))
    if hasattr(value, "to_decimal"):  # bson Decimal128
        return value.to_decimal()
    return value


def to_calendar_date(value):
    """Truncate datetimes and ISO strings to their calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if _ISO_DATE.match(text):
                return date.fromisoformat(text)
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}")
    return value


def to_iso_date(value):
    """Strict YYYY-MM-DD, as used by the pricing calendar."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _ISO_DATE.match(value.strip()):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValueError(f"Date must be in YYYY-MM-DD format: {value!r}")


Money = Annotated[
    Decimal,
    BeforeValidator(to_decimal),
    PlainSerializer(float, return_type=float, when_used="json"),
]
CalendarDate = Annotated[date, BeforeValidator(to_calendar_date)]
IsoDate = Annotated[date, BeforeValidator(to_iso_date)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomPrice(CamelModel):
    """Admin-set price for one vehicle on one calendar date."""
    date: IsoDate = Field(..., description="Calendar date the override applies to")
    price: Money = Field(..., gt=0, description="Daily price for that date")
    label: str = Field("Custom Price", description="Shown on the pricing calendar")
    type: str = Field("custom", description="Free-form override category")


class Vehicle(CamelModel):
    """
    Vehicles available for rent
    Collection: "vehicle"
    """
    id: Optional[str] = Field(None, description="Document id")
    make: str = Field(..., min_length=1, description="Manufacturer, e.g., Toyota")
    model: str = Field(..., min_length=1, description="Model, e.g., Corolla")
    category: str = Field(..., min_length=1, description="ACRISS category or display name")
    daily_rate: Money = Field(..., ge=0, description="Base daily rental rate")
    currency: Literal["EUR", "USD", "GBP", "HRK"] = Field("EUR")
    status: Literal["Available", "Booked", "Maintenance", "Inactive"] = Field("Available")
    location: Optional[str] = Field(None, description="Base location")
    custom_pricing: List[CustomPrice] = Field(default_factory=list)

    @model_validator(mode="after")
    def collapse_duplicate_dates(self):
        # One override per date; the later entry wins but keeps the earlier position
        merged: Dict[date, CustomPrice] = {}
        for entry in self.custom_pricing:
            merged[entry.date] = entry
        if len(merged) != len(self.custom_pricing):
            self.custom_pricing = list(merged.values())
        return self

    def price_overrides(self) -> Dict[date, CustomPrice]:
        return {entry.date: entry for entry in self.custom_pricing}


class ClientInfo(CamelModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    country_code: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    company: Optional[str] = None
    flight_number: Optional[str] = None
    promo_code: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_email(cls, data):
        if isinstance(data, dict) and isinstance(data.get("email"), str):
            data = {**data, "email": data["email"].strip().lower()}
        return data

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class VehicleSnapshot(CamelModel):
    """Vehicle identity and rate frozen at booking time."""
    make: str
    model: str
    category: str
    daily_rate: Money
    currency: str = "EUR"


class DailyRate(CamelModel):
    date: CalendarDate
    base_rate: Money
    rate: Money
    source: Literal["base", "custom"] = "base"
    label: Optional[str] = None


class Pricing(CamelModel):
    base_daily_rate: Money
    cdw_cost: Money = Decimal("0.00")
    add_ons_cost: Money = Decimal("0.00")
    total_daily_rate: Money
    base_subtotal: Money
    total_cost: Money
    daily_breakdown: List[DailyRate] = Field(default_factory=list)


class Booking(CamelModel):
    """
    Reservation of one vehicle for a contiguous date range
    Collection: "booking"
    """
    id: Optional[str] = None
    booking_reference: str = Field(..., description="Customer-facing unique reference")
    client_info: ClientInfo
    vehicle_id: str
    vehicle_info: VehicleSnapshot
    pickup_date: CalendarDate
    return_date: CalendarDate
    pickup_location: str
    rental_days: int = Field(..., ge=1)
    cdw_coverage: CoverageTier = CoverageTier.BASIC
    add_ons: Dict[str, bool] = Field(default_factory=dict)
    pricing: Pricing
    status: BookingStatus = BookingStatus.CONFIRMED
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_range(self):
        if self.pickup_date >= self.return_date:
            raise ValueError("Return date must be after pickup date")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class BookingRequest(CamelModel):
    """Customer booking submission."""
    client_info: ClientInfo
    vehicle_id: str = Field(..., min_length=1)
    pickup_date: CalendarDate
    return_date: CalendarDate
    pickup_location: str = Field(..., min_length=1)
    rental_days: int = Field(..., ge=1)
    cdw_coverage: CoverageTier = CoverageTier.BASIC
    add_ons: Dict[str, bool] = Field(default_factory=dict)
