"""
Custom per-date vehicle pricing.

Admin calendar edits: add or replace the price for one date, remove one
date, or replace the whole list. At most one override exists per date;
a later write for the same date wins.
"""
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from errors import NotFound, ValidationFailed, validation_failed_from_errors
from pricing import from_cents, iter_dates, to_cents
from schemas import CustomPrice, DailyRate, Vehicle, to_iso_date

logger = logging.getLogger(__name__)

MAX_CALENDAR_DAYS = 366


def parse_custom_price(data: Dict[str, Any]) -> CustomPrice:
    payload = {k: v for k, v in data.items() if v is not None}
    try:
        return CustomPrice.model_validate(payload)
    except ValidationError as exc:
        raise validation_failed_from_errors(exc.errors()) from exc


def parse_pricing_date(value) -> date:
    if value in (None, ""):
        raise ValidationFailed("Date is required", field="date")
    try:
        return to_iso_date(value)
    except ValueError as exc:
        raise ValidationFailed(str(exc), field="date") from exc


class CustomPricingService:
    """Reads and edits ``Vehicle.custom_pricing`` through a vehicle store."""

    def __init__(self, vehicles):
        self.vehicles = vehicles

    def _vehicle(self, vehicle_id: str) -> Vehicle:
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        return vehicle

    def get_pricing(self, vehicle_id: str) -> List[CustomPrice]:
        return self._vehicle(vehicle_id).custom_pricing

    def set_price(
        self,
        vehicle_id: str,
        day,
        price,
        label: Optional[str] = None,
        type: Optional[str] = None,
    ) -> CustomPrice:
        """Add the override for ``day`` or replace the existing one."""
        if price in (None, ""):
            raise ValidationFailed("Date and valid price are required", field="price")
        entry = parse_custom_price({"date": day, "price": price, "label": label or None, "type": type or None})
        vehicle = self.vehicles.upsert_custom_price(vehicle_id, entry)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        logger.info(f"Custom price for vehicle {vehicle_id} on {entry.date.isoformat()} set to {entry.price}")
        return entry

    def remove_price(self, vehicle_id: str, day) -> List[CustomPrice]:
        day = parse_pricing_date(day)
        vehicle = self.vehicles.remove_custom_price(vehicle_id, day)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        logger.info(f"Custom price for vehicle {vehicle_id} on {day.isoformat()} removed")
        return vehicle.custom_pricing

    def replace_pricing(self, vehicle_id: str, entries: Iterable[Dict[str, Any]]) -> List[CustomPrice]:
        if not isinstance(entries, list):
            raise ValidationFailed("Pricing must be an array", field="pricing")
        merged: Dict[date, CustomPrice] = {}
        for raw in entries:
            if not isinstance(raw, dict):
                raise ValidationFailed("Each pricing entry must be an object", field="pricing")
            entry = parse_custom_price(raw)
            merged[entry.date] = entry
        vehicle = self.vehicles.replace_custom_pricing(vehicle_id, list(merged.values()))
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        logger.info(f"Custom pricing for vehicle {vehicle_id} replaced with {len(merged)} entries")
        return vehicle.custom_pricing

    def price_calendar(self, vehicle_id: str, start, end) -> List[DailyRate]:
        """Effective base price for every date in [start, end]."""
        start = parse_pricing_date(start)
        end = parse_pricing_date(end)
        if end < start:
            raise ValidationFailed("End date must not be before start date", field="end")
        if (end - start).days >= MAX_CALENDAR_DAYS:
            raise ValidationFailed(f"Calendar range is limited to {MAX_CALENDAR_DAYS} days", field="end")

        vehicle = self._vehicle(vehicle_id)
        overrides = vehicle.price_overrides()
        base_cents = to_cents(vehicle.daily_rate)
        days = []
        for day in iter_dates(start, end):
            override = overrides.get(day)
            rate = from_cents(to_cents(override.price) if override else base_cents)
            days.append(DailyRate(
                date=day,
                base_rate=rate,
                rate=rate,
                source="custom" if override else "base",
                label=override.label if override else None,
            ))
        return days
