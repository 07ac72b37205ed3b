"""
Rental Pricing

Base path:      (base rate + coverage + add-ons) x rental days
Calendar path:  per-date override or base rate, summed day by day over
                the closed [pickup, return] range

Amounts are accumulated in integer cents and returned as 2-place Decimals.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterator, List, Mapping, Optional

from config import get_settings
from schemas import CoverageTier, CustomPrice, DailyRate, Pricing, Vehicle

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceTable:
    """Coverage surcharge and per-day add-on prices."""
    name: str
    coverage_full_rate: Decimal
    add_ons: Mapping[str, Decimal] = field(default_factory=dict)

    def add_on_price(self, name: str) -> Optional[Decimal]:
        return self.add_ons.get(name)


# Prices charged when a booking is persisted
BOOKING_PRICE_TABLE = PriceTable(
    name="booking",
    coverage_full_rate=Decimal("15.00"),
    add_ons={
        "additionalDriver": Decimal("4.75"),
        "wifiHotspot": Decimal("4.60"),
        "roadsideAssistance": Decimal("1.20"),
        "tireProtection": Decimal("1.99"),
        "personalAccident": Decimal("2.39"),
        "theftProtection": Decimal("5.99"),
        "extendedTheft": Decimal("10.95"),
        "interiorProtection": Decimal("2.10"),
    },
)

# Prices shown by the standalone quote form
QUOTE_FORM_PRICE_TABLE = PriceTable(
    name="quote_form",
    coverage_full_rate=Decimal("9.95"),
    add_ons={
        "additionalDriver": Decimal("4.95"),
        "wifiHotspot": Decimal("6.95"),
        "roadsideAssistance": Decimal("3.95"),
        "tireProtection": Decimal("4.95"),
        "personalAccident": Decimal("4.95"),
        "theftProtection": Decimal("8.95"),
        "extendedTheft": Decimal("10.95"),
        "interiorProtection": Decimal("2.10"),
    },
)

PRICE_TABLES: Dict[str, PriceTable] = {
    table.name: table for table in (BOOKING_PRICE_TABLE, QUOTE_FORM_PRICE_TABLE)
}

ADD_ON_NAMES = tuple(BOOKING_PRICE_TABLE.add_ons)


def get_price_table(name: Optional[str] = None) -> PriceTable:
    """Price table by name; defaults to the configured PRICE_TABLE."""
    name = name or get_settings().PRICE_TABLE
    try:
        return PRICE_TABLES[name]
    except KeyError:
        raise ValueError(f"Unknown price table: {name}")


def to_cents(amount) -> int:
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int(value.quantize(CENT, rounding=ROUND_HALF_UP) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def calculate_rental_days(pickup_date: date, return_date: date) -> int:
    """Whole days between pickup and return, rounded up, never below 1."""
    seconds = (return_date - pickup_date).total_seconds()
    return max(1, math.ceil(seconds / 86400))


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every calendar date in the closed range [start, end]."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def selected_add_ons(add_ons: Optional[Mapping[str, bool]], table: PriceTable) -> List[str]:
    if not add_ons:
        return []
    selected = []
    for name, chosen in add_ons.items():
        if not chosen:
            continue
        if table.add_on_price(name) is None:
            logger.debug(f"Ignoring unpriced add-on '{name}' for table '{table.name}'")
            continue
        selected.append(name)
    return selected


def _surcharges_cents(cdw_coverage, add_ons, table: PriceTable):
    coverage = CoverageTier(cdw_coverage)
    cdw_cents = to_cents(table.coverage_full_rate) if coverage == CoverageTier.FULL else 0
    add_ons_cents = sum(to_cents(table.add_ons[name]) for name in selected_add_ons(add_ons, table))
    return cdw_cents, add_ons_cents


def calculate_pricing(
    base_daily_rate,
    rental_days: int,
    cdw_coverage=CoverageTier.BASIC,
    add_ons: Optional[Mapping[str, bool]] = None,
    table: Optional[PriceTable] = None,
) -> Pricing:
    """Flat daily rate times rental days."""
    if rental_days < 1:
        raise ValueError("rental_days must be at least 1")
    table = table or get_price_table()

    base_cents = to_cents(base_daily_rate)
    if base_cents < 0:
        raise ValueError("Daily rate cannot be negative")
    cdw_cents, add_ons_cents = _surcharges_cents(cdw_coverage, add_ons, table)
    daily_cents = base_cents + cdw_cents + add_ons_cents

    return Pricing(
        base_daily_rate=from_cents(base_cents),
        cdw_cost=from_cents(cdw_cents),
        add_ons_cost=from_cents(add_ons_cents),
        total_daily_rate=from_cents(daily_cents),
        base_subtotal=from_cents(base_cents * rental_days),
        total_cost=from_cents(daily_cents * rental_days),
    )


def calculate_calendar_pricing(
    base_daily_rate,
    pickup_date: date,
    return_date: date,
    overrides: Mapping[date, CustomPrice],
    cdw_coverage=CoverageTier.BASIC,
    add_ons: Optional[Mapping[str, bool]] = None,
    table: Optional[PriceTable] = None,
) -> Pricing:
    """
    Day-by-day pricing over the closed range [pickup_date, return_date].

    An override replaces the base rate for its date; coverage and add-on
    surcharges are added to every priced day.
    """
    table = table or get_price_table()
    base_cents = to_cents(base_daily_rate)
    cdw_cents, add_ons_cents = _surcharges_cents(cdw_coverage, add_ons, table)
    surcharge_cents = cdw_cents + add_ons_cents

    days: List[DailyRate] = []
    subtotal_cents = 0
    total_cents = 0
    # An inverted range still prices the pickup day
    for day in iter_dates(pickup_date, max(pickup_date, return_date)):
        override = overrides.get(day)
        day_cents = to_cents(override.price) if override else base_cents
        subtotal_cents += day_cents
        total_cents += day_cents + surcharge_cents
        days.append(DailyRate(
            date=day,
            base_rate=from_cents(day_cents),
            rate=from_cents(day_cents + surcharge_cents),
            source="custom" if override else "base",
            label=override.label if override else None,
        ))

    return Pricing(
        base_daily_rate=from_cents(base_cents),
        cdw_cost=from_cents(cdw_cents),
        add_ons_cost=from_cents(add_ons_cents),
        total_daily_rate=from_cents(base_cents + surcharge_cents),
        base_subtotal=from_cents(subtotal_cents),
        total_cost=from_cents(total_cents),
        daily_breakdown=days,
    )


def overrides_in_range(vehicle: Vehicle, pickup_date: date, return_date: date) -> Dict[date, CustomPrice]:
    return {
        day: entry for day, entry in vehicle.price_overrides().items()
        if pickup_date <= day <= return_date
    }


def price_rental(
    vehicle: Vehicle,
    pickup_date: date,
    return_date: date,
    cdw_coverage=CoverageTier.BASIC,
    add_ons: Optional[Mapping[str, bool]] = None,
    table: Optional[PriceTable] = None,
) -> Pricing:
    """
    Price a rental of ``vehicle``.

    Falls back to the flat formula when no custom price falls inside the
    range, otherwise sums the resolved rate of every date in the range.
    """
    overrides = overrides_in_range(vehicle, pickup_date, return_date)
    if overrides:
        return calculate_calendar_pricing(
            vehicle.daily_rate, pickup_date, return_date, overrides, cdw_coverage, add_ons, table,
        )
    rental_days = calculate_rental_days(pickup_date, return_date)
    return calculate_pricing(vehicle.daily_rate, rental_days, cdw_coverage, add_ons, table)


def priced_days(pricing: Pricing, rental_days: int) -> int:
    """Days actually charged: every date of the range on the calendar path, else rental days."""
    return len(pricing.daily_breakdown) if pricing.daily_breakdown else rental_days


def check_pricing(pricing: Pricing, rental_days: int) -> None:
    """Raise ValueError when a breakdown does not add up."""
    daily = pricing.base_daily_rate + pricing.cdw_cost + pricing.add_ons_cost
    if pricing.total_daily_rate != daily:
        raise ValueError(f"Total daily rate {pricing.total_daily_rate} != {daily}")
    if pricing.daily_breakdown:
        expected = sum((day.rate for day in pricing.daily_breakdown), Decimal("0.00"))
    else:
        expected = pricing.total_daily_rate * rental_days
    if pricing.total_cost != expected:
        raise ValueError(f"Total cost {pricing.total_cost} != {expected}")
