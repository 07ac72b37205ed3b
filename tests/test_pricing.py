"""
Tests for rental pricing.

Flat formula, day-by-day calendar resolution and the price tables.
"""

from datetime import date
from decimal import Decimal

import pytest

from pricing import (
    BOOKING_PRICE_TABLE,
    QUOTE_FORM_PRICE_TABLE,
    calculate_calendar_pricing,
    calculate_pricing,
    calculate_rental_days,
    check_pricing,
    get_price_table,
    iter_dates,
    price_rental,
    priced_days,
    to_cents,
)
from schemas import CoverageTier, CustomPrice, Vehicle


def make_vehicle(rate="80.00", custom_pricing=None) -> Vehicle:
    return Vehicle(
        make="Skoda",
        model="Octavia",
        category="CDMR",
        daily_rate=Decimal(rate),
        custom_pricing=custom_pricing or [],
    )


class TestRentalDays:

    def test_whole_days(self):
        assert calculate_rental_days(date(2024, 6, 10), date(2024, 6, 15)) == 5

    def test_same_day_counts_as_one(self):
        assert calculate_rental_days(date(2024, 6, 10), date(2024, 6, 10)) == 1

    def test_never_below_one(self):
        assert calculate_rental_days(date(2024, 6, 10), date(2024, 6, 9)) == 1

    def test_iter_dates_is_inclusive(self):
        days = list(iter_dates(date(2024, 2, 28), date(2024, 3, 1)))
        assert days == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]


class TestFlatPricing:

    # ========================================================================
    # BOOKING TABLE
    # ========================================================================

    def test_full_coverage_with_wifi(self):
        """€50 base + €15 coverage + €4.60 wifi over 3 days."""
        pricing = calculate_pricing(
            Decimal("50.00"), 3, CoverageTier.FULL, {"wifiHotspot": True}, BOOKING_PRICE_TABLE,
        )

        assert pricing.cdw_cost == Decimal("15.00")
        assert pricing.add_ons_cost == Decimal("4.60")
        assert pricing.total_daily_rate == Decimal("69.60")
        assert pricing.base_subtotal == Decimal("150.00")
        assert pricing.total_cost == Decimal("208.80")
        assert pricing.daily_breakdown == []

    def test_basic_coverage_is_free(self):
        pricing = calculate_pricing(Decimal("42.50"), 2, CoverageTier.BASIC, {}, BOOKING_PRICE_TABLE)

        assert pricing.cdw_cost == Decimal("0.00")
        assert pricing.total_cost == Decimal("85.00")

    def test_unselected_and_unknown_add_ons_are_ignored(self):
        pricing = calculate_pricing(
            Decimal("30.00"),
            1,
            "basic",
            {"additionalDriver": True, "tireProtection": False, "jetpack": True},
            BOOKING_PRICE_TABLE,
        )

        assert pricing.add_ons_cost == Decimal("4.75")
        assert pricing.total_cost == Decimal("34.75")

    def test_all_add_ons_accumulate_in_cents(self):
        every = {name: True for name in BOOKING_PRICE_TABLE.add_ons}
        pricing = calculate_pricing(Decimal("0.10"), 7, "basic", every, BOOKING_PRICE_TABLE)

        expected_daily = sum(to_cents(p) for p in BOOKING_PRICE_TABLE.add_ons.values()) + 10
        assert to_cents(pricing.total_daily_rate) == expected_daily
        assert to_cents(pricing.total_cost) == expected_daily * 7

    def test_float_rate_is_exact(self):
        pricing = calculate_pricing(0.1 + 0.2, 3, "basic", None, BOOKING_PRICE_TABLE)
        assert pricing.total_cost == Decimal("0.90")

    def test_rejects_zero_days(self):
        with pytest.raises(ValueError):
            calculate_pricing(Decimal("50.00"), 0, "basic", None, BOOKING_PRICE_TABLE)

    def test_rejects_negative_rate(self):
        with pytest.raises(ValueError):
            calculate_pricing(Decimal("-1.00"), 2, "basic", None, BOOKING_PRICE_TABLE)

    # ========================================================================
    # QUOTE FORM TABLE
    # ========================================================================

    def test_quote_form_table(self):
        pricing = calculate_pricing(
            Decimal("50.00"), 3, CoverageTier.FULL, {"wifiHotspot": True}, QUOTE_FORM_PRICE_TABLE,
        )

        assert pricing.cdw_cost == Decimal("9.95")
        assert pricing.add_ons_cost == Decimal("6.95")
        assert pricing.total_daily_rate == Decimal("66.90")
        assert pricing.total_cost == Decimal("200.70")

    def test_get_price_table(self):
        assert get_price_table("booking") is BOOKING_PRICE_TABLE
        assert get_price_table("quote_form") is QUOTE_FORM_PRICE_TABLE
        with pytest.raises(ValueError):
            get_price_table("weekend")


class TestCalendarPricing:

    def test_override_inside_range_is_summed_per_day(self):
        """One night over a holiday costs base day + holiday day."""
        holiday = CustomPrice(date="2024-07-04", price=Decimal("120.00"), label="Holiday")
        vehicle = make_vehicle("80.00", [holiday])

        pricing = price_rental(vehicle, date(2024, 7, 3), date(2024, 7, 4), "basic", {}, BOOKING_PRICE_TABLE)

        assert pricing.total_cost == Decimal("200.00")
        assert [d.base_rate for d in pricing.daily_breakdown] == [Decimal("80.00"), Decimal("120.00")]
        assert pricing.daily_breakdown[1].source == "custom"
        assert pricing.daily_breakdown[1].label == "Holiday"
        assert pricing.daily_breakdown[0].source == "base"

    def test_no_override_in_range_uses_flat_formula(self):
        vehicle = make_vehicle("80.00", [CustomPrice(date="2024-12-24", price=Decimal("150.00"))])

        pricing = price_rental(vehicle, date(2024, 7, 3), date(2024, 7, 4), "basic", {}, BOOKING_PRICE_TABLE)

        assert pricing.total_cost == Decimal("80.00")
        assert pricing.daily_breakdown == []

    def test_surcharges_apply_to_every_day(self):
        overrides = {date(2024, 7, 5): CustomPrice(date="2024-07-05", price=Decimal("100.00"))}

        pricing = calculate_calendar_pricing(
            Decimal("80.00"),
            date(2024, 7, 4),
            date(2024, 7, 6),
            overrides,
            CoverageTier.FULL,
            {"roadsideAssistance": True},
            BOOKING_PRICE_TABLE,
        )

        # 80 + 100 + 80 base, plus 16.20 surcharge on each of 3 days
        assert pricing.base_subtotal == Decimal("260.00")
        assert pricing.total_cost == Decimal("308.60")
        assert pricing.total_daily_rate == Decimal("96.20")
        check_pricing(pricing, 2)

    def test_duplicate_date_later_entry_wins(self):
        vehicle = make_vehicle("80.00", [
            CustomPrice(date="2024-07-04", price=Decimal("120.00")),
            CustomPrice(date="2024-07-04", price=Decimal("99.00")),
        ])

        assert len(vehicle.custom_pricing) == 1
        pricing = price_rental(vehicle, date(2024, 7, 3), date(2024, 7, 4), "basic", {}, BOOKING_PRICE_TABLE)
        assert pricing.total_cost == Decimal("179.00")

    def test_priced_days(self):
        vehicle = make_vehicle("80.00", [CustomPrice(date="2024-07-04", price=Decimal("120.00"))])

        calendar = price_rental(vehicle, date(2024, 7, 3), date(2024, 7, 4), "basic", {}, BOOKING_PRICE_TABLE)
        flat = price_rental(vehicle, date(2024, 7, 5), date(2024, 7, 7), "basic", {}, BOOKING_PRICE_TABLE)

        assert priced_days(calendar, 1) == 2
        assert priced_days(flat, 2) == 2


class TestCheckPricing:

    def test_detects_tampered_total(self):
        pricing = calculate_pricing(Decimal("50.00"), 3, "basic", None, BOOKING_PRICE_TABLE)
        tampered = pricing.model_copy(update={"total_cost": Decimal("1.00")})

        check_pricing(pricing, 3)
        with pytest.raises(ValueError):
            check_pricing(tampered, 3)
