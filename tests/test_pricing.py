"""Unit tests for fare computation and surge bands."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ridehail.config import Settings
from ridehail.domain.errors import InvalidInput
from ridehail.domain.pricing import (
    FareCalculator,
    PricingRates,
    SurgeBand,
    SurgeSchedule,
    fare,
    round_money,
)

SEDAN = PricingRates.of(50, 12, 2)


class TestFare:
    def test_base_plus_distance_plus_time(self):
        assert fare(10, 20, SEDAN) == Decimal("210.00")  # 50 + 120 + 40

    def test_surge_multiplies_subtotal(self):
        assert fare(10, 20, SEDAN, Decimal("1.5")) == Decimal("315.00")

    def test_round_half_up_at_boundary(self):
        assert round_money(Decimal("210.005")) == Decimal("210.01")
        assert round_money(Decimal("210.004")) == Decimal("210.00")

    def test_fractional_inputs_round_half_up(self):
        # 50 + 0.0004*12 + 0.0001*2 = 50.005
        assert fare(0.0004, 0.0001, SEDAN) == Decimal("50.01")

    def test_zero_trip_costs_base_fare(self):
        assert fare(0, 0, SEDAN) == Decimal("50.00")

    def test_negative_distance_rejected(self):
        with pytest.raises(InvalidInput):
            fare(-1, 10, SEDAN)

    def test_non_positive_surge_rejected(self):
        with pytest.raises(InvalidInput):
            fare(10, 20, SEDAN, 0)


class TestSurgeSchedule:
    def setup_method(self):
        self.schedule = SurgeSchedule.from_settings(Settings(night_multiplier=1.8))

    @pytest.mark.parametrize("hour", [7, 8, 10, 17, 20])
    def test_peak_hours_inclusive(self, hour):
        assert self.schedule.multiplier(hour) == Decimal("1.5")
        assert self.schedule.band_for(hour).name == "peak"

    @pytest.mark.parametrize("hour", [22, 23, 0, 3, 6])
    def test_night_hours_inclusive(self, hour):
        assert self.schedule.multiplier(hour) == Decimal("1.8")

    @pytest.mark.parametrize("hour", [11, 12, 16, 21])
    def test_off_peak_is_one(self, hour):
        assert self.schedule.multiplier(hour) == Decimal("1")
        assert self.schedule.band_for(hour) is None

    def test_hour_out_of_range(self):
        with pytest.raises(InvalidInput):
            self.schedule.multiplier(24)

    def test_night_multiplier_outside_policy_range_rejected(self):
        with pytest.raises(ValueError):
            Settings(night_multiplier=2.5)

    def test_first_matching_band_wins(self):
        schedule = SurgeSchedule(
            [
                SurgeBand("a", ((8, 9),), Decimal("2")),
                SurgeBand("b", ((9, 10),), Decimal("3")),
            ]
        )
        assert schedule.multiplier(9) == Decimal("2")


class TestFareCalculator:
    def test_quote_applies_surge_for_local_hour(self):
        calc = FareCalculator(SurgeSchedule.from_settings(Settings()), "UTC")
        quote = calc.quote(10, 20, SEDAN, now=datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc))
        assert quote.surge_multiplier == Decimal("1.5")
        assert quote.total_fare == Decimal("315.00")
        assert quote.base_fare == Decimal("50")

    def test_local_hour_uses_service_timezone(self):
        calc = FareCalculator(SurgeSchedule.from_settings(Settings()), "Asia/Kolkata")
        # 03:00 UTC is 08:30 in Kolkata
        now = datetime(2026, 3, 2, 3, 0, tzinfo=timezone.utc)
        assert calc.local_hour(now) == 8
        assert calc.surge_multiplier(now) == Decimal("1.5")

    def test_no_bands_means_flat_pricing(self):
        calc = FareCalculator(SurgeSchedule([]))
        quote = calc.quote(10, 20, SEDAN, now=datetime(2026, 3, 2, 8, tzinfo=timezone.utc))
        assert quote.total_fare == Decimal("210.00")
