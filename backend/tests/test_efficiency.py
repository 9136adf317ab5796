from decimal import Decimal

import pytest

from fuel_ledger.services.efficiency import (
    RateSpec,
    compute_efficiency,
    consumption_variance,
    efficiency_rating,
    expected_consumption,
    has_variance,
    is_reasonable_consumption,
    rate_comparison_status,
    relative_change_status,
    transfer_efficiency,
    transfer_efficiency_status,
)


class TestComputeEfficiency:
    def test_hour_only(self):
        result = compute_efficiency(30, 100, 102, 0, 0)
        assert result.per_hour == Decimal("15")
        assert result.per_km is None
        assert result.combined == Decimal("15")

    def test_zero_window_is_not_an_error(self):
        result = compute_efficiency(30, 100, 100, 50, 50)
        assert (result.per_hour, result.per_km, result.combined) == (None, None, None)

    def test_km_only(self):
        result = compute_efficiency(40, 10, 10, 1000, 1100)
        assert result.per_km == Decimal("0.4")
        assert result.combined == Decimal("0.4")

    def test_rounded_to_four_places(self):
        assert compute_efficiency(10, 0, 3, 0, 0).per_hour == Decimal("3.3333")


class TestRateComparison:
    def test_expected_and_variance(self):
        rate = RateSpec(Decimal("20"), Decimal("0.5"))
        expected = expected_consumption(8, 40, rate)
        assert expected == Decimal("180.00")
        assert consumption_variance(207, expected) == Decimal("15.00")
        assert consumption_variance(10, 0) is None

    @pytest.mark.parametrize(
        "variance,status",
        [(-20, "Excellent"), (-15, "Excellent"), (-10, "Good"), (0, "Normal"), (5, "Normal"), (12, "High"), (16, "Very High")],
    )
    def test_status_bands(self, variance, status):
        assert rate_comparison_status(variance) == status

    def test_has_variance_is_strictly_above_15(self):
        assert has_variance(Decimal("15")) is False
        assert has_variance(Decimal("-15.01")) is True
        assert has_variance(None) is False

    def test_reasonable_range(self):
        assert is_reasonable_consumption(50, Decimal("100")) is True
        assert is_reasonable_consumption(151, Decimal("100")) is False
        assert is_reasonable_consumption(10, None) is True


class TestRatings:
    def test_efficiency_rating_lower_is_better(self):
        assert efficiency_rating(Decimal("8"), Decimal("10")) == "Excellent"
        assert efficiency_rating(Decimal("10"), Decimal("10")) == "Average"
        assert efficiency_rating(Decimal("13"), Decimal("10")) == "Poor"
        assert efficiency_rating(None, Decimal("10")) == "N/A"
        assert efficiency_rating(Decimal("10"), None) == "Good"

    def test_transfer_efficiency(self):
        assert transfer_efficiency(1000, 5000, 4000, 0, 1000) == Decimal("100.00")
        assert transfer_efficiency(1000, 5000, 4000, 0, 950) == Decimal("95.00")
        assert transfer_efficiency_status(Decimal("95.00")) == "Good"
        assert transfer_efficiency_status(Decimal("79.99")) == "Very Poor"

    def test_relative_change(self):
        assert relative_change_status(Decimal("11"), Decimal("10")) == "Improving"
        assert relative_change_status(Decimal("10.2"), Decimal("10")) == "Stable"
        assert relative_change_status(Decimal("9"), Decimal("10")) == "Declining"
        assert relative_change_status(None, Decimal("10")) is None
