"""
efficiency.py

Pure calculators for fuel efficiency, consumption variance and the
categorical ratings derived from them. Nothing here touches the database;
callers pass plain numbers (``Decimal`` or anything ``Decimal(str(x))`` accepts)
and get ``Decimal`` / ``None`` / ``str`` back.

``None`` always means "not computable" (e.g. no meter movement), never zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from fuel_ledger.utils.decimals import ZERO, round_to, to_decimal, to_ratio

HOUR_WEIGHT = Decimal("0.7")
KM_WEIGHT = Decimal("0.3")
REASONABLE_LOW = Decimal("0.5")
REASONABLE_HIGH = Decimal("1.5")
VARIANCE_FLAG_PCT = Decimal("15")


@dataclass(frozen=True)
class RateSpec:
    """Expected consumption: litres per hour-meter hour and per km."""

    per_hour: Decimal
    per_km: Decimal
    source: str = "rate"


@dataclass(frozen=True)
class EfficiencyResult:
    hour_diff: Decimal
    km_diff: Decimal
    per_hour: Optional[Decimal]
    per_km: Optional[Decimal]
    combined: Optional[Decimal]


# --------------------------------------------------------------------------- #
# meter based efficiency                                                      #
# --------------------------------------------------------------------------- #
def meter_diff(previous, current) -> Decimal:
    return to_decimal(current) - to_decimal(previous)


def efficiency_per_unit(fuel_amount, diff) -> Optional[Decimal]:
    """Litres per hour / km; ``None`` when the meter did not move forward."""
    diff = to_decimal(diff)
    if diff <= 0:
        return None
    return to_ratio(to_decimal(fuel_amount) / diff)


def combined_efficiency(per_hour: Optional[Decimal], per_km: Optional[Decimal]) -> Optional[Decimal]:
    """70/30 hour/km blend; falls back to whichever side is present."""
    if per_hour is None and per_km is None:
        return None
    if per_hour is None:
        return per_km
    if per_km is None:
        return per_hour
    return to_ratio(per_hour * HOUR_WEIGHT + per_km * KM_WEIGHT)


def compute_efficiency(
    fuel_amount,
    previous_hour_meter,
    current_hour_meter,
    previous_odometer,
    current_odometer,
) -> EfficiencyResult:
    hour_diff = meter_diff(previous_hour_meter, current_hour_meter)
    km_diff = meter_diff(previous_odometer, current_odometer)
    per_hour = efficiency_per_unit(fuel_amount, hour_diff)
    per_km = efficiency_per_unit(fuel_amount, km_diff)
    return EfficiencyResult(
        hour_diff=hour_diff,
        km_diff=km_diff,
        per_hour=per_hour,
        per_km=per_km,
        combined=combined_efficiency(per_hour, per_km),
    )


# --------------------------------------------------------------------------- #
# consumption vs configured rate                                              #
# --------------------------------------------------------------------------- #
def expected_consumption(hour_diff, km_diff, rate: RateSpec) -> Decimal:
    return round_to(to_decimal(hour_diff) * rate.per_hour + to_decimal(km_diff) * rate.per_km, 2)


def consumption_variance(actual, expected) -> Optional[Decimal]:
    """Percent deviation of *actual* from *expected*; ``None`` if expected is 0."""
    expected = to_decimal(expected)
    if expected == 0:
        return None
    return round_to((to_decimal(actual) - expected) / expected * 100, 2)


def is_reasonable_consumption(actual, expected: Optional[Decimal]) -> bool:
    if expected is None:
        return True
    actual = to_decimal(actual)
    return expected * REASONABLE_LOW <= actual <= expected * REASONABLE_HIGH


def has_variance(variance_pct: Optional[Decimal]) -> bool:
    return variance_pct is not None and abs(variance_pct) > VARIANCE_FLAG_PCT


def rate_comparison_status(variance_pct) -> str:
    v = to_decimal(variance_pct)
    if v <= -15:
        return "Excellent"
    if v <= -5:
        return "Good"
    if v <= 5:
        return "Normal"
    if v <= 15:
        return "High"
    return "Very High"


# --------------------------------------------------------------------------- #
# ratings                                                                     #
# --------------------------------------------------------------------------- #
def efficiency_rating(combined: Optional[Decimal], reference_avg: Optional[Decimal]) -> str:
    """Rate combined efficiency against a reference (30-day unit type) average.

    Lower litres-per-unit is better, so a negative deviation rates higher.
    """
    if not combined:
        return "N/A"
    if not reference_avg:
        return "Good"
    variance = (to_decimal(combined) - to_decimal(reference_avg)) / to_decimal(reference_avg) * 100
    if variance <= -20:
        return "Excellent"
    if variance <= -10:
        return "Good"
    if variance <= 10:
        return "Average"
    if variance <= 20:
        return "Below Average"
    return "Poor"


def transfer_efficiency(amount, storage_before, storage_after, truck_before, truck_after) -> Decimal:
    """How closely the recorded levels match a lossless movement of *amount*."""
    amount = to_decimal(amount)
    if amount <= 0:
        return ZERO
    storage_variance = abs(to_decimal(storage_after) - (to_decimal(storage_before) - amount))
    truck_variance = abs(to_decimal(truck_after) - (to_decimal(truck_before) + amount))
    efficiency = Decimal(100) - (storage_variance + truck_variance) / amount * 100
    return round_to(max(ZERO, efficiency), 2)


def transfer_efficiency_status(efficiency) -> str:
    e = to_decimal(efficiency)
    if e >= 99:
        return "Excellent"
    if e >= 95:
        return "Good"
    if e >= 90:
        return "Fair"
    if e >= 80:
        return "Poor"
    return "Very Poor"


def relative_change_status(current, previous, *, threshold: int = 5) -> Optional[str]:
    """Improving / Declining / Stable between two positive readings."""
    if not current or not previous:
        return None
    change = (to_decimal(current) - to_decimal(previous)) / to_decimal(previous) * 100
    if change > threshold:
        return "Improving"
    if change < -threshold:
        return "Declining"
    return "Stable"
