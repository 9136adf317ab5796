from datetime import date, datetime
from decimal import Decimal

import pytest

from fuel_ledger.core.errors import (
    InsufficientFuel,
    MeterRegression,
    NotFound,
    RollbackError,
    ValidationError,
)
from fuel_ledger.models import FuelConsumptionRate, FuelSourceRef, FuelTransaction, RateSource, WorkCondition
from fuel_ledger.services.transactions import (
    analyse_transaction,
    create_transaction,
    current_consumption_rate,
    delete_transaction,
    previous_meters,
    update_transaction,
)

T0 = datetime(2026, 3, 2, 7, 30)


def _dispense(session, unit, source, amount, hour, km, moment=T0, **kw):
    return create_transaction(session, unit.id, source.ref, amount, hour, km, "Sari", transaction_datetime=moment, **kw)


class TestCreateTransaction:
    def test_efficiency_from_meter_window(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 30, 102, 500)

        assert txn.previous_hour_meter == Decimal("100")
        assert txn.hour_meter_diff == Decimal("2")
        assert txn.fuel_efficiency_per_hour == Decimal("15.0")
        assert txn.fuel_efficiency_per_km is None
        assert txn.combined_efficiency == Decimal("15.0")
        assert txn.transaction_number == "TXN-20260302-0001"

    def test_no_meter_movement_gives_no_efficiency(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 30, 100, 500)
        assert txn.fuel_efficiency_per_hour is None
        assert txn.combined_efficiency is None

    def test_combined_efficiency_blends_hours_and_km(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 100, 110, 600)
        # 10 L/h * 0.7 + 1 L/km * 0.3
        assert txn.combined_efficiency == Decimal("7.3")

    def test_removes_fuel_and_advances_meters(self, session, unit, truck):
        txn = _dispense(session, unit, truck, "150.5", 105, 530)

        session.refresh(truck)
        session.refresh(unit)
        assert truck.current_level == Decimal("5049.5")
        assert txn.source_level_before == Decimal("5200")
        assert txn.source_level_after == Decimal("5049.5")
        assert (unit.current_hour_meter, unit.current_odometer) == (Decimal("105"), Decimal("530"))
        assert txn.source_ref == FuelSourceRef.truck(truck.id)

    def test_previous_meters_chain_from_latest_transaction(self, session, unit, storage):
        _dispense(session, unit, storage, 30, 105, 520)
        second = _dispense(session, unit, storage, 30, 109, 530, moment=datetime(2026, 3, 2, 12, 0))
        assert (second.previous_hour_meter, second.previous_odometer) == (Decimal("105"), Decimal("520"))
        session.refresh(unit)
        assert previous_meters(session, unit) == (Decimal("109"), Decimal("530"))

    def test_meter_regression_rejected(self, session, unit, storage):
        with pytest.raises(MeterRegression):
            _dispense(session, unit, storage, 30, 99, 500)
        session.refresh(storage)
        assert storage.current_level == Decimal("32500")

    def test_collects_meter_and_fuel_issues(self, session, unit, truck):
        with pytest.raises(ValidationError) as exc_info:
            _dispense(session, unit, truck, 6000, 90, 400)
        codes = exc_info.value.codes
        assert codes.count("meter_regression") == 2
        assert "insufficient_fuel" in codes
        assert "capacity_exceeded" in codes

    def test_insufficient_source(self, session, unit, truck):
        truck.current_level = Decimal("20")
        session.add(truck)
        session.commit()
        with pytest.raises(InsufficientFuel):
            _dispense(session, unit, truck, 30, 102, 500)

    def test_unknown_unit_or_source(self, session, unit, storage):
        with pytest.raises(NotFound):
            create_transaction(session, 999, storage.ref, 10, 101, 500, "Sari")
        with pytest.raises(NotFound):
            create_transaction(session, unit.id, FuelSourceRef.truck(999), 10, 101, 500, "Sari")

    def test_invalid_meter_text(self, session, unit, storage):
        with pytest.raises(ValidationError) as exc_info:
            create_transaction(session, unit.id, storage.ref, 10, "abc", 500, "Sari")
        assert exc_info.value.codes == ["invalid_meter"]


class TestUpdateTransaction:
    def test_amount_delta_against_source(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 100, 110, 500)
        updated = update_transaction(session, txn.id, fuel_amount=60)

        session.refresh(storage)
        assert storage.current_level == Decimal("32440")
        assert updated.source_level_after == Decimal("32440")
        assert updated.fuel_efficiency_per_hour == Decimal("6.0")

    def test_latest_transaction_advances_unit_meters(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 100, 110, 500)
        update_transaction(session, txn.id, current_hour_meter=112)
        session.refresh(unit)
        assert unit.current_hour_meter == Decimal("112")

    def test_older_transaction_leaves_unit_meters(self, session, unit, storage):
        first = _dispense(session, unit, storage, 50, 105, 500)
        _dispense(session, unit, storage, 50, 110, 500, moment=datetime(2026, 3, 2, 15, 0))

        update_transaction(session, first.id, current_hour_meter=104)
        session.refresh(unit)
        assert unit.current_hour_meter == Decimal("110")

    def test_meter_below_window_start_rejected(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 50, 105, 500)
        with pytest.raises(MeterRegression):
            update_transaction(session, txn.id, current_hour_meter=99)

    def test_meter_above_next_reading_rejected(self, session, unit, storage):
        first = _dispense(session, unit, storage, 50, 110, 500)
        second = _dispense(session, unit, storage, 50, 120, 510, moment=datetime(2026, 3, 2, 15, 0))

        with pytest.raises(MeterRegression):
            update_transaction(session, first.id, current_hour_meter=150)
        with pytest.raises(MeterRegression):
            update_transaction(session, first.id, current_odometer=511)

        session.refresh(first)
        session.refresh(second)
        assert first.current_hour_meter == Decimal("110")
        assert second.previous_hour_meter == Decimal("110")
        assert second.current_hour_meter >= first.current_hour_meter

    def test_lowered_reading_moves_next_window_start(self, session, unit, storage):
        first = _dispense(session, unit, storage, 50, 105, 500)
        second = _dispense(session, unit, storage, 60, 110, 500, moment=datetime(2026, 3, 2, 15, 0))
        assert second.fuel_efficiency_per_hour == Decimal("12.0")

        update_transaction(session, first.id, current_hour_meter=104)
        session.refresh(second)
        assert second.previous_hour_meter == Decimal("104")
        assert second.fuel_efficiency_per_hour == Decimal("10.0")

    def test_non_finite_amount_rejected(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 50, 105, 500)
        with pytest.raises(ValidationError) as exc_info:
            update_transaction(session, txn.id, fuel_amount="NaN")
        assert exc_info.value.codes == ["invalid_amount"]


class TestDeleteTransaction:
    def test_returns_fuel_but_keeps_meters(self, session, unit, storage):
        txn_id = _dispense(session, unit, storage, 250, 120, 580).id
        delete_transaction(session, txn_id)

        session.refresh(storage)
        session.refresh(unit)
        assert storage.current_level == Decimal("32500")
        assert (unit.current_hour_meter, unit.current_odometer) == (Decimal("120"), Decimal("580"))
        assert session.get(FuelTransaction, txn_id) is None

    def test_rollback_error_when_source_is_full(self, session, unit, truck):
        txn = _dispense(session, unit, truck, 300, 110, 500)
        truck.current_level = Decimal("7900")
        session.add(truck)
        session.commit()

        with pytest.raises(RollbackError):
            delete_transaction(session, txn.id)
        assert session.get(FuelTransaction, txn.id) is not None


class TestConsumptionRate:
    def test_falls_back_to_unit_type_defaults(self, session, unit_type):
        rate = current_consumption_rate(session, unit_type.id)
        assert rate.per_hour == Decimal("15")
        assert rate.source == "unit type default"

    def test_effective_rate_for_condition(self, session, unit_type):
        session.add(
            FuelConsumptionRate(
                unit_type_id=unit_type.id,
                consumption_per_hour=Decimal("22"),
                consumption_per_km=Decimal("0.5"),
                effective_from=date(2026, 1, 1),
                effective_until=date(2026, 12, 31),
                work_condition=WorkCondition.HEAVY,
                rate_source=RateSource.FIELD_TEST,
            )
        )
        session.commit()

        heavy = current_consumption_rate(session, unit_type.id, WorkCondition.HEAVY, date(2026, 3, 2))
        assert (heavy.per_hour, heavy.source) == (Decimal("22"), "Field Test")
        expired = current_consumption_rate(session, unit_type.id, WorkCondition.HEAVY, date(2027, 1, 1))
        assert expired.source == "unit type default"

    def test_analysis_compares_with_rate(self, session, unit, storage):
        txn = _dispense(session, unit, storage, 30, 102, 500)
        result = analyse_transaction(session, txn, today=date(2026, 3, 2))

        assert result["expected_consumption"] == Decimal("30.00")
        assert result["consumption_variance"] == Decimal("0.00")
        assert result["rate_status"] == "Normal"
        assert result["is_reasonable"] is True
        assert result["fuel_source"] == "ST-01 - Main Tank"
        assert result["efficiency_rating"] == "Average"
