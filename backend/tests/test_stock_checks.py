from datetime import datetime, timedelta
from decimal import Decimal

import pandas as pd
import pytest

from fuel_ledger.core.errors import InvalidAmount, NotFound
from fuel_ledger.models import CheckMethod, FuelSourceRef, VarianceStatus
from fuel_ledger.services.stock_checks import (
    adjust_container_level,
    adjust_stock_check,
    analyse_stock_check,
    classify_variance,
    import_stock_checks,
    is_possible_leakage,
    list_checks_needing_adjustment,
    record_stock_check,
)

CHECK_AT = datetime(2026, 3, 2, 17, 0)


def _set_level(session, container, level):
    container.current_level = Decimal(level)
    session.add(container)
    session.commit()


class TestClassifyVariance:
    def test_large_litres_is_critical_even_at_low_percentage(self):
        assert classify_variance(10000, 9850) is VarianceStatus.CRITICAL

    @pytest.mark.parametrize(
        "system,physical,status",
        [
            (1000, 1000, VarianceStatus.NORMAL),
            (1000, 995, VarianceStatus.NORMAL),
            (1000, 980, VarianceStatus.MINOR),
            (10000, 9994, VarianceStatus.MINOR),
            (1000, 960, VarianceStatus.WARNING),
            (1000, 1050, VarianceStatus.WARNING),
            (100, 94, VarianceStatus.CRITICAL),
        ],
    )
    def test_bands(self, system, physical, status):
        assert classify_variance(system, physical) is status

    def test_empty_system_level(self):
        assert classify_variance(0, 0) is VarianceStatus.NORMAL
        assert classify_variance(0, 60) is VarianceStatus.CRITICAL


class TestRecordStockCheck:
    def test_snapshots_system_level(self, session, storage):
        _set_level(session, storage, "10000")
        check = record_stock_check(session, storage.ref, 9850, "Ani", check_datetime=CHECK_AT)

        assert check.check_number == "CHK-20260302-STO-001"
        assert check.system_level == Decimal("10000")
        assert check.variance == Decimal("-150")
        assert check.variance_percentage == Decimal("-1.5")
        assert check.variance_status is VarianceStatus.CRITICAL
        assert check.requires_attention is True
        assert check.variance_description.startswith("Deficit: -150")

        session.refresh(storage)
        assert storage.current_level == Decimal("10000")

    def test_numbers_are_tagged_by_container_kind(self, session, storage, truck):
        record_stock_check(session, storage.ref, 32500, "Ani", check_datetime=CHECK_AT)
        check = record_stock_check(session, truck.ref, 5200, "Ani", CheckMethod.GAUGE, check_datetime=CHECK_AT)
        assert check.check_number == "CHK-20260302-TRU-002"
        assert check.variance_description == "Exact match"

    def test_rejects_negative_or_garbage_level(self, session, storage):
        with pytest.raises(InvalidAmount):
            record_stock_check(session, storage.ref, -1, "Ani")
        with pytest.raises(InvalidAmount):
            record_stock_check(session, storage.ref, "n/a", "Ani")
        with pytest.raises(InvalidAmount):
            record_stock_check(session, storage.ref, "Infinity", "Ani")
        with pytest.raises(InvalidAmount):
            record_stock_check(session, storage.ref, "NaN", "Ani")

    def test_unknown_container(self, session, truck):
        with pytest.raises(NotFound):
            record_stock_check(session, FuelSourceRef.storage(999), 10, "Ani")


class TestAdjustStockCheck:
    def test_adjusts_once(self, session, storage):
        _set_level(session, storage, "10000")
        check = record_stock_check(session, storage.ref, 9850, "Ani", check_datetime=CHECK_AT)

        assert adjust_stock_check(session, check.id, "recount confirmed") is True
        session.refresh(storage)
        session.refresh(check)
        assert storage.current_level == Decimal("9850")
        assert check.system_adjusted is True
        assert check.adjustment_amount == Decimal("-150")
        assert check.corrective_action == "System adjusted: recount confirmed"
        assert check.requires_attention is False

        assert adjust_stock_check(session, check.id) is False
        session.refresh(storage)
        assert storage.current_level == Decimal("9850")

    def test_exact_match_is_not_adjusted(self, session, storage):
        check = record_stock_check(session, storage.ref, 32500, "Ani")
        assert adjust_stock_check(session, check.id) is False

    def test_measured_level_beyond_capacity(self, session, truck):
        check = record_stock_check(session, truck.ref, 8100, "Ani")
        assert adjust_stock_check(session, check.id) is False
        session.refresh(truck)
        session.refresh(check)
        assert truck.current_level == Decimal("5200")
        assert check.system_adjusted is False

    def test_unknown_check(self, session):
        with pytest.raises(NotFound):
            adjust_stock_check(session, 999)

    def test_pending_list(self, session, storage, truck):
        _set_level(session, storage, "10000")
        critical = record_stock_check(session, storage.ref, 9850, "Ani", check_datetime=CHECK_AT)
        record_stock_check(session, truck.ref, 5201, "Ani", check_datetime=CHECK_AT)

        assert [c.id for c in list_checks_needing_adjustment(session)] == [critical.id]
        adjust_stock_check(session, critical.id)
        assert list_checks_needing_adjustment(session) == []


class TestAdjustContainerLevel:
    def test_within_capacity(self, session, truck):
        assert adjust_container_level(session, truck.ref, 7000) is True
        session.refresh(truck)
        assert truck.current_level == Decimal("7000")

    def test_out_of_range(self, session, truck):
        assert adjust_container_level(session, truck.ref, 9000) is False
        assert adjust_container_level(session, truck.ref, "bad") is False
        session.refresh(truck)
        assert truck.current_level == Decimal("5200")


class TestAnalysis:
    def test_possible_theft(self, session, storage):
        _set_level(session, storage, "1000")
        check = record_stock_check(session, storage.ref, 900, "Ani", check_datetime=CHECK_AT)
        result = analyse_stock_check(session, check)

        assert result["possible_theft"] is True
        assert result["accuracy"] == "Poor"
        assert result["recommended_action"] == "Investigate possible theft"
        assert result["follow_up_check"] is False

    def test_follow_up_of_recent_critical(self, session, storage):
        _set_level(session, storage, "10000")
        record_stock_check(session, storage.ref, 9850, "Ani", check_datetime=CHECK_AT)
        again = record_stock_check(session, storage.ref, 10000, "Ani", check_datetime=CHECK_AT + timedelta(days=1))

        result = analyse_stock_check(session, again)
        assert result["follow_up_check"] is True
        assert result["recommended_action"] == "No action required"

    def test_leakage_pattern(self, session, storage):
        for day in range(3):
            latest = record_stock_check(
                session, storage.ref, 32490, "Ani", check_datetime=CHECK_AT + timedelta(days=day)
            )
        assert is_possible_leakage(session, latest, now=CHECK_AT + timedelta(days=2)) is True
        assert is_possible_leakage(session, latest, now=CHECK_AT + timedelta(days=30)) is False


class TestImport:
    def test_rows_recorded_and_errors_collected(self, session, storage, truck):
        df = pd.DataFrame(
            [
                {"container": "ST-01", "physical_level": "32,480", "type": "", "checker": "", "method": ""},
                {"container": "XX-99", "physical_level": "10", "type": "", "checker": "", "method": ""},
                {"container": "FT-01", "physical_level": "5200", "type": "truck", "checker": "Budi", "method": "laser"},
                {"container": "FT-01", "physical_level": "5190", "type": "truck", "checker": "Budi", "method": "gauge"},
            ]
        )
        result = import_stock_checks(session, df, default_checker="Ani")

        assert result["total_rows"] == 4
        assert result["success_rows"] == 2
        assert [e["row"] for e in result["errors"]] == [3, 4]
        assert "XX-99" in result["errors"][0]["message"]
        assert len(result["check_numbers"]) == 2

    def test_non_finite_level_is_a_row_error(self, session, storage):
        df = pd.DataFrame(
            [
                {"container": "ST-01", "physical_level": "32000", "checker": "Ani"},
                {"container": "ST-01", "physical_level": "NaN", "checker": "Ani"},
                {"container": "ST-01", "physical_level": "inf", "checker": "Ani"},
            ]
        )
        result = import_stock_checks(session, df)

        assert (result["success_rows"], result["error_rows"]) == (1, 2)
        assert [e["row"] for e in result["errors"]] == [3, 4]

    def test_checker_required(self, session, storage):
        df = pd.DataFrame([{"container": "ST-01", "physical_level": "32500"}])
        result = import_stock_checks(session, df)
        assert result["errors"] == [{"row": 2, "message": "checker is required"}]
