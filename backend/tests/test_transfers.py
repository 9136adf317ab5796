from datetime import datetime
from decimal import Decimal

import pytest
from sqlmodel import select

from fuel_ledger.core.errors import (
    CapacityExceeded,
    InsufficientFuel,
    InvalidAmount,
    NotFound,
    RollbackError,
    ValidationError,
)
from fuel_ledger.models import FuelSourceRef, FuelTransaction, FuelTransfer, FuelTruck
from fuel_ledger.services.transactions import create_transaction
from fuel_ledger.services.transfers import (
    create_transfer,
    delete_transfer,
    update_transfer_amount,
    validate_transfer,
)


@pytest.fixture()
def big_truck(session):
    truck = FuelTruck(
        truck_code="FT-02",
        truck_name="Fuel Truck 2",
        capacity=Decimal("12000"),
        current_level=Decimal("5200"),
    )
    session.add(truck)
    session.commit()
    session.refresh(truck)
    return truck


def _levels(session, *containers):
    for c in containers:
        session.refresh(c)
    return tuple(c.current_level for c in containers)


class TestCreateTransfer:
    def test_moves_fuel_and_records_snapshots(self, session, storage, big_truck):
        transfer = create_transfer(session, storage.id, big_truck.id, 5000, "Budi")

        assert _levels(session, storage, big_truck) == (Decimal("27500"), Decimal("10200"))
        assert transfer.storage_level_before == Decimal("32500")
        assert transfer.storage_level_after == Decimal("27500")
        assert transfer.truck_level_before == Decimal("5200")
        assert transfer.truck_level_after == Decimal("10200")
        assert transfer.efficiency == Decimal("100.00")
        assert transfer.efficiency_status == "Excellent"
        assert transfer.is_valid_transfer(big_truck.capacity)

    def test_conserves_total_fuel(self, session, storage, big_truck):
        before = sum(_levels(session, storage, big_truck))
        create_transfer(session, storage.id, big_truck.id, "1234.56", "Budi")
        create_transfer(session, storage.id, big_truck.id, "99.44", "Budi")
        assert sum(_levels(session, storage, big_truck)) == before

    def test_truck_capacity_is_enforced(self, session, storage, truck):
        with pytest.raises(CapacityExceeded):
            create_transfer(session, storage.id, truck.id, 5000, "Budi")
        assert _levels(session, storage, truck) == (Decimal("32500"), Decimal("5200"))
        assert session.exec(select(FuelTransfer)).all() == []

    def test_insufficient_storage_leaves_levels_unchanged(self, session, storage, big_truck):
        storage.current_level = Decimal("3000")
        session.add(storage)
        session.commit()

        with pytest.raises(InsufficientFuel):
            create_transfer(session, storage.id, big_truck.id, 5000, "Budi")
        assert _levels(session, storage, big_truck) == (Decimal("3000"), Decimal("5200"))
        assert session.exec(select(FuelTransfer)).all() == []

    def test_collects_every_issue(self, session, storage, truck):
        storage.current_level = Decimal("100")
        truck.is_active = False
        session.add_all([storage, truck])
        session.commit()

        with pytest.raises(ValidationError) as exc_info:
            create_transfer(session, storage.id, truck.id, 5000, "Budi")
        assert set(exc_info.value.codes) == {"inactive_container", "insufficient_fuel", "capacity_exceeded"}

    def test_rejects_non_positive_amount(self, session, storage, truck):
        with pytest.raises(InvalidAmount):
            create_transfer(session, storage.id, truck.id, 0, "Budi")
        with pytest.raises(InvalidAmount):
            create_transfer(session, storage.id, truck.id, "abc", "Budi")

    @pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity", "-Infinity", Decimal("NaN"), float("inf")])
    def test_rejects_non_finite_amount(self, session, storage, truck, amount):
        with pytest.raises(InvalidAmount):
            create_transfer(session, storage.id, truck.id, amount, "Budi")
        assert _levels(session, storage, truck) == (Decimal("32500"), Decimal("5200"))

    def test_unknown_containers_and_session(self, session, storage, truck):
        with pytest.raises(NotFound):
            create_transfer(session, storage.id, 999, 10, "Budi")
        with pytest.raises(NotFound):
            create_transfer(session, storage.id, truck.id, 10, "Budi", session_id=999)

    def test_daily_numbering(self, session, storage, big_truck):
        moment = datetime(2026, 3, 2, 8, 0)
        first = create_transfer(session, storage.id, big_truck.id, 10, "Budi", transfer_datetime=moment)
        second = create_transfer(session, storage.id, big_truck.id, 10, "Budi", transfer_datetime=moment)
        assert first.transfer_number == "TRF-20260302-0001"
        assert second.transfer_number == "TRF-20260302-0002"

    def test_number_not_reused_after_delete(self, session, storage, big_truck):
        moment = datetime(2026, 3, 2, 8, 0)
        first = create_transfer(session, storage.id, big_truck.id, 10, "Budi", transfer_datetime=moment)
        create_transfer(session, storage.id, big_truck.id, 10, "Budi", transfer_datetime=moment)
        delete_transfer(session, first.id)
        third = create_transfer(session, storage.id, big_truck.id, 10, "Budi", transfer_datetime=moment)
        assert third.transfer_number == "TRF-20260302-0003"

    def test_fuel_type_mismatch_only_warns(self, session, storage, big_truck, caplog):
        from fuel_ledger.models import FuelType

        big_truck.fuel_type = FuelType.GASOLINE
        session.add(big_truck)
        session.commit()

        transfer = create_transfer(session, storage.id, big_truck.id, 100, "Budi")
        assert transfer.id is not None
        assert "fuel type mismatch" in caplog.text


class TestValidateTransfer:
    def test_clean_transfer_has_no_issues(self, storage, big_truck):
        assert validate_transfer(storage, big_truck, Decimal("100")) == []


class TestUpdateTransfer:
    def test_increase_moves_only_the_delta(self, session, storage, big_truck):
        transfer = create_transfer(session, storage.id, big_truck.id, 1000, "Budi")
        updated = update_transfer_amount(session, transfer.id, 1500)

        assert _levels(session, storage, big_truck) == (Decimal("31000"), Decimal("6700"))
        assert updated.transferred_amount == Decimal("1500")
        assert updated.storage_level_after == Decimal("31000")
        assert updated.truck_level_after == Decimal("6700")
        assert updated.efficiency == Decimal("100.00")

    def test_decrease_returns_the_delta(self, session, storage, big_truck):
        transfer = create_transfer(session, storage.id, big_truck.id, 1000, "Budi")
        update_transfer_amount(session, transfer.id, 400)
        assert _levels(session, storage, big_truck) == (Decimal("32100"), Decimal("5600"))

    def test_same_amount_is_a_no_op(self, session, storage, big_truck):
        transfer = create_transfer(session, storage.id, big_truck.id, 1000, "Budi")
        update_transfer_amount(session, transfer.id, "1000.00")
        assert _levels(session, storage, big_truck) == (Decimal("31500"), Decimal("6200"))

    def test_increase_beyond_truck_capacity(self, session, storage, big_truck):
        transfer = create_transfer(session, storage.id, big_truck.id, 1000, "Budi")
        with pytest.raises(CapacityExceeded):
            update_transfer_amount(session, transfer.id, 7000)
        assert _levels(session, storage, big_truck) == (Decimal("31500"), Decimal("6200"))

    def test_unknown_transfer(self, session):
        with pytest.raises(NotFound):
            update_transfer_amount(session, 999, 10)


class TestDeleteTransfer:
    def test_restores_both_levels(self, session, storage, big_truck):
        transfer_id = create_transfer(session, storage.id, big_truck.id, 5000, "Budi").id
        delete_transfer(session, transfer_id)

        assert _levels(session, storage, big_truck) == (Decimal("32500"), Decimal("5200"))
        assert session.get(FuelTransfer, transfer_id) is None

    def test_rollback_error_when_truck_already_dispensed(self, session, storage, big_truck):
        transfer = create_transfer(session, storage.id, big_truck.id, 5000, "Budi")
        big_truck.current_level = Decimal("4000")
        session.add(big_truck)
        session.commit()

        with pytest.raises(RollbackError) as exc_info:
            delete_transfer(session, transfer.id)
        assert exc_info.value.issues[0].code == "insufficient_fuel"
        assert _levels(session, storage, big_truck) == (Decimal("27500"), Decimal("4000"))
        assert session.get(FuelTransfer, transfer.id) is not None

    def test_partial_dispense_from_truck_still_rolls_back(self, session, storage, truck, unit):
        transfer = create_transfer(session, storage.id, truck.id, 2000, "Budi")
        create_transaction(session, unit.id, FuelSourceRef.truck(truck.id), 300, 110, 520, "Budi")
        session.refresh(truck)
        assert truck.current_level == Decimal("6900")

        delete_transfer(session, transfer.id)
        assert _levels(session, storage, truck) == (Decimal("32500"), Decimal("4900"))
        assert len(session.exec(select(FuelTransaction)).all()) == 1
