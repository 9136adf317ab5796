"""
transfers.py
============

Storage → truck transfer engine.

* :func:`create_transfer`        – validate (collecting every issue), move fuel, record snapshots
* :func:`update_transfer_amount` – apply only the delta of a corrected amount
* :func:`delete_transfer`        – compensate both containers, then drop the record

Each call is one database transaction (``atomic``); on any failure both
containers keep their previous levels and no transfer row is written.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlmodel import Session, select

from fuel_ledger.core.database import atomic
from fuel_ledger.core.errors import (
    InvalidAmount,
    NotFound,
    RollbackError,
    ValidationError,
    ValidationIssue,
    raise_for_issues,
)
from fuel_ledger.models.container import FuelSourceRef, FuelStorage, FuelTruck
from fuel_ledger.models.session import DailySession
from fuel_ledger.models.transfer import FuelTransfer
from fuel_ledger.services.containers import add_fuel, lock_containers, remove_fuel
from fuel_ledger.services.numbering import next_transfer_number
from fuel_ledger.utils.decimals import to_amount

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #
def _parse_amount(value, field: str = "amount") -> Decimal:
    try:
        return to_amount(value)
    except ValueError as exc:
        raise InvalidAmount(str(exc), field) from exc


def _require_daily_session(session: Session, session_id: int | None) -> None:
    if session_id is not None and session.get(DailySession, session_id) is None:
        raise NotFound(f"daily session {session_id} not found")


def _lock_transfer(session: Session, transfer_id: int) -> FuelTransfer:
    stmt = (
        select(FuelTransfer)
        .where(FuelTransfer.id == transfer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    transfer = session.exec(stmt).first()
    if transfer is None:
        raise NotFound(f"transfer {transfer_id} not found")
    return transfer


def _lock_pair(session: Session, storage_id: int, truck_id: int) -> tuple[FuelStorage, FuelTruck]:
    storage_ref = FuelSourceRef.storage(storage_id)
    truck_ref = FuelSourceRef.truck(truck_id)
    locked = lock_containers(session, storage_ref, truck_ref)
    return locked[storage_ref], locked[truck_ref]  # type: ignore[return-value]


def validate_transfer(storage: FuelStorage, truck: FuelTruck, amount: Decimal) -> list[ValidationIssue]:
    """Every rule a new transfer of *amount* breaks; empty when it may proceed."""
    issues: list[ValidationIssue] = []
    if amount <= 0:
        issues.append(ValidationIssue("invalid_amount", "Transfer amount must be positive", "transferred_amount"))
    if not storage.is_active:
        issues.append(ValidationIssue("inactive_container", f"Storage {storage.storage_code} is inactive", "fuel_storage_id"))
    if not truck.is_active:
        issues.append(ValidationIssue("inactive_container", f"Truck {truck.truck_code} is inactive", "fuel_truck_id"))
    if amount > 0 and not storage.can_dispense(amount):
        issues.append(
            ValidationIssue(
                "insufficient_fuel",
                f"Insufficient fuel in storage {storage.storage_code}. "
                f"Available: {storage.current_level}L, requested: {amount}L",
                "transferred_amount",
            )
        )
    if amount > 0 and truck.remaining_capacity < amount:
        issues.append(
            ValidationIssue(
                "capacity_exceeded",
                f"Truck {truck.truck_code} capacity exceeded. "
                f"Available capacity: {truck.remaining_capacity}L, requested: {amount}L",
                "transferred_amount",
            )
        )
    return issues


# --------------------------------------------------------------------------- #
# public API                                                                  #
# --------------------------------------------------------------------------- #
def create_transfer(
    session: Session,
    storage_id: int,
    truck_id: int,
    amount,
    operator: str,
    session_id: int | None = None,
    *,
    notes: str | None = None,
    transfer_datetime: datetime | None = None,
) -> FuelTransfer:
    amount = _parse_amount(amount, "transferred_amount")
    moment = transfer_datetime or datetime.now()

    with atomic(session, "create_transfer"):
        _require_daily_session(session, session_id)
        storage, truck = _lock_pair(session, storage_id, truck_id)

        raise_for_issues(validate_transfer(storage, truck, amount))
        if storage.fuel_type != truck.fuel_type:
            logger.warning(
                "create_transfer: fuel type mismatch storage=%s(%s) truck=%s(%s)",
                storage.storage_code,
                storage.fuel_type.value,
                truck.truck_code,
                truck.fuel_type.value,
            )

        storage_before = storage.current_level
        truck_before = truck.current_level
        storage_after = remove_fuel(session, storage, amount)
        truck_after = add_fuel(session, truck, amount)

        transfer = FuelTransfer(
            transfer_number=next_transfer_number(session, moment),
            fuel_storage_id=storage_id,
            fuel_truck_id=truck_id,
            daily_session_id=session_id,
            transferred_amount=amount,
            storage_level_before=storage_before,
            storage_level_after=storage_after,
            truck_level_before=truck_before,
            truck_level_after=truck_after,
            transfer_datetime=moment,
            operator_name=operator,
            notes=notes,
        )
        session.add(transfer)
        session.flush()
        storage_low = storage.is_low
        storage_code = storage.storage_code

    session.refresh(transfer)
    logger.info(
        "create_transfer: %s storage=%s truck=%s amount=%s",
        transfer.transfer_number,
        storage_id,
        truck_id,
        amount,
    )
    if storage_low:
        logger.warning("create_transfer: storage %s at or below minimum level", storage_code)
    return transfer


def update_transfer_amount(session: Session, transfer_id: int, new_amount) -> FuelTransfer:
    """Correct ``transferred_amount``; only the difference moves between containers."""
    new_amount = _parse_amount(new_amount, "transferred_amount")
    if new_amount <= 0:
        raise InvalidAmount("Transfer amount must be positive", "transferred_amount")

    with atomic(session, "update_transfer_amount"):
        transfer = _lock_transfer(session, transfer_id)
        old_amount = transfer.transferred_amount
        delta = new_amount - old_amount
        if delta == 0:
            return transfer

        storage, truck = _lock_pair(session, transfer.fuel_storage_id, transfer.fuel_truck_id)
        issues: list[ValidationIssue] = []
        if delta > 0:
            if not storage.can_dispense(delta):
                issues.append(
                    ValidationIssue(
                        "insufficient_fuel",
                        f"Insufficient fuel in storage for updated amount. "
                        f"Available: {storage.current_level}L, additional needed: {delta}L",
                        "transferred_amount",
                    )
                )
            if truck.remaining_capacity < delta:
                issues.append(
                    ValidationIssue(
                        "capacity_exceeded",
                        f"Truck capacity exceeded for updated amount. "
                        f"Available capacity: {truck.remaining_capacity}L, additional needed: {delta}L",
                        "transferred_amount",
                    )
                )
        else:
            back = -delta
            if not truck.can_dispense(back):
                issues.append(
                    ValidationIssue(
                        "insufficient_fuel",
                        f"Insufficient fuel in truck to reduce transfer. "
                        f"Available: {truck.current_level}L, needed to remove: {back}L",
                        "transferred_amount",
                    )
                )
            if storage.remaining_capacity < back:
                issues.append(
                    ValidationIssue(
                        "capacity_exceeded",
                        f"Storage cannot take back {back}L (available capacity {storage.remaining_capacity}L)",
                        "transferred_amount",
                    )
                )
        raise_for_issues(issues)

        if delta > 0:
            remove_fuel(session, storage, delta)
            add_fuel(session, truck, delta)
        else:
            remove_fuel(session, truck, -delta)
            add_fuel(session, storage, -delta)

        transfer.transferred_amount = new_amount
        # snapshots stay a lossless record of this movement
        transfer.storage_level_after = transfer.storage_level_before - new_amount
        transfer.truck_level_after = transfer.truck_level_before + new_amount
        session.add(transfer)

    session.refresh(transfer)
    logger.info(
        "update_transfer_amount: %s %s -> %s (delta %s)",
        transfer.transfer_number,
        old_amount,
        new_amount,
        delta,
    )
    return transfer


def delete_transfer(session: Session, transfer_id: int) -> None:
    """Return the fuel to storage, take it off the truck, drop the record.

    Raises :class:`RollbackError` when the containers can no longer absorb the
    reversal (e.g. the truck already dispensed the fuel).
    """
    try:
        with atomic(session, "delete_transfer"):
            transfer = _lock_transfer(session, transfer_id)
            storage, truck = _lock_pair(session, transfer.fuel_storage_id, transfer.fuel_truck_id)
            amount = transfer.transferred_amount
            number = transfer.transfer_number
            add_fuel(session, storage, amount)
            remove_fuel(session, truck, amount)
            session.delete(transfer)
    except ValidationError as exc:
        logger.error("delete_transfer: rollback of transfer %s failed: %s", transfer_id, exc)
        raise RollbackError(f"Cannot roll back transfer {transfer_id}: {exc}", exc.issues) from exc

    logger.info("delete_transfer: %s removed, %sL restored to storage", number, amount)
