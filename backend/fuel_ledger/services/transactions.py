"""
transactions.py
===============

Dispense engine: fuel leaving a storage tank or truck into a unit.

A transaction carries its own meter window (``previous_*`` → ``current_*``).
``previous_*`` is seeded from the unit's latest transaction, falling back to
the unit's own readings, so the chain of windows is gap-free. Unit meters only
ever move forward.

Creating, editing or deleting a transaction also rebuilds the unit's
consumption summaries for the affected day(s) inside the same database
transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, or_
from sqlmodel import Session, select

from fuel_ledger.core.database import atomic
from fuel_ledger.core.errors import (
    NotFound,
    RollbackError,
    ValidationError,
    ValidationIssue,
    raise_for_issues,
)
from fuel_ledger.models.container import ContainerKind, FuelSourceRef
from fuel_ledger.models.session import DailySession
from fuel_ledger.models.transaction import FuelTransaction
from fuel_ledger.models.unit import FuelConsumptionRate, Unit, UnitType, WorkCondition
from fuel_ledger.services.containers import add_fuel, get_container, lock_container, remove_fuel
from fuel_ledger.services.efficiency import (
    RateSpec,
    compute_efficiency,
    consumption_variance,
    efficiency_rating,
    expected_consumption,
    has_variance,
    is_reasonable_consumption,
    rate_comparison_status,
)
from fuel_ledger.services.numbering import next_transaction_number
from fuel_ledger.services.summaries import (
    refresh_summaries_for_days,
    summary_days_for,
    unit_type_average_combined,
)
from fuel_ledger.utils.decimals import to_amount

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# consumption rates                                                           #
# --------------------------------------------------------------------------- #
def current_consumption_rate(
    session: Session,
    unit_type_id: int,
    work_condition: WorkCondition = WorkCondition.NORMAL,
    on: date | None = None,
) -> Optional[RateSpec]:
    """Rate effective on *on* for the condition, else the unit type defaults."""
    on = on or date.today()
    stmt = (
        select(FuelConsumptionRate)
        .where(
            FuelConsumptionRate.unit_type_id == unit_type_id,
            FuelConsumptionRate.work_condition == work_condition,
            FuelConsumptionRate.is_active == True,  # noqa: E712
            FuelConsumptionRate.effective_from <= on,
            or_(
                FuelConsumptionRate.effective_until.is_(None),  # type: ignore[union-attr]
                FuelConsumptionRate.effective_until >= on,
            ),
        )
        .order_by(FuelConsumptionRate.effective_from.desc())  # type: ignore[attr-defined]
    )
    rate = session.exec(stmt).first()
    if rate is not None:
        return RateSpec(rate.consumption_per_hour, rate.consumption_per_km, rate.rate_source.value)

    unit_type = session.get(UnitType, unit_type_id)
    if unit_type is None:
        return None
    if unit_type.default_consumption_per_hour is None and unit_type.default_consumption_per_km is None:
        return None
    return RateSpec(
        unit_type.default_consumption_per_hour or Decimal(0),
        unit_type.default_consumption_per_km or Decimal(0),
        "unit type default",
    )


# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #
def _parse(value, field: str, code: str) -> Decimal:
    try:
        return to_amount(value)
    except ValueError as exc:
        raise ValidationError([ValidationIssue(code, str(exc), field)]) from exc


def _lock_unit(session: Session, unit_id: int) -> Unit:
    stmt = select(Unit).where(Unit.id == unit_id).with_for_update().execution_options(populate_existing=True)
    unit = session.exec(stmt).first()
    if unit is None:
        raise NotFound(f"unit {unit_id} not found")
    return unit


def _lock_transaction(session: Session, transaction_id: int) -> FuelTransaction:
    stmt = (
        select(FuelTransaction)
        .where(FuelTransaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    txn = session.exec(stmt).first()
    if txn is None:
        raise NotFound(f"transaction {transaction_id} not found")
    return txn


def latest_transaction(session: Session, unit_id: int) -> Optional[FuelTransaction]:
    stmt = (
        select(FuelTransaction)
        .where(FuelTransaction.unit_id == unit_id)
        .order_by(FuelTransaction.transaction_datetime.desc(), FuelTransaction.id.desc())  # type: ignore[attr-defined]
    )
    return session.exec(stmt).first()


def next_transaction(session: Session, txn: FuelTransaction) -> Optional[FuelTransaction]:
    """The unit's transaction right after ``txn`` in (datetime, id) order."""
    stmt = (
        select(FuelTransaction)
        .where(
            FuelTransaction.unit_id == txn.unit_id,
            or_(
                FuelTransaction.transaction_datetime > txn.transaction_datetime,
                and_(
                    FuelTransaction.transaction_datetime == txn.transaction_datetime,
                    FuelTransaction.id > txn.id,
                ),
            ),
        )
        .order_by(FuelTransaction.transaction_datetime, FuelTransaction.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(stmt).first()


def previous_meters(session: Session, unit: Unit) -> tuple[Decimal, Decimal]:
    last = latest_transaction(session, unit.id)
    if last is not None:
        return last.current_hour_meter, last.current_odometer
    return unit.current_hour_meter, unit.current_odometer


def _meter_issues(prev_hour, cur_hour, prev_km, cur_km) -> list[ValidationIssue]:
    issues = []
    if cur_hour < prev_hour:
        issues.append(
            ValidationIssue(
                "meter_regression",
                f"Hour meter {cur_hour} is below previous reading {prev_hour}",
                "current_hour_meter",
            )
        )
    if cur_km < prev_km:
        issues.append(
            ValidationIssue(
                "meter_regression",
                f"Odometer {cur_km} is below previous reading {prev_km}",
                "current_odometer",
            )
        )
    return issues


def _ceiling_issues(following: FuelTransaction, cur_hour, cur_km) -> list[ValidationIssue]:
    issues = []
    if cur_hour > following.previous_hour_meter:
        issues.append(
            ValidationIssue(
                "meter_regression",
                f"Hour meter {cur_hour} is above the next reading {following.previous_hour_meter} "
                f"({following.transaction_number})",
                "current_hour_meter",
            )
        )
    if cur_km > following.previous_odometer:
        issues.append(
            ValidationIssue(
                "meter_regression",
                f"Odometer {cur_km} is above the next reading {following.previous_odometer} "
                f"({following.transaction_number})",
                "current_odometer",
            )
        )
    return issues


def _rechain(following: FuelTransaction, txn: FuelTransaction, new_hour: Decimal, new_km: Decimal) -> bool:
    """Move the next window's start along with an edited reading it was chained to."""
    changed = False
    if following.previous_hour_meter == txn.current_hour_meter and new_hour != txn.current_hour_meter:
        following.previous_hour_meter = new_hour
        changed = True
    if following.previous_odometer == txn.current_odometer and new_km != txn.current_odometer:
        following.previous_odometer = new_km
        changed = True
    if changed:
        _apply_efficiency(following)
    return changed


def _advance_unit_meters(unit: Unit, hour_meter: Decimal, odometer: Decimal) -> None:
    if hour_meter > unit.current_hour_meter:
        unit.current_hour_meter = hour_meter
    if odometer > unit.current_odometer:
        unit.current_odometer = odometer


def _apply_efficiency(txn: FuelTransaction) -> None:
    result = compute_efficiency(
        txn.fuel_amount,
        txn.previous_hour_meter,
        txn.current_hour_meter,
        txn.previous_odometer,
        txn.current_odometer,
    )
    txn.fuel_efficiency_per_hour = result.per_hour
    txn.fuel_efficiency_per_km = result.per_km
    txn.combined_efficiency = result.combined
    txn.calculated_at = datetime.now()


def _warn_if_unusual(session: Session, unit: Unit, txn: FuelTransaction, condition: WorkCondition) -> None:
    rate = current_consumption_rate(session, unit.unit_type_id, condition, txn.transaction_datetime.date())
    if rate is None:
        return
    expected = expected_consumption(txn.hour_meter_diff, txn.odometer_diff, rate)
    if expected > 0 and not is_reasonable_consumption(txn.fuel_amount, expected):
        logger.warning(
            "unusual consumption: unit=%s fuel=%sL expected=%sL (%s)",
            unit.unit_code,
            txn.fuel_amount,
            expected,
            rate.source,
        )


# --------------------------------------------------------------------------- #
# public API                                                                  #
# --------------------------------------------------------------------------- #
def create_transaction(
    session: Session,
    unit_id: int,
    source_ref: FuelSourceRef,
    fuel_amount,
    current_hour_meter,
    current_odometer,
    operator: str,
    session_id: int | None = None,
    *,
    notes: str | None = None,
    transaction_datetime: datetime | None = None,
    work_condition: WorkCondition = WorkCondition.NORMAL,
) -> FuelTransaction:
    amount = _parse(fuel_amount, "fuel_amount", "invalid_amount")
    cur_hour = _parse(current_hour_meter, "current_hour_meter", "invalid_meter")
    cur_km = _parse(current_odometer, "current_odometer", "invalid_meter")
    moment = transaction_datetime or datetime.now()

    with atomic(session, "create_transaction"):
        if session_id is not None and session.get(DailySession, session_id) is None:
            raise NotFound(f"daily session {session_id} not found")
        unit = _lock_unit(session, unit_id)
        source = lock_container(session, source_ref)
        prev_hour, prev_km = previous_meters(session, unit)

        issues: list[ValidationIssue] = []
        if amount <= 0:
            issues.append(ValidationIssue("invalid_amount", "Fuel amount must be positive", "fuel_amount"))
        issues.extend(_meter_issues(prev_hour, cur_hour, prev_km, cur_km))
        if not source.is_active:
            issues.append(
                ValidationIssue("inactive_container", f"Fuel source {source.display_name} is inactive", "fuel_source_id")
            )
        if amount > 0 and not source.can_dispense(amount):
            issues.append(
                ValidationIssue(
                    "insufficient_fuel",
                    f"Insufficient fuel in {source.display_name}. "
                    f"Available: {source.current_level}L, requested: {amount}L",
                    "fuel_amount",
                )
            )
        if unit.fuel_tank_capacity is not None and amount > unit.fuel_tank_capacity:
            issues.append(
                ValidationIssue(
                    "capacity_exceeded",
                    f"Fuel amount {amount}L exceeds tank capacity {unit.fuel_tank_capacity}L of {unit.unit_code}",
                    "fuel_amount",
                )
            )
        raise_for_issues(issues)

        level_before = source.current_level
        level_after = remove_fuel(session, source, amount)

        txn = FuelTransaction(
            transaction_number=next_transaction_number(session, moment),
            unit_id=unit_id,
            daily_session_id=session_id,
            fuel_source_type=source_ref.kind,
            fuel_source_id=source_ref.id,
            previous_hour_meter=prev_hour,
            current_hour_meter=cur_hour,
            previous_odometer=prev_km,
            current_odometer=cur_km,
            fuel_amount=amount,
            source_level_before=level_before,
            source_level_after=level_after,
            transaction_datetime=moment,
            operator_name=operator,
            notes=notes,
        )
        _apply_efficiency(txn)
        _advance_unit_meters(unit, cur_hour, cur_km)
        session.add(unit)
        session.add(txn)
        session.flush()

        _warn_if_unusual(session, unit, txn, work_condition)
        refresh_summaries_for_days(session, unit_id, summary_days_for(session, txn))

    session.refresh(txn)
    logger.info(
        "create_transaction: %s unit=%s source=%s amount=%s",
        txn.transaction_number,
        unit_id,
        source_ref,
        amount,
    )
    return txn


def update_transaction(
    session: Session,
    transaction_id: int,
    *,
    fuel_amount=None,
    current_hour_meter=None,
    current_odometer=None,
    notes: str | None = None,
) -> FuelTransaction:
    """Edit amount and/or meters; only the fuel delta moves against the source."""
    with atomic(session, "update_transaction"):
        txn = _lock_transaction(session, transaction_id)
        unit = _lock_unit(session, txn.unit_id)
        source = lock_container(session, txn.source_ref)

        new_amount = txn.fuel_amount if fuel_amount is None else _parse(fuel_amount, "fuel_amount", "invalid_amount")
        new_hour = (
            txn.current_hour_meter
            if current_hour_meter is None
            else _parse(current_hour_meter, "current_hour_meter", "invalid_meter")
        )
        new_km = (
            txn.current_odometer
            if current_odometer is None
            else _parse(current_odometer, "current_odometer", "invalid_meter")
        )
        delta = new_amount - txn.fuel_amount

        issues: list[ValidationIssue] = []
        if new_amount <= 0:
            issues.append(ValidationIssue("invalid_amount", "Fuel amount must be positive", "fuel_amount"))
        issues.extend(_meter_issues(txn.previous_hour_meter, new_hour, txn.previous_odometer, new_km))
        following = next_transaction(session, txn)
        if following is not None:
            issues.extend(_ceiling_issues(following, new_hour, new_km))
        if delta > 0 and not source.can_dispense(delta):
            issues.append(
                ValidationIssue(
                    "insufficient_fuel",
                    f"Insufficient fuel in {source.display_name} for updated amount. "
                    f"Available: {source.current_level}L, additional needed: {delta}L",
                    "fuel_amount",
                )
            )
        if delta < 0 and source.remaining_capacity < -delta:
            issues.append(
                ValidationIssue(
                    "capacity_exceeded",
                    f"{source.display_name} cannot take back {-delta}L",
                    "fuel_amount",
                )
            )
        if unit.fuel_tank_capacity is not None and new_amount > unit.fuel_tank_capacity:
            issues.append(
                ValidationIssue(
                    "capacity_exceeded",
                    f"Fuel amount {new_amount}L exceeds tank capacity {unit.fuel_tank_capacity}L",
                    "fuel_amount",
                )
            )
        raise_for_issues(issues)

        if delta > 0:
            remove_fuel(session, source, delta)
        elif delta < 0:
            add_fuel(session, source, -delta)

        is_latest = following is None
        days = summary_days_for(session, txn)
        if following is not None and _rechain(following, txn, new_hour, new_km):
            session.add(following)
            days |= summary_days_for(session, following)

        txn.fuel_amount = new_amount
        txn.source_level_after = txn.source_level_before - new_amount
        txn.current_hour_meter = new_hour
        txn.current_odometer = new_km
        if notes is not None:
            txn.notes = notes
        _apply_efficiency(txn)
        if is_latest:
            _advance_unit_meters(unit, new_hour, new_km)
            session.add(unit)
        session.add(txn)
        session.flush()

        refresh_summaries_for_days(session, txn.unit_id, days)

    session.refresh(txn)
    logger.info(
        "update_transaction: %s amount delta=%s latest=%s",
        txn.transaction_number,
        delta,
        is_latest,
    )
    return txn


def delete_transaction(session: Session, transaction_id: int) -> None:
    """Return the fuel to its source and drop the record.

    Unit meters are left where they are; later transactions keep their own
    ``previous_*`` readings.
    """
    try:
        with atomic(session, "delete_transaction"):
            txn = _lock_transaction(session, transaction_id)
            unit_id = txn.unit_id
            number = txn.transaction_number
            amount = txn.fuel_amount
            days = summary_days_for(session, txn)
            try:
                source = lock_container(session, txn.source_ref)
            except NotFound as exc:
                raise RollbackError(f"Fuel source {txn.source_ref} of transaction {number} no longer exists") from exc
            add_fuel(session, source, amount)
            session.delete(txn)
            session.flush()
            refresh_summaries_for_days(session, unit_id, days)
    except ValidationError as exc:
        logger.error("delete_transaction: rollback of transaction %s failed: %s", transaction_id, exc)
        raise RollbackError(f"Cannot roll back transaction {transaction_id}: {exc}", exc.issues) from exc

    logger.info("delete_transaction: %s removed, %sL returned to source", number, amount)


# --------------------------------------------------------------------------- #
# analysis                                                                    #
# --------------------------------------------------------------------------- #
def analyse_transaction(
    session: Session,
    txn: FuelTransaction,
    work_condition: WorkCondition = WorkCondition.NORMAL,
    today: date | None = None,
) -> dict:
    unit = session.get(Unit, txn.unit_id)
    if unit is None:
        raise NotFound(f"unit {txn.unit_id} not found")
    rate = current_consumption_rate(session, unit.unit_type_id, work_condition, txn.transaction_datetime.date())
    expected = expected_consumption(txn.hour_meter_diff, txn.odometer_diff, rate) if rate else None
    variance = consumption_variance(txn.fuel_amount, expected) if expected is not None else None
    reference = unit_type_average_combined(session, unit.unit_type_id, today or date.today())
    source = get_container(session, txn.source_ref)
    return {
        "transaction_number": txn.transaction_number,
        "unit": unit.display_name,
        "fuel_source": source.display_name,
        "fuel_source_kind": ContainerKind(txn.fuel_source_type).value,
        "hour_meter_diff": txn.hour_meter_diff,
        "odometer_diff": txn.odometer_diff,
        "fuel_efficiency_per_hour": txn.fuel_efficiency_per_hour,
        "fuel_efficiency_per_km": txn.fuel_efficiency_per_km,
        "combined_efficiency": txn.combined_efficiency,
        "rate_source": rate.source if rate else None,
        "expected_consumption": expected,
        "consumption_variance": variance,
        "has_variance": has_variance(variance),
        "rate_status": rate_comparison_status(variance) if variance is not None else None,
        "is_reasonable": is_reasonable_consumption(txn.fuel_amount, expected),
        "efficiency_rating": efficiency_rating(txn.combined_efficiency, reference),
    }
