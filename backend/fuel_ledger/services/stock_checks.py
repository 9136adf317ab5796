"""
stock_checks.py
===============

Physical stock reconciliation.

* :func:`record_stock_check`     – snapshot the system level and classify the variance
* :func:`adjust_stock_check`     – one-shot correction of the container to the measured level
* :func:`adjust_container_level` – manual correction without a check
* :func:`import_stock_checks`    – bulk readings from an uploaded CSV/Excel sheet

Variance classification is a pure function of (system, physical); both the
percentage and the absolute litres must stay inside a band for it to apply.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pandas as pd
from sqlmodel import Session, select

from fuel_ledger.core.database import atomic
from fuel_ledger.core.errors import (
    AdjustmentError,
    InvalidAmount,
    LedgerError,
    NotFound,
    OutOfRange,
)
from fuel_ledger.models.container import ContainerKind, FuelSourceRef
from fuel_ledger.models.stock_check import CheckMethod, PhysicalStockCheck, VarianceStatus
from fuel_ledger.services.containers import find_container_by_code, lock_container, set_level
from fuel_ledger.services.numbering import next_check_number
from fuel_ledger.utils.decimals import round_to, to_amount

logger = logging.getLogger(__name__)

ADJUSTMENT_THRESHOLD = Decimal("0.01")

# (max |%|, max |litres|) per status, checked in order
_STATUS_BANDS: tuple[tuple[VarianceStatus, Decimal, Decimal], ...] = (
    (VarianceStatus.NORMAL, Decimal("1"), Decimal("5")),
    (VarianceStatus.MINOR, Decimal("3"), Decimal("25")),
    (VarianceStatus.WARNING, Decimal("5"), Decimal("50")),
)


# --------------------------------------------------------------------------- #
# pure calculations                                                           #
# --------------------------------------------------------------------------- #
def compute_variance(system_level, physical_level) -> Decimal:
    return to_amount(to_amount(physical_level) - to_amount(system_level))


def variance_percentage(system_level, physical_level) -> Decimal:
    system = to_amount(system_level)
    if system == 0:
        return round_to(0, 4)
    return round_to(compute_variance(system, physical_level) / system * 100, 4)


def classify_variance(system_level, physical_level) -> VarianceStatus:
    pct = abs(variance_percentage(system_level, physical_level))
    litres = abs(compute_variance(system_level, physical_level))
    for status, max_pct, max_litres in _STATUS_BANDS:
        if pct <= max_pct and litres <= max_litres:
            return status
    return VarianceStatus.CRITICAL


def check_accuracy(check: PhysicalStockCheck) -> str:
    pct = abs(check.variance_percentage)
    if pct <= 1:
        return "Excellent"
    if pct <= 2:
        return "Good"
    if pct <= 5:
        return "Fair"
    return "Poor"


def is_possible_theft(check: PhysicalStockCheck) -> bool:
    return check.variance < -10 and check.variance_percentage < -5


# --------------------------------------------------------------------------- #
# history based analysis                                                      #
# --------------------------------------------------------------------------- #
def _checks_of_container(check: PhysicalStockCheck):
    return select(PhysicalStockCheck).where(
        PhysicalStockCheck.checkable_type == check.checkable_type,
        PhysicalStockCheck.checkable_id == check.checkable_id,
        PhysicalStockCheck.id != check.id,
    )


def is_possible_leakage(session: Session, check: PhysicalStockCheck, now: datetime | None = None) -> bool:
    """At least 70% of >= 2 other checks from the last 7 days show a deficit over 5L."""
    since = (now or datetime.now()) - timedelta(days=7)
    recent = session.exec(
        _checks_of_container(check).where(PhysicalStockCheck.check_datetime >= since)
    ).all()
    if len(recent) < 2:
        return False
    negative = sum(1 for c in recent if c.variance < -5)
    return negative / len(recent) >= 0.7


def is_follow_up_check(session: Session, check: PhysicalStockCheck) -> bool:
    """A Warning/Critical check of the same container in the 3 days before."""
    stmt = _checks_of_container(check).where(
        PhysicalStockCheck.check_datetime > check.check_datetime - timedelta(days=3),
        PhysicalStockCheck.check_datetime < check.check_datetime,
        PhysicalStockCheck.variance_status.in_([VarianceStatus.WARNING, VarianceStatus.CRITICAL]),  # type: ignore[attr-defined]
    )
    return session.exec(stmt).first() is not None


def recommended_action(session: Session, check: PhysicalStockCheck) -> str:
    if check.system_adjusted:
        return "Completed"
    if is_possible_theft(check):
        return "Investigate possible theft"
    if is_possible_leakage(session, check):
        return "Check for leakage"
    pct = abs(check.variance_percentage)
    if pct > 5:
        return "Adjust system level"
    if pct > 2:
        return "Monitor closely"
    return "No action required"


def analyse_stock_check(session: Session, check: PhysicalStockCheck) -> dict:
    return {
        "check_number": check.check_number,
        "variance": check.variance,
        "variance_percentage": check.variance_percentage,
        "variance_status": check.variance_status,
        "variance_description": check.variance_description,
        "accuracy": check_accuracy(check),
        "possible_theft": is_possible_theft(check),
        "possible_leakage": is_possible_leakage(session, check),
        "requires_attention": check.requires_attention,
        "follow_up_check": is_follow_up_check(session, check),
        "recommended_action": recommended_action(session, check),
    }


# --------------------------------------------------------------------------- #
# commands                                                                    #
# --------------------------------------------------------------------------- #
def record_stock_check(
    session: Session,
    container_ref: FuelSourceRef,
    physical_level,
    checker: str,
    method: CheckMethod = CheckMethod.DIPSTICK,
    *,
    notes: str | None = None,
    check_datetime: datetime | None = None,
) -> PhysicalStockCheck:
    try:
        physical = to_amount(physical_level)
    except ValueError as exc:
        raise InvalidAmount(str(exc), "physical_level") from exc
    if physical < 0:
        raise InvalidAmount("Physical level cannot be negative", "physical_level")
    moment = check_datetime or datetime.now()

    with atomic(session, "record_stock_check"):
        container = lock_container(session, container_ref)
        system = container.current_level
        check = PhysicalStockCheck(
            check_number=next_check_number(session, moment, container_ref.kind),
            checkable_type=container_ref.kind,
            checkable_id=container_ref.id,
            check_datetime=moment,
            system_level=system,
            physical_level=physical,
            variance=compute_variance(system, physical),
            variance_percentage=variance_percentage(system, physical),
            variance_status=classify_variance(system, physical),
            checker_name=checker,
            check_method=method,
            notes=notes,
        )
        session.add(check)
        session.flush()

    session.refresh(check)
    log = logger.warning if check.variance_status is VarianceStatus.CRITICAL else logger.info
    log(
        "record_stock_check: %s %s system=%s physical=%s status=%s",
        check.check_number,
        container_ref,
        system,
        physical,
        check.variance_status.value,
    )
    return check


def adjust_stock_check(session: Session, check_id: int, reason: str | None = None) -> bool:
    """Set the container to the measured level; False when not eligible.

    Eligible once per check, and only when the variance is at least 0.01L and
    the measured level fits the container.
    """
    try:
        with atomic(session, "adjust_stock_check"):
            check = session.exec(
                select(PhysicalStockCheck)
                .where(PhysicalStockCheck.id == check_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            if check is None:
                raise NotFound(f"stock check {check_id} not found")
            if check.system_adjusted:
                raise AdjustmentError(f"{check.check_number} already adjusted")
            if abs(check.variance) < ADJUSTMENT_THRESHOLD:
                raise AdjustmentError(f"{check.check_number} variance below adjustment threshold")

            container = lock_container(session, check.container_ref)
            try:
                set_level(session, container, check.physical_level)
            except OutOfRange as exc:
                raise AdjustmentError(str(exc)) from exc

            check.system_adjusted = True
            check.adjustment_amount = check.variance
            if reason:
                note = f"System adjusted: {reason}"
                check.corrective_action = f"{check.corrective_action}\n{note}" if check.corrective_action else note
            session.add(check)
    except AdjustmentError as exc:
        logger.warning("adjust_stock_check: check %s not adjusted: %s", check_id, exc)
        return False

    logger.info("adjust_stock_check: check %s applied", check_id)
    return True


def adjust_container_level(session: Session, container_ref: FuelSourceRef, new_level) -> bool:
    """Manual level correction; False when the level is outside 0..capacity."""
    try:
        with atomic(session, "adjust_container_level"):
            container = lock_container(session, container_ref)
            set_level(session, container, new_level)
    except (OutOfRange, ValueError) as exc:
        logger.warning("adjust_container_level: %s rejected: %s", container_ref, exc)
        return False
    return True


def list_checks_needing_adjustment(session: Session) -> list[PhysicalStockCheck]:
    stmt = (
        select(PhysicalStockCheck)
        .where(
            PhysicalStockCheck.system_adjusted == False,  # noqa: E712
            PhysicalStockCheck.variance_status.in_([VarianceStatus.WARNING, VarianceStatus.CRITICAL]),  # type: ignore[attr-defined]
        )
        .order_by(PhysicalStockCheck.check_datetime)
    )
    return list(session.exec(stmt).all())


# --------------------------------------------------------------------------- #
# bulk import                                                                 #
# --------------------------------------------------------------------------- #
_KIND_ALIASES = {
    "storage": ContainerKind.STORAGE,
    "tank": ContainerKind.STORAGE,
    "truck": ContainerKind.TRUCK,
}
_METHOD_LOOKUP = {m.value.lower(): m for m in CheckMethod}


def _cell(row: pd.Series, name: str) -> Optional[str]:
    if name not in row.index:
        return None
    value = row[name]
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def _row_ref(session: Session, row: pd.Series) -> FuelSourceRef:
    code = _cell(row, "container")
    if code is None:
        raise ValueError("container code is required")
    kind_text = (_cell(row, "type") or "").lower()
    kinds = [_KIND_ALIASES[kind_text]] if kind_text in _KIND_ALIASES else list(ContainerKind)
    for kind in kinds:
        found = find_container_by_code(session, kind, code)
        if found is not None:
            return found.ref
    raise ValueError(f"unknown container {code!r}")


def import_stock_checks(
    session: Session,
    df: pd.DataFrame,
    *,
    default_checker: str | None = None,
) -> dict:
    """Record one stock check per row of *df*.

    Expected columns (after header folding in ``utils.file_parser``):
    ``container``, ``physical_level``, optional ``type``, ``checker``,
    ``method``, ``notes``. Row errors are collected, not raised; the
    reported row number is the spreadsheet row (header = 1).
    """
    created: list[str] = []
    errors: list[dict] = []
    for idx, row in df.iterrows():
        row_no = int(idx) + 2
        try:
            ref = _row_ref(session, row)
            level = _cell(row, "physical_level")
            if level is None:
                raise ValueError("physical_level is required")
            checker = _cell(row, "checker") or default_checker
            if not checker:
                raise ValueError("checker is required")
            method_text = (_cell(row, "method") or CheckMethod.DIPSTICK.value).lower()
            if method_text not in _METHOD_LOOKUP:
                raise ValueError(f"unknown check method {method_text!r}")
            check = record_stock_check(
                session,
                ref,
                level.replace(",", ""),
                checker,
                _METHOD_LOOKUP[method_text],
                notes=_cell(row, "notes"),
            )
            created.append(check.check_number)
        except (ValueError, LedgerError) as exc:
            errors.append({"row": row_no, "message": str(exc)})

    logger.info("import_stock_checks: %d recorded, %d errors", len(created), len(errors))
    return {
        "total_rows": int(len(df)),
        "success_rows": len(created),
        "error_rows": len(errors),
        "check_numbers": created,
        "errors": errors,
    }
