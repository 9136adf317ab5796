"""
summaries.py
============

Rebuild ``unit_consumption_summary`` rows from ``fuel_transaction``.

Summaries are derived data. They are recomputed from scratch for a
(unit, day[, shift]) key whenever a transaction of that key changes, and a
row is deleted as soon as no transaction backs it any more.

* Daily rows group transactions by the calendar day of ``transaction_datetime``.
* Shift rows group by the daily session's ``session_date`` + ``shift_id`` so
  an overnight shift stays one row even when it crosses midnight.

``refresh_*`` helpers never commit (the dispense engine calls them inside its
own transaction); :func:`rebuild_unit_summaries` / :func:`rebuild_day` are the
stand-alone entry points and commit.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, select

from fuel_ledger.core.database import atomic
from fuel_ledger.core.errors import NotFound
from fuel_ledger.models.session import DailySession
from fuel_ledger.models.summary import PeriodType, UnitConsumptionSummary
from fuel_ledger.models.transaction import FuelTransaction
from fuel_ledger.models.unit import Unit
from fuel_ledger.services.efficiency import relative_change_status
from fuel_ledger.utils.decimals import ZERO, round_to, to_amount, to_ratio

logger = logging.getLogger(__name__)

CONSISTENCY_SPREAD_PCT = Decimal("20")


# --------------------------------------------------------------------------- #
# pure aggregation                                                            #
# --------------------------------------------------------------------------- #
def _positive(values: Iterable[Optional[Decimal]]) -> list[Decimal]:
    return [v for v in values if v is not None and v > 0]


def _avg(values: Sequence[Decimal]) -> Optional[Decimal]:
    if not values:
        return None
    return to_ratio(sum(values, ZERO) / len(values))


def summarise_transactions(transactions: Sequence[FuelTransaction]) -> dict:
    """Aggregate field values for one summary row.

    Averages / min / max only consider strictly positive efficiencies so a
    transaction without meter movement does not drag them to zero.
    """
    per_hour = _positive(t.fuel_efficiency_per_hour for t in transactions)
    per_km = _positive(t.fuel_efficiency_per_km for t in transactions)
    combined = _positive(t.combined_efficiency for t in transactions)
    moments = [t.transaction_datetime for t in transactions]
    return {
        "total_transactions": len(transactions),
        "total_fuel_consumed": to_amount(sum((t.fuel_amount for t in transactions), ZERO)),
        "total_hour_meter_diff": to_amount(sum((t.hour_meter_diff for t in transactions), ZERO)),
        "total_odometer_diff": to_amount(sum((t.odometer_diff for t in transactions), ZERO)),
        "avg_fuel_per_hour": _avg(per_hour),
        "min_efficiency_per_hour": min(per_hour) if per_hour else None,
        "max_efficiency_per_hour": max(per_hour) if per_hour else None,
        "avg_fuel_per_km": _avg(per_km),
        "min_efficiency_per_km": min(per_km) if per_km else None,
        "max_efficiency_per_km": max(per_km) if per_km else None,
        "avg_combined_efficiency": _avg(combined),
        "first_transaction_at": min(moments) if moments else None,
        "last_transaction_at": max(moments) if moments else None,
    }


# --------------------------------------------------------------------------- #
# queries                                                                     #
# --------------------------------------------------------------------------- #
def _day_range(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _transactions_for(session: Session, unit_id: int, day: date, shift_id: int | None) -> list[FuelTransaction]:
    stmt = select(FuelTransaction).where(FuelTransaction.unit_id == unit_id)
    if shift_id is None:
        start, end = _day_range(day)
        stmt = stmt.where(FuelTransaction.transaction_datetime >= start, FuelTransaction.transaction_datetime < end)
    else:
        stmt = stmt.join(DailySession, DailySession.id == FuelTransaction.daily_session_id).where(
            DailySession.session_date == day,
            DailySession.shift_id == shift_id,
        )
    return list(session.exec(stmt.order_by(FuelTransaction.transaction_datetime, FuelTransaction.id)).all())


def _existing_summary(
    session: Session, unit_id: int, day: date, shift_id: int | None
) -> Optional[UnitConsumptionSummary]:
    period = PeriodType.DAILY if shift_id is None else PeriodType.SHIFT
    stmt = select(UnitConsumptionSummary).where(
        UnitConsumptionSummary.unit_id == unit_id,
        UnitConsumptionSummary.summary_date == day,
        UnitConsumptionSummary.period_type == period,
    )
    if shift_id is None:
        stmt = stmt.where(UnitConsumptionSummary.shift_id.is_(None))  # type: ignore[union-attr]
    else:
        stmt = stmt.where(UnitConsumptionSummary.shift_id == shift_id)
    return session.exec(stmt).first()


def _shift_ids_for(session: Session, unit_id: int, day: date) -> set[int]:
    """Shifts with a live transaction or a stale summary for (unit, day)."""
    live = session.exec(
        select(DailySession.shift_id)
        .join(FuelTransaction, FuelTransaction.daily_session_id == DailySession.id)
        .where(FuelTransaction.unit_id == unit_id, DailySession.session_date == day)
        .distinct()
    ).all()
    stale = session.exec(
        select(UnitConsumptionSummary.shift_id).where(
            UnitConsumptionSummary.unit_id == unit_id,
            UnitConsumptionSummary.summary_date == day,
            UnitConsumptionSummary.period_type == PeriodType.SHIFT,
        )
    ).all()
    return {sid for sid in [*live, *stale] if sid is not None}


# --------------------------------------------------------------------------- #
# rebuild (no commit)                                                         #
# --------------------------------------------------------------------------- #
def refresh_unit_summary(
    session: Session, unit_id: int, day: date, shift_id: int | None = None
) -> Optional[UnitConsumptionSummary]:
    """Recompute one summary row; returns ``None`` when it no longer exists."""
    transactions = _transactions_for(session, unit_id, day, shift_id)
    summary = _existing_summary(session, unit_id, day, shift_id)

    if not transactions:
        if summary is not None:
            session.delete(summary)
            session.flush()
            logger.info("refresh_unit_summary: dropped empty summary unit=%s day=%s shift=%s", unit_id, day, shift_id)
        return None

    if summary is None:
        summary = UnitConsumptionSummary(
            unit_id=unit_id,
            summary_date=day,
            shift_id=shift_id,
            period_type=PeriodType.DAILY if shift_id is None else PeriodType.SHIFT,
        )
    for field, value in summarise_transactions(transactions).items():
        setattr(summary, field, value)
    summary.updated_at = datetime.now()
    session.add(summary)
    session.flush()
    return summary


def refresh_unit_summaries(session: Session, unit_id: int, day: date) -> list[UnitConsumptionSummary]:
    """Daily row plus every shift row of (unit, day)."""
    rows = [refresh_unit_summary(session, unit_id, day)]
    for shift_id in sorted(_shift_ids_for(session, unit_id, day)):
        rows.append(refresh_unit_summary(session, unit_id, day, shift_id))
    return [r for r in rows if r is not None]


def summary_days_for(session: Session, transaction: FuelTransaction) -> set[date]:
    days = {transaction.transaction_datetime.date()}
    if transaction.daily_session_id is not None:
        daily = session.get(DailySession, transaction.daily_session_id)
        if daily is not None:
            days.add(daily.session_date)
    return days


def refresh_summaries_for_days(session: Session, unit_id: int, days: Iterable[date]) -> None:
    for day in sorted(set(days)):
        refresh_unit_summaries(session, unit_id, day)


# --------------------------------------------------------------------------- #
# stand-alone entry points (commit)                                           #
# --------------------------------------------------------------------------- #
def rebuild_unit_summaries(session: Session, unit_id: int, day: date) -> list[UnitConsumptionSummary]:
    if session.get(Unit, unit_id) is None:
        raise NotFound(f"unit {unit_id} not found")
    with atomic(session, "rebuild_unit_summaries"):
        rows = refresh_unit_summaries(session, unit_id, day)
    for row in rows:
        session.refresh(row)
    return rows


def rebuild_day(session: Session, day: date) -> int:
    """Rebuild summaries of every unit touched on *day*; returns the unit count."""
    start, end = _day_range(day)
    by_datetime = session.exec(
        select(FuelTransaction.unit_id).where(
            FuelTransaction.transaction_datetime >= start,
            FuelTransaction.transaction_datetime < end,
        )
    ).all()
    by_session = session.exec(
        select(FuelTransaction.unit_id)
        .join(DailySession, DailySession.id == FuelTransaction.daily_session_id)
        .where(DailySession.session_date == day)
    ).all()
    stale = session.exec(
        select(UnitConsumptionSummary.unit_id).where(UnitConsumptionSummary.summary_date == day)
    ).all()
    unit_ids = sorted(set(by_datetime) | set(by_session) | set(stale))

    with atomic(session, "rebuild_day"):
        for unit_id in unit_ids:
            refresh_unit_summaries(session, unit_id, day)
    logger.info("rebuild_day: %s rebuilt %d units", day, len(unit_ids))
    return len(unit_ids)


def list_unit_summaries(
    session: Session,
    unit_id: int,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    period_type: PeriodType | None = None,
) -> list[UnitConsumptionSummary]:
    stmt = select(UnitConsumptionSummary).where(UnitConsumptionSummary.unit_id == unit_id)
    if date_from is not None:
        stmt = stmt.where(UnitConsumptionSummary.summary_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(UnitConsumptionSummary.summary_date <= date_to)
    if period_type is not None:
        stmt = stmt.where(UnitConsumptionSummary.period_type == period_type)
    stmt = stmt.order_by(UnitConsumptionSummary.summary_date, UnitConsumptionSummary.id)
    return list(session.exec(stmt).all())


# --------------------------------------------------------------------------- #
# analysis                                                                    #
# --------------------------------------------------------------------------- #
def unit_type_average_combined(
    session: Session,
    unit_type_id: int,
    today: date,
    *,
    days: int = 30,
    period_type: PeriodType = PeriodType.DAILY,
) -> Optional[Decimal]:
    """Mean ``avg_combined_efficiency`` of the unit type over the last *days*."""
    stmt = (
        select(func.avg(UnitConsumptionSummary.avg_combined_efficiency))
        .join(Unit, Unit.id == UnitConsumptionSummary.unit_id)
        .where(
            Unit.unit_type_id == unit_type_id,
            UnitConsumptionSummary.period_type == period_type,
            UnitConsumptionSummary.summary_date >= today - timedelta(days=days),
        )
    )
    value = session.exec(stmt).one()
    if value is None:
        return None
    return to_ratio(value)


def efficiency_trend(session: Session, summary: UnitConsumptionSummary) -> Optional[str]:
    previous = session.exec(
        select(UnitConsumptionSummary)
        .where(
            UnitConsumptionSummary.unit_id == summary.unit_id,
            UnitConsumptionSummary.period_type == summary.period_type,
            UnitConsumptionSummary.summary_date < summary.summary_date,
        )
        .order_by(UnitConsumptionSummary.summary_date.desc())  # type: ignore[attr-defined]
    ).first()
    if previous is None:
        return None
    return relative_change_status(summary.avg_combined_efficiency, previous.avg_combined_efficiency)


def efficiency_spread(summary: UnitConsumptionSummary) -> Decimal:
    """(max - min) / avg of per-hour efficiency, in percent."""
    lo, hi, avg = summary.min_efficiency_per_hour, summary.max_efficiency_per_hour, summary.avg_fuel_per_hour
    if not lo or not hi or not avg:
        return ZERO
    return round_to((hi - lo) / avg * 100, 2)


def working_hours(summary: UnitConsumptionSummary) -> Optional[float]:
    if not summary.first_transaction_at or not summary.last_transaction_at:
        return None
    minutes = (summary.last_transaction_at - summary.first_transaction_at).total_seconds() // 60
    return round(minutes / 60, 2)


def average_transaction_size(summary: UnitConsumptionSummary) -> Decimal:
    if summary.total_transactions <= 0:
        return ZERO
    return round_to(summary.total_fuel_consumed / summary.total_transactions, 2)


def compare_with_unit_type(session: Session, summary: UnitConsumptionSummary, today: date | None = None) -> dict:
    unit = session.get(Unit, summary.unit_id)
    type_avg = None
    if unit is not None:
        type_avg = unit_type_average_combined(
            session, unit.unit_type_id, today or date.today(), period_type=PeriodType(summary.period_type)
        )
    if not type_avg or not summary.avg_combined_efficiency:
        return {"comparison": "No data", "variance": None}

    variance = (summary.avg_combined_efficiency - type_avg) / type_avg * 100
    if variance <= -15:
        comparison = "Much Better"
    elif variance <= -5:
        comparison = "Better"
    elif variance <= 5:
        comparison = "Average"
    elif variance <= 15:
        comparison = "Below Average"
    else:
        comparison = "Much Below Average"
    return {
        "comparison": comparison,
        "variance": round_to(variance, 2),
        "unit_avg": summary.avg_combined_efficiency,
        "type_avg": type_avg,
    }


def analyse_summary(session: Session, summary: UnitConsumptionSummary, today: date | None = None) -> dict:
    spread = efficiency_spread(summary)
    return {
        "trend": efficiency_trend(session, summary),
        "efficiency_spread": spread,
        "is_consistent": spread <= CONSISTENCY_SPREAD_PCT,
        "working_hours": working_hours(summary),
        "average_transaction_size": average_transaction_size(summary),
        "unit_type_comparison": compare_with_unit_type(session, summary, today),
    }
