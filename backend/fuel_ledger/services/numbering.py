"""Daily document numbers (TRF-/TXN-/CHK-/VRP-).

Sequence = rows already stamped on that day + 1. After deletes the count can
point at a number still in use, so the sequence is bumped until it is free.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy import func
from sqlmodel import Session, select

from fuel_ledger.models.container import ContainerKind
from fuel_ledger.models.stock_check import PhysicalStockCheck
from fuel_ledger.models.transaction import FuelTransaction
from fuel_ledger.models.transfer import FuelTransfer
from fuel_ledger.models.variance_report import ReportType, VarianceReport

_KIND_TAG = {ContainerKind.STORAGE: "STO", ContainerKind.TRUCK: "TRU"}


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _next_free(session: Session, number_col, prefix: str, seq: int, width: int) -> str:
    while True:
        candidate = f"{prefix}{seq:0{width}d}"
        if session.exec(select(func.count()).where(number_col == candidate)).one() == 0:
            return candidate
        seq += 1


def _count_on_day(session: Session, dt_col, day: date, *extra) -> int:
    start, end = _day_bounds(day)
    stmt = select(func.count()).where(dt_col >= start, dt_col < end, *extra)
    return int(session.exec(stmt).one() or 0)


def next_transfer_number(session: Session, moment: datetime) -> str:
    day = moment.date()
    seq = _count_on_day(session, FuelTransfer.transfer_datetime, day) + 1
    return _next_free(session, FuelTransfer.transfer_number, f"TRF-{day:%Y%m%d}-", seq, 4)


def next_transaction_number(session: Session, moment: datetime) -> str:
    day = moment.date()
    seq = _count_on_day(session, FuelTransaction.transaction_datetime, day) + 1
    return _next_free(session, FuelTransaction.transaction_number, f"TXN-{day:%Y%m%d}-", seq, 4)


def next_check_number(session: Session, moment: datetime, kind: ContainerKind) -> str:
    day = moment.date()
    seq = _count_on_day(session, PhysicalStockCheck.check_datetime, day) + 1
    prefix = f"CHK-{day:%Y%m%d}-{_KIND_TAG[kind]}-"
    return _next_free(session, PhysicalStockCheck.check_number, prefix, seq, 3)


def next_report_number(session: Session, report_date: date, report_type: ReportType) -> str:
    stmt = select(func.count()).where(
        VarianceReport.report_date == report_date,
        VarianceReport.report_type == report_type,
    )
    seq = int(session.exec(stmt).one() or 0) + 1
    prefix = f"VRP-{report_date:%Y%m%d}-{report_type.value[0]}-"
    return _next_free(session, VarianceReport.report_number, prefix, seq, 3)
