from __future__ import annotations

from sqlalchemy import func
from sqlmodel import Session, select

from fuel_ledger.core.errors import NotFound
from fuel_ledger.models.session import DailySession
from fuel_ledger.models.transaction import FuelTransaction
from fuel_ledger.models.transfer import FuelTransfer
from fuel_ledger.models.unit import Unit
from fuel_ledger.utils.decimals import ZERO, to_amount


def most_active_units(session: Session, daily_session_id: int, limit: int = 5) -> list[dict]:
    """Units ranked by litres received during the session."""
    total_fuel = func.sum(FuelTransaction.fuel_amount).label("total_fuel")
    rows = session.exec(
        select(Unit.unit_code, func.count(FuelTransaction.id), total_fuel)
        .select_from(FuelTransaction)
        .join(Unit, Unit.id == FuelTransaction.unit_id)
        .where(FuelTransaction.daily_session_id == daily_session_id)
        .group_by(Unit.unit_code)
        .order_by(total_fuel.desc())
        .limit(limit)
    ).all()
    return [
        {"unit_code": code, "transaction_count": int(count), "total_fuel": to_amount(total or 0)}
        for code, count, total in rows
    ]


def session_statistics(session: Session, daily_session_id: int) -> dict:
    daily = session.get(DailySession, daily_session_id)
    if daily is None:
        raise NotFound(f"daily session {daily_session_id} not found")

    transfers_total, transfers_count = session.exec(
        select(func.sum(FuelTransfer.transferred_amount), func.count(FuelTransfer.id)).where(
            FuelTransfer.daily_session_id == daily_session_id
        )
    ).one()
    txn_total, txn_count, unique_units = session.exec(
        select(
            func.sum(FuelTransaction.fuel_amount),
            func.count(FuelTransaction.id),
            func.count(func.distinct(FuelTransaction.unit_id)),
        ).where(FuelTransaction.daily_session_id == daily_session_id)
    ).one()

    return {
        "session_id": daily.id,
        "session_date": daily.session_date,
        "shift_id": daily.shift_id,
        "status": daily.status.value,
        "total_transfers": to_amount(transfers_total or ZERO),
        "total_transactions": to_amount(txn_total or ZERO),
        "transfers_count": int(transfers_count or 0),
        "transactions_count": int(txn_count or 0),
        "unique_units": int(unique_units or 0),
        "duration_hours": daily.duration_hours(),
        "most_active_units": most_active_units(session, daily_session_id),
    }
