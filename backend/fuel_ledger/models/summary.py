"""Per-unit consumption roll-up (daily or per shift).

Rows here are a cache: ``services.summaries`` rebuilds them from
``fuel_transaction`` and deletes them once no source transaction remains.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from fuel_ledger.utils.decimals import ZERO


class PeriodType(str, Enum):
    DAILY = "Daily"
    SHIFT = "Shift"


class UnitConsumptionSummary(SQLModel, table=True):
    __tablename__ = "unit_consumption_summary"
    __table_args__ = (
        UniqueConstraint("unit_id", "summary_date", "period_type", "shift_id", name="uq_unit_summary_period"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    unit_id: int = Field(foreign_key="unit.id", index=True)
    summary_date: date = Field(index=True)
    shift_id: Optional[int] = Field(default=None, foreign_key="shift.id")
    period_type: PeriodType = Field(default=PeriodType.DAILY)

    total_transactions: int = 0
    total_fuel_consumed: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    total_hour_meter_diff: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    total_odometer_diff: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)

    avg_fuel_per_hour: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    avg_fuel_per_km: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    avg_combined_efficiency: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    min_efficiency_per_hour: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    max_efficiency_per_hour: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    min_efficiency_per_km: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    max_efficiency_per_km: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)

    first_transaction_at: Optional[datetime] = None
    last_transaction_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.now, nullable=False)
