from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from fuel_ledger.utils.decimals import ZERO


class ReportType(str, Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class ReportStatus(str, Enum):
    DRAFT = "Draft"
    FINAL = "Final"
    APPROVED = "Approved"


class VarianceReport(SQLModel, table=True):
    """Period roll-up of physical stock checks (Draft → Final → Approved)."""

    __tablename__ = "variance_report"
    __table_args__ = (
        Index("ix_variance_report_period", "period_start", "period_end"),
        Index("ix_variance_report_date_type", "report_date", "report_type"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    report_number: str = Field(index=True, unique=True, max_length=50)
    report_date: date
    report_type: ReportType = Field(default=ReportType.DAILY)
    period_start: date
    period_end: date

    total_system_fuel: Decimal = Field(default=ZERO, max_digits=14, decimal_places=2)
    total_physical_fuel: Decimal = Field(default=ZERO, max_digits=14, decimal_places=2)
    storage_variance: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    truck_variance: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    total_checks_performed: int = 0
    critical_variances_count: int = 0

    report_status: ReportStatus = Field(default=ReportStatus.DRAFT, index=True)
    summary_notes: Optional[str] = None
    recommended_actions: Optional[str] = None
    prepared_by: str = Field(max_length=100)
    reviewed_by: Optional[str] = Field(default=None, max_length=100)
    approved_by: Optional[str] = Field(default=None, max_length=100)
    approved_at: Optional[datetime] = None

    @property
    def total_variance(self) -> Decimal:
        return self.total_physical_fuel - self.total_system_fuel

    @property
    def period_days(self) -> int:
        return (self.period_end - self.period_start).days + 1
