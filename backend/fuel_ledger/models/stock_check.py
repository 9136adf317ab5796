from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from fuel_ledger.models.container import ContainerKind, FuelSourceRef


class CheckMethod(str, Enum):
    DIPSTICK = "Dipstick"
    GAUGE = "Gauge"
    FLOW_METER = "Flow Meter"
    VISUAL = "Visual"


class VarianceStatus(str, Enum):
    NORMAL = "Normal"
    MINOR = "Minor"
    WARNING = "Warning"
    CRITICAL = "Critical"


class PhysicalStockCheck(SQLModel, table=True):
    """One reconciliation of a container's system level against a measurement.

    ``system_adjusted`` is one-shot: once True the check can't adjust again.
    """

    __tablename__ = "physical_stock_check"
    __table_args__ = (
        Index("ix_stock_check_checkable", "checkable_type", "checkable_id", "check_datetime"),
        Index("ix_stock_check_status", "variance_status", "system_adjusted"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    check_number: str = Field(index=True, unique=True, max_length=50)

    checkable_type: ContainerKind
    checkable_id: int

    check_datetime: datetime = Field(default_factory=datetime.now, index=True)
    system_level: Decimal = Field(max_digits=12, decimal_places=2, description="Level per system")
    physical_level: Decimal = Field(max_digits=12, decimal_places=2, description="Measured level")
    variance: Decimal = Field(max_digits=12, decimal_places=2, description="physical - system")
    variance_percentage: Decimal = Field(max_digits=10, decimal_places=4)
    variance_status: VarianceStatus = Field(default=VarianceStatus.NORMAL)

    checker_name: str = Field(max_length=100)
    check_method: CheckMethod = Field(default=CheckMethod.DIPSTICK)
    notes: Optional[str] = None
    corrective_action: Optional[str] = None

    system_adjusted: bool = Field(default=False)
    adjustment_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)

    @property
    def container_ref(self) -> FuelSourceRef:
        return FuelSourceRef(ContainerKind(self.checkable_type), self.checkable_id)

    @property
    def requires_attention(self) -> bool:
        return not self.system_adjusted and self.variance_status in (
            VarianceStatus.WARNING,
            VarianceStatus.CRITICAL,
        )

    @property
    def variance_description(self) -> str:
        if self.variance > 0:
            return f"Surplus: +{self.variance}L ({self.variance_percentage}%)"
        if self.variance < 0:
            return f"Deficit: {self.variance}L ({self.variance_percentage}%)"
        return "Exact match"
