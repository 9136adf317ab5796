from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from fuel_ledger.utils.decimals import ZERO


class WorkCondition(str, Enum):
    LIGHT = "Light"
    NORMAL = "Normal"
    HEAVY = "Heavy"


class RateSource(str, Enum):
    MANUFACTURER = "Manufacturer"
    HISTORICAL = "Historical Data"
    FIELD_TEST = "Field Test"
    MANUAL = "Manual"


class UnitType(SQLModel, table=True):
    """Equipment category carrying default consumption rates."""

    __tablename__ = "unit_type"

    id: Optional[int] = Field(default=None, primary_key=True)
    type_code: str = Field(index=True, unique=True, max_length=20)
    type_name: str = Field(max_length=100)
    description: Optional[str] = None
    default_consumption_per_hour: Optional[Decimal] = Field(
        default=None, max_digits=8, decimal_places=2, description="Default L/hour"
    )
    default_consumption_per_km: Optional[Decimal] = Field(
        default=None, max_digits=8, decimal_places=2, description="Default L/km"
    )
    is_active: bool = Field(default=True)


class FuelConsumptionRate(SQLModel, table=True):
    """Consumption rate of a unit type for a work condition and validity window."""

    __tablename__ = "fuel_consumption_rate"
    __table_args__ = (
        UniqueConstraint("unit_type_id", "work_condition", "effective_from", name="uq_rate_period"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    unit_type_id: int = Field(foreign_key="unit_type.id", index=True)
    consumption_per_hour: Decimal = Field(max_digits=8, decimal_places=2, description="L/hour")
    consumption_per_km: Decimal = Field(max_digits=8, decimal_places=2, description="L/km")
    effective_from: date
    effective_until: Optional[date] = None
    work_condition: WorkCondition = Field(default=WorkCondition.NORMAL)
    rate_source: RateSource = Field(default=RateSource.MANUAL)
    condition_description: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = Field(default=True)
    created_by: str = Field(default="System", max_length=100)

    def is_effective_on(self, day: date) -> bool:
        if not self.is_active:
            return False
        return self.effective_from <= day and (self.effective_until is None or self.effective_until >= day)

    def is_expired(self, today: date) -> bool:
        return self.effective_until is not None and self.effective_until < today


class Unit(SQLModel, table=True):
    """Piece of equipment that receives fuel."""

    __tablename__ = "unit"

    id: Optional[int] = Field(default=None, primary_key=True)
    unit_code: str = Field(index=True, unique=True, max_length=20)
    unit_name: str = Field(max_length=100)
    unit_type_id: int = Field(foreign_key="unit_type.id", index=True)
    # monotonic physical readings, advanced only by the dispense engine
    current_hour_meter: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    current_odometer: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    fuel_tank_capacity: Optional[Decimal] = Field(
        default=None, max_digits=8, decimal_places=2, description="Max litres per single dispense"
    )
    brand: Optional[str] = Field(default=None, max_length=50)
    model: Optional[str] = Field(default=None, max_length=50)
    manufacture_year: Optional[int] = None
    notes: Optional[str] = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)

    @property
    def display_name(self) -> str:
        return f"{self.unit_code} - {self.unit_name}"
