"""Fuel dispensed from a container (storage or truck) to a unit."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from fuel_ledger.models.container import ContainerKind, FuelSourceRef


class FuelTransaction(SQLModel, table=True):
    __tablename__ = "fuel_transaction"
    __table_args__ = (
        Index("ix_fuel_transaction_unit_datetime", "unit_id", "transaction_datetime"),
        Index("ix_fuel_transaction_source", "fuel_source_type", "fuel_source_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_number: str = Field(index=True, unique=True, max_length=50)

    unit_id: int = Field(foreign_key="unit.id")
    daily_session_id: Optional[int] = Field(default=None, foreign_key="daily_session.id", index=True)

    # polymorphic source: storage or truck
    fuel_source_type: ContainerKind
    fuel_source_id: int

    previous_hour_meter: Decimal = Field(max_digits=12, decimal_places=2)
    current_hour_meter: Decimal = Field(max_digits=12, decimal_places=2)
    previous_odometer: Decimal = Field(max_digits=12, decimal_places=2)
    current_odometer: Decimal = Field(max_digits=12, decimal_places=2)

    fuel_amount: Decimal = Field(max_digits=10, decimal_places=2)
    source_level_before: Decimal = Field(max_digits=12, decimal_places=2)
    source_level_after: Decimal = Field(max_digits=12, decimal_places=2)

    fuel_efficiency_per_hour: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    fuel_efficiency_per_km: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)
    combined_efficiency: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=4)

    transaction_datetime: datetime = Field(default_factory=datetime.now)
    operator_name: str = Field(max_length=100)
    notes: Optional[str] = None
    calculated_at: Optional[datetime] = None

    @property
    def source_ref(self) -> FuelSourceRef:
        return FuelSourceRef(ContainerKind(self.fuel_source_type), self.fuel_source_id)

    @property
    def hour_meter_diff(self) -> Decimal:
        return self.current_hour_meter - self.previous_hour_meter

    @property
    def odometer_diff(self) -> Decimal:
        return self.current_odometer - self.previous_odometer
