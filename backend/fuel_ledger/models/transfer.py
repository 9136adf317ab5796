"""Storage → truck fuel movement.

The before/after snapshots are written by the transfer engine only; they are
historical copies of the container levels, not live references.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel

from fuel_ledger.services.efficiency import transfer_efficiency, transfer_efficiency_status

LEVEL_TOLERANCE = Decimal("0.01")


class FuelTransfer(SQLModel, table=True):
    __tablename__ = "fuel_transfer"

    id: Optional[int] = Field(default=None, primary_key=True)
    transfer_number: str = Field(index=True, unique=True, max_length=50)

    fuel_storage_id: int = Field(foreign_key="fuel_storage.id", index=True)
    fuel_truck_id: int = Field(foreign_key="fuel_truck.id", index=True)
    daily_session_id: Optional[int] = Field(default=None, foreign_key="daily_session.id", index=True)

    transferred_amount: Decimal = Field(max_digits=12, decimal_places=2)
    storage_level_before: Decimal = Field(max_digits=12, decimal_places=2)
    storage_level_after: Decimal = Field(max_digits=12, decimal_places=2)
    truck_level_before: Decimal = Field(max_digits=12, decimal_places=2)
    truck_level_after: Decimal = Field(max_digits=12, decimal_places=2)

    transfer_datetime: datetime = Field(default_factory=datetime.now, index=True)
    operator_name: str = Field(max_length=100)
    notes: Optional[str] = None

    @property
    def storage_level_change(self) -> Decimal:
        return self.storage_level_after - self.storage_level_before

    @property
    def truck_level_change(self) -> Decimal:
        return self.truck_level_after - self.truck_level_before

    @property
    def efficiency(self) -> Decimal:
        return transfer_efficiency(
            self.transferred_amount,
            self.storage_level_before,
            self.storage_level_after,
            self.truck_level_before,
            self.truck_level_after,
        )

    @property
    def efficiency_status(self) -> str:
        return transfer_efficiency_status(self.efficiency)

    def is_valid_transfer(self, truck_capacity: Decimal) -> bool:
        """Snapshots describe a lossless movement that fit in the truck."""
        amount = self.transferred_amount
        if self.storage_level_before < amount:
            return False
        if self.truck_level_before + amount > truck_capacity:
            return False
        if abs(self.storage_level_after - (self.storage_level_before - amount)) > LEVEL_TOLERANCE:
            return False
        if abs(self.truck_level_after - (self.truck_level_before + amount)) > LEVEL_TOLERANCE:
            return False
        return True
