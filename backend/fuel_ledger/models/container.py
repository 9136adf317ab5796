"""Fuel containers: stationary storage tanks and mobile fuel trucks.

Both variants share :class:`FuelContainerBase` (capacity / level / fuel type)
and the derived helpers built on it. ``current_level`` is only ever written by
``fuel_ledger.services.containers``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel

from fuel_ledger.utils.decimals import ZERO, round_to


class FuelType(str, Enum):
    DIESEL = "Diesel"
    GASOLINE = "Gasoline"
    PREMIUM = "Premium"


class ContainerKind(str, Enum):
    STORAGE = "storage"
    TRUCK = "truck"


@dataclass(frozen=True)
class FuelSourceRef:
    """Typed reference to a container (``storage:3`` / ``truck:7``)."""

    kind: ContainerKind
    id: int

    @classmethod
    def storage(cls, container_id: int) -> "FuelSourceRef":
        return cls(ContainerKind.STORAGE, int(container_id))

    @classmethod
    def truck(cls, container_id: int) -> "FuelSourceRef":
        return cls(ContainerKind.TRUCK, int(container_id))

    @classmethod
    def parse(cls, value: str) -> "FuelSourceRef":
        kind, _, raw_id = str(value).partition(":")
        return cls(ContainerKind(kind.strip().lower()), int(raw_id))

    @property
    def lock_key(self) -> tuple[int, int]:
        # storages before trucks, then ascending id
        return (0 if self.kind is ContainerKind.STORAGE else 1, self.id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class FuelContainerBase(SQLModel):
    capacity: Decimal = Field(max_digits=12, decimal_places=2, description="Total capacity (L)")
    current_level: Decimal = Field(
        default=ZERO, max_digits=12, decimal_places=2, description="Current fuel level (L)"
    )
    fuel_type: FuelType = Field(default=FuelType.DIESEL)
    is_active: bool = Field(default=True)

    kind: ClassVar[ContainerKind]
    # table columns holding the human code and name
    code_column: ClassVar[str]
    name_column: ClassVar[str]

    # --- identity -----------------------------------------------------------
    @property
    def code(self) -> str:
        return getattr(self, self.code_column)

    @property
    def name(self) -> str:
        return getattr(self, self.name_column)

    @property
    def display_name(self) -> str:
        return f"{self.code} - {self.name}"

    @property
    def ref(self) -> FuelSourceRef:
        return FuelSourceRef(self.kind, self.id)  # type: ignore[attr-defined]

    # --- derived levels -----------------------------------------------------
    @property
    def usage_percentage(self) -> Decimal:
        if not self.capacity:
            return ZERO
        return round_to(self.current_level / self.capacity * 100, 2)

    @property
    def remaining_capacity(self) -> Decimal:
        return max(ZERO, self.capacity - self.current_level)

    @property
    def is_empty(self) -> bool:
        return self.current_level <= 0

    @property
    def is_full(self) -> bool:
        return self.current_level >= self.capacity

    def can_receive(self, amount: Decimal) -> bool:
        return self.current_level + amount <= self.capacity

    def can_dispense(self, amount: Decimal) -> bool:
        return self.current_level >= amount


class FuelStorage(FuelContainerBase, table=True):
    """Stationary storage tank."""

    __tablename__ = "fuel_storage"

    kind: ClassVar[ContainerKind] = ContainerKind.STORAGE
    code_column: ClassVar[str] = "storage_code"
    name_column: ClassVar[str] = "storage_name"

    id: Optional[int] = Field(default=None, primary_key=True)
    storage_code: str = Field(index=True, unique=True, max_length=20)
    storage_name: str = Field(max_length=100)
    minimum_level: Decimal = Field(
        default=ZERO, max_digits=12, decimal_places=2, description="Low level alert threshold (L)"
    )
    location: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)

    @property
    def is_low(self) -> bool:
        return self.current_level <= self.minimum_level

    @property
    def status(self) -> str:
        if self.is_low:
            return "Low Level"
        pct = self.usage_percentage
        if pct >= 80:
            return "High"
        if pct >= 50:
            return "Medium"
        return "Low"


class FuelTruck(FuelContainerBase, table=True):
    """Mobile fuel truck; receives from storages and dispenses to units."""

    __tablename__ = "fuel_truck"

    kind: ClassVar[ContainerKind] = ContainerKind.TRUCK
    code_column: ClassVar[str] = "truck_code"
    name_column: ClassVar[str] = "truck_name"

    id: Optional[int] = Field(default=None, primary_key=True)
    truck_code: str = Field(index=True, unique=True, max_length=20)
    truck_name: str = Field(max_length=100)
    license_plate: Optional[str] = Field(default=None, max_length=20)
    driver_name: Optional[str] = Field(default=None, max_length=100)
    brand: Optional[str] = Field(default=None, max_length=50)
    model: Optional[str] = Field(default=None, max_length=50)
    manufacture_year: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)

    @property
    def is_low(self) -> bool:
        # trucks carry no minimum threshold
        return self.is_empty

    @property
    def status(self) -> str:
        if self.is_empty:
            return "Empty"
        if self.is_full:
            return "Full"
        pct = self.usage_percentage
        if pct >= 75:
            return "High"
        if pct >= 25:
            return "Medium"
        return "Low"


CONTAINER_MODELS: dict[ContainerKind, type[FuelContainerBase]] = {
    ContainerKind.STORAGE: FuelStorage,
    ContainerKind.TRUCK: FuelTruck,
}
