"""Request bodies and JSON shaping shared by the routers."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import AfterValidator, BaseModel, Field
from sqlmodel import SQLModel

from fuel_ledger.models import (
    CheckMethod,
    FuelSourceRef,
    FuelTransfer,
    PhysicalStockCheck,
    ReportType,
    WorkCondition,
)
from fuel_ledger.models.container import FuelContainerBase


# --------------------------------------------------------------------------- #
# request bodies                                                              #
# --------------------------------------------------------------------------- #
def _check_ref(value: str) -> str:
    FuelSourceRef.parse(value)  # ValueError -> 422
    return value


SourceRef = Annotated[str, AfterValidator(_check_ref)]


class TransferCreate(BaseModel):
    storage_id: int
    truck_id: int
    amount: Decimal
    operator: str = Field(min_length=1, max_length=100)
    session_id: Optional[int] = None
    notes: Optional[str] = None
    transfer_datetime: Optional[datetime] = None


class TransferUpdate(BaseModel):
    transferred_amount: Decimal


class TransactionCreate(BaseModel):
    unit_id: int
    source: SourceRef = Field(description='Fuel source as "storage:<id>" or "truck:<id>"')
    fuel_amount: Decimal
    current_hour_meter: Decimal
    current_odometer: Decimal
    operator: str = Field(min_length=1, max_length=100)
    session_id: Optional[int] = None
    notes: Optional[str] = None
    transaction_datetime: Optional[datetime] = None
    work_condition: WorkCondition = WorkCondition.NORMAL


class TransactionUpdate(BaseModel):
    fuel_amount: Optional[Decimal] = None
    current_hour_meter: Optional[Decimal] = None
    current_odometer: Optional[Decimal] = None
    notes: Optional[str] = None


class LevelUpdate(BaseModel):
    new_level: Decimal


class StockCheckCreate(BaseModel):
    source: SourceRef = Field(description='Container as "storage:<id>" or "truck:<id>"')
    physical_level: Decimal
    checker: str = Field(min_length=1, max_length=100)
    method: CheckMethod = CheckMethod.DIPSTICK
    notes: Optional[str] = None
    check_datetime: Optional[datetime] = None


class AdjustRequest(BaseModel):
    reason: Optional[str] = None


class VarianceReportCreate(BaseModel):
    report_type: ReportType = ReportType.DAILY
    period_start: date
    period_end: date
    prepared_by: str = "System"
    report_date: Optional[date] = None


class FinalizeRequest(BaseModel):
    reviewed_by: Optional[str] = None


class ApproveRequest(BaseModel):
    approver: str = Field(min_length=1, max_length=100)


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1)


class RebuildRequest(BaseModel):
    day: date


# --------------------------------------------------------------------------- #
# responses                                                                   #
# --------------------------------------------------------------------------- #
def to_json(obj: SQLModel | dict, **extra: Any) -> dict:
    """``model_dump`` + derived fields, encoded for JSON (Decimal → number)."""
    if isinstance(obj, dict):
        data = obj
    else:
        # getattr (not model_dump) so expired rows reload after a commit
        data = {name: getattr(obj, name) for name in type(obj).model_fields}
    return jsonable_encoder({**data, **extra})


def container_json(container: FuelContainerBase) -> dict:
    extra: dict[str, Any] = {
        "kind": container.kind.value,
        "ref": str(container.ref),
        "display_name": container.display_name,
        "usage_percentage": container.usage_percentage,
        "remaining_capacity": container.remaining_capacity,
        "is_low": container.is_low,  # type: ignore[attr-defined]
        "is_empty": container.is_empty,
        "is_full": container.is_full,
        "status": container.status,  # type: ignore[attr-defined]
    }
    return to_json(container, **extra)


def transfer_json(transfer: FuelTransfer) -> dict:
    return to_json(
        transfer,
        storage_level_change=transfer.storage_level_change,
        truck_level_change=transfer.truck_level_change,
        efficiency=transfer.efficiency,
        efficiency_status=transfer.efficiency_status,
    )


def stock_check_json(check: PhysicalStockCheck, **extra: Any) -> dict:
    return to_json(
        check,
        container=str(check.container_ref),
        variance_description=check.variance_description,
        requires_attention=check.requires_attention,
        **extra,
    )
