"""
Ledger router.

Thin HTTP layer over the container, transfer, transaction and stock-check
services. Domain errors are mapped to status codes by the handlers registered
in ``fuel_ledger.main``; these endpoints only translate bodies and shape JSON.

* /v1/containers/...   – read / list containers, manual level correction
* /v1/transfers/...    – storage → truck transfers
* /v1/transactions/... – unit refuelling
* /v1/stock-checks/... – physical stock checks and adjustments
"""

from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlmodel import Session, select

from fuel_ledger.core.database import get_session
from fuel_ledger.core.errors import NotFound
from fuel_ledger.models import (
    CONTAINER_MODELS,
    ContainerKind,
    FuelSourceRef,
    FuelTransaction,
    FuelTransfer,
    PhysicalStockCheck,
)
from fuel_ledger.routers.schemas import (
    AdjustRequest,
    LevelUpdate,
    StockCheckCreate,
    TransactionCreate,
    TransactionUpdate,
    TransferCreate,
    TransferUpdate,
    container_json,
    stock_check_json,
    to_json,
    transfer_json,
)
from fuel_ledger.services import stock_checks, transactions, transfers
from fuel_ledger.services.containers import get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["ledger"])

SesDep = Annotated[Session, Depends(get_session)]


# ------------------------------ containers ------------------------------
@router.get("/containers/{kind}")
def list_containers(
    kind: ContainerKind,
    ses: SesDep,
    active_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    model = CONTAINER_MODELS[kind]
    conds = [model.is_active.is_(True)] if active_only else []
    total = ses.exec(select(func.count()).select_from(model).where(*conds)).one()
    rows = ses.exec(select(model).where(*conds).order_by(model.id).offset(offset).limit(limit)).all()
    return {"rows": [container_json(r) for r in rows], "total": int(total)}


@router.get("/containers/{kind}/{container_id}")
def read_container(kind: ContainerKind, container_id: int, ses: SesDep):
    return container_json(get_container(ses, FuelSourceRef(kind, container_id)))


@router.put("/containers/{kind}/{container_id}/level")
def update_container_level(kind: ContainerKind, container_id: int, body: LevelUpdate, ses: SesDep):
    ref = FuelSourceRef(kind, container_id)
    get_container(ses, ref)  # 404 before attempting the correction
    if not stock_checks.adjust_container_level(ses, ref, body.new_level):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Level {body.new_level} is outside 0..capacity for {ref}",
        )
    return container_json(get_container(ses, ref))


# ------------------------------ transfers -------------------------------
@router.post("/transfers", status_code=status.HTTP_201_CREATED)
def create_transfer(body: TransferCreate, ses: SesDep):
    transfer = transfers.create_transfer(
        ses,
        body.storage_id,
        body.truck_id,
        body.amount,
        body.operator,
        body.session_id,
        notes=body.notes,
        transfer_datetime=body.transfer_datetime,
    )
    return transfer_json(transfer)


@router.get("/transfers/{transfer_id}")
def read_transfer(transfer_id: int, ses: SesDep):
    transfer = ses.get(FuelTransfer, transfer_id)
    if transfer is None:
        raise NotFound(f"transfer {transfer_id} not found")
    return transfer_json(transfer)


@router.patch("/transfers/{transfer_id}")
def update_transfer(transfer_id: int, body: TransferUpdate, ses: SesDep):
    return transfer_json(transfers.update_transfer_amount(ses, transfer_id, body.transferred_amount))


@router.delete("/transfers/{transfer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_transfer(transfer_id: int, ses: SesDep) -> None:
    transfers.delete_transfer(ses, transfer_id)


# ----------------------------- transactions -----------------------------
@router.post("/transactions", status_code=status.HTTP_201_CREATED)
def create_transaction(body: TransactionCreate, ses: SesDep):
    txn = transactions.create_transaction(
        ses,
        body.unit_id,
        FuelSourceRef.parse(body.source),
        body.fuel_amount,
        body.current_hour_meter,
        body.current_odometer,
        body.operator,
        body.session_id,
        notes=body.notes,
        transaction_datetime=body.transaction_datetime,
        work_condition=body.work_condition,
    )
    return to_json(txn)


@router.get("/transactions/{transaction_id}")
def read_transaction(transaction_id: int, ses: SesDep):
    txn = ses.get(FuelTransaction, transaction_id)
    if txn is None:
        raise NotFound(f"transaction {transaction_id} not found")
    return to_json(txn, hour_meter_diff=txn.hour_meter_diff, odometer_diff=txn.odometer_diff)


@router.patch("/transactions/{transaction_id}")
def update_transaction(transaction_id: int, body: TransactionUpdate, ses: SesDep):
    txn = transactions.update_transaction(
        ses,
        transaction_id,
        fuel_amount=body.fuel_amount,
        current_hour_meter=body.current_hour_meter,
        current_odometer=body.current_odometer,
        notes=body.notes,
    )
    return to_json(txn)


@router.delete("/transactions/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_transaction(transaction_id: int, ses: SesDep) -> None:
    transactions.delete_transaction(ses, transaction_id)


# ----------------------------- stock checks -----------------------------
@router.post("/stock-checks", status_code=status.HTTP_201_CREATED)
def create_stock_check(body: StockCheckCreate, ses: SesDep):
    check = stock_checks.record_stock_check(
        ses,
        FuelSourceRef.parse(body.source),
        body.physical_level,
        body.checker,
        body.method,
        notes=body.notes,
        check_datetime=body.check_datetime,
    )
    return stock_check_json(check)


@router.get("/stock-checks/pending-adjustment")
def list_pending_adjustments(ses: SesDep):
    rows = stock_checks.list_checks_needing_adjustment(ses)
    return {"rows": [stock_check_json(c) for c in rows], "total": len(rows)}


@router.get("/stock-checks/{check_id}")
def read_stock_check(check_id: int, ses: SesDep, analysis: bool = Query(True)):
    check = ses.get(PhysicalStockCheck, check_id)
    if check is None:
        raise NotFound(f"stock check {check_id} not found")
    if not analysis:
        return stock_check_json(check)
    return stock_check_json(check, analysis=stock_checks.analyse_stock_check(ses, check))


@router.post("/stock-checks/{check_id}/adjust")
def adjust_stock_check(check_id: int, ses: SesDep, body: Optional[AdjustRequest] = None):
    reason = body.reason if body else None
    if not stock_checks.adjust_stock_check(ses, check_id, reason):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Stock check {check_id} is not eligible for adjustment",
        )
    return stock_check_json(ses.get(PhysicalStockCheck, check_id))
