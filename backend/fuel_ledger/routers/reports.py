"""
Reporting router: unit consumption summaries, variance reports, session
statistics and per-transaction analysis.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from fuel_ledger.core.database import get_session
from fuel_ledger.core.errors import NotFound
from fuel_ledger.models import FuelTransaction, PeriodType, WorkCondition
from fuel_ledger.routers.schemas import (
    ApproveRequest,
    FinalizeRequest,
    RebuildRequest,
    RejectRequest,
    VarianceReportCreate,
    to_json,
)
from fuel_ledger.services import sessions, summaries, transactions, variance_reports

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/reports", tags=["reports"])

SesDep = Annotated[Session, Depends(get_session)]


def _summary_json(ses: Session, summary, analysis: bool) -> dict:
    if not analysis:
        return to_json(summary)
    return to_json(summary, analysis=summaries.analyse_summary(ses, summary))


# ------------------------------ summaries -------------------------------
@router.get("/units/{unit_id}/summaries")
def list_unit_summaries(
    unit_id: int,
    ses: SesDep,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    period_type: Optional[PeriodType] = Query(None),
    analysis: bool = Query(False),
):
    rows = summaries.list_unit_summaries(
        ses, unit_id, date_from=date_from, date_to=date_to, period_type=period_type
    )
    return {"rows": [_summary_json(ses, r, analysis) for r in rows], "total": len(rows)}


@router.post("/units/{unit_id}/summaries/rebuild")
def rebuild_unit_summaries(unit_id: int, body: RebuildRequest, ses: SesDep):
    rows = summaries.rebuild_unit_summaries(ses, unit_id, body.day)
    return {"rows": [to_json(r) for r in rows], "total": len(rows)}


# --------------------------- variance reports ---------------------------
@router.post("/variance", status_code=status.HTTP_201_CREATED)
def create_variance_report(body: VarianceReportCreate, ses: SesDep):
    report = variance_reports.generate_variance_report(
        ses,
        body.report_type,
        body.period_start,
        body.period_end,
        body.prepared_by,
        report_date=body.report_date,
    )
    return to_json(report, total_variance=report.total_variance)


@router.get("/variance/{report_id}")
def read_variance_report(report_id: int, ses: SesDep):
    report = variance_reports.get_report(ses, report_id)
    return to_json(variance_reports.report_data(ses, report))


def _workflow_result(ses: Session, report_id: int, ok: bool, step: str) -> dict:
    if not ok:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Report {report_id} cannot be {step} from its current status",
        )
    report = variance_reports.get_report(ses, report_id)
    return to_json(report, total_variance=report.total_variance)


@router.post("/variance/{report_id}/finalize")
def finalize_variance_report(report_id: int, ses: SesDep, body: Optional[FinalizeRequest] = None):
    ok = variance_reports.finalize_report(ses, report_id, body.reviewed_by if body else None)
    return _workflow_result(ses, report_id, ok, "finalized")


@router.post("/variance/{report_id}/approve")
def approve_variance_report(report_id: int, body: ApproveRequest, ses: SesDep):
    ok = variance_reports.approve_report(ses, report_id, body.approver)
    return _workflow_result(ses, report_id, ok, "approved")


@router.post("/variance/{report_id}/reject")
def reject_variance_report(report_id: int, body: RejectRequest, ses: SesDep):
    ok = variance_reports.reject_report(ses, report_id, body.reason)
    return _workflow_result(ses, report_id, ok, "rejected")


# ------------------------- sessions / transactions ----------------------
@router.get("/sessions/{session_id}/statistics")
def read_session_statistics(session_id: int, ses: SesDep):
    return to_json(sessions.session_statistics(ses, session_id))


@router.get("/transactions/{transaction_id}/analysis")
def read_transaction_analysis(
    transaction_id: int,
    ses: SesDep,
    work_condition: WorkCondition = Query(WorkCondition.NORMAL),
):
    txn = ses.get(FuelTransaction, transaction_id)
    if txn is None:
        raise NotFound(f"transaction {transaction_id} not found")
    return to_json(transactions.analyse_transaction(ses, txn, work_condition))
