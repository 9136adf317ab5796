"""
variance_reports.py
===================

Period roll-up of physical stock checks and its review workflow.

Workflow::

    Draft --finalize--> Final --approve--> Approved
      ^                   |
      +------reject-------+        (reject is allowed from any non-Approved state)

The aggregate figures are computed once at generation time; the analysis
helpers (by method, top items, comparison with the previous period) read the
checks again so they always reflect the stored check rows.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional, Sequence

import pandas as pd
from sqlmodel import Session, select

from fuel_ledger.core.database import atomic
from fuel_ledger.core.errors import NotFound, ReportStateError, ValidationError, ValidationIssue
from fuel_ledger.models.container import ContainerKind
from fuel_ledger.models.stock_check import PhysicalStockCheck, VarianceStatus
from fuel_ledger.models.variance_report import ReportStatus, ReportType, VarianceReport
from fuel_ledger.services.containers import get_container
from fuel_ledger.services.numbering import next_report_number
from fuel_ledger.utils.decimals import ZERO, round_to, to_amount

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# check selection                                                             #
# --------------------------------------------------------------------------- #
def _period_checks(
    session: Session, start: date, end: date, kind: ContainerKind | None = None
) -> list[PhysicalStockCheck]:
    lo = datetime.combine(start, time.min)
    hi = datetime.combine(end + timedelta(days=1), time.min)
    stmt = select(PhysicalStockCheck).where(
        PhysicalStockCheck.check_datetime >= lo,
        PhysicalStockCheck.check_datetime < hi,
    )
    if kind is not None:
        stmt = stmt.where(PhysicalStockCheck.checkable_type == kind)
    return list(session.exec(stmt.order_by(PhysicalStockCheck.check_datetime, PhysicalStockCheck.id)).all())


def _checks_frame(checks: Sequence[PhysicalStockCheck]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "id": c.id,
                "kind": ContainerKind(c.checkable_type).value,
                "checkable_id": c.checkable_id,
                "method": c.check_method.value,
                "status": c.variance_status.value,
                "variance": float(c.variance),
                "variance_percentage": float(c.variance_percentage),
                "check_datetime": c.check_datetime,
            }
            for c in checks
        ],
        columns=["id", "kind", "checkable_id", "method", "status", "variance", "variance_percentage", "check_datetime"],
    )


# --------------------------------------------------------------------------- #
# figures                                                                     #
# --------------------------------------------------------------------------- #
def total_variance_percentage(report: VarianceReport) -> Decimal:
    if not report.total_system_fuel:
        return round_to(0, 4)
    return round_to(report.total_variance / report.total_system_fuel * 100, 4)


def variance_accuracy(report: VarianceReport) -> str:
    pct = abs(total_variance_percentage(report))
    if pct <= 1:
        return "Excellent"
    if pct <= 3:
        return "Good"
    if pct <= 5:
        return "Acceptable"
    return "Poor"


def _kind_variance_percentage(session: Session, report: VarianceReport, kind: ContainerKind) -> Decimal:
    checks = _period_checks(session, report.period_start, report.period_end, kind)
    system_total = sum((c.system_level for c in checks), ZERO)
    if system_total == 0:
        return round_to(0, 4)
    variance = report.storage_variance if kind is ContainerKind.STORAGE else report.truck_variance
    return round_to(variance / system_total * 100, 4)


def storage_variance_percentage(session: Session, report: VarianceReport) -> Decimal:
    return _kind_variance_percentage(session, report, ContainerKind.STORAGE)


def truck_variance_percentage(session: Session, report: VarianceReport) -> Decimal:
    return _kind_variance_percentage(session, report, ContainerKind.TRUCK)


def critical_variance_rate(report: VarianceReport) -> Decimal:
    if report.total_checks_performed == 0:
        return round_to(0, 2)
    return round_to(Decimal(report.critical_variances_count) / report.total_checks_performed * 100, 2)


def variance_by_method(session: Session, report: VarianceReport) -> dict[str, dict]:
    """``{method: {"count": n, "avg_variance": mean |variance|}}``"""
    df = _checks_frame(_period_checks(session, report.period_start, report.period_end))
    if df.empty:
        return {}
    df["abs_variance"] = df["variance"].abs()
    grouped = df.groupby("method")["abs_variance"].agg(["count", "mean"])
    return {
        method: {"count": int(row["count"]), "avg_variance": round(float(row["mean"]), 2)}
        for method, row in grouped.iterrows()
    }


def top_variance_items(session: Session, report: VarianceReport, limit: int = 5) -> list[dict]:
    """Largest absolute variances of the period."""
    checks = _period_checks(session, report.period_start, report.period_end)
    df = _checks_frame(checks)
    if df.empty:
        return []
    df["abs_variance"] = df["variance"].abs()
    top = df.sort_values(["abs_variance", "check_datetime"], ascending=[False, True]).head(limit)
    by_id = {c.id: c for c in checks}
    items = []
    for check_id in top["id"]:
        check = by_id[check_id]
        try:
            name = get_container(session, check.container_ref).display_name
        except NotFound:
            name = "Unknown"
        items.append(
            {
                "item": name,
                "type": ContainerKind(check.checkable_type).value,
                "variance": check.variance,
                "percentage": check.variance_percentage,
                "status": check.variance_status.value,
                "date": check.check_datetime.strftime("%d/%m/%Y"),
            }
        )
    return items


def previous_period(report: VarianceReport) -> tuple[date, date]:
    prev_end = report.period_start - timedelta(days=1)
    return prev_end - timedelta(days=report.period_days - 1), prev_end


def compare_with_previous(session: Session, report: VarianceReport) -> Optional[dict]:
    """Diff against the approved report of the same type covering the prior period."""
    prev_start, prev_end = previous_period(report)
    previous = session.exec(
        select(VarianceReport).where(
            VarianceReport.report_type == report.report_type,
            VarianceReport.period_start == prev_start,
            VarianceReport.period_end == prev_end,
            VarianceReport.report_status == ReportStatus.APPROVED,
        )
    ).first()
    if previous is None:
        return None

    current_pct = abs(total_variance_percentage(report))
    previous_pct = abs(total_variance_percentage(previous))
    if current_pct < previous_pct * Decimal("0.8"):
        trend = "Improving"
    elif current_pct > previous_pct * Decimal("1.2"):
        trend = "Declining"
    else:
        trend = "Stable"
    return {
        "previous_report": previous.report_number,
        "variance_change": report.total_variance - previous.total_variance,
        "percentage_change": total_variance_percentage(report) - total_variance_percentage(previous),
        "checks_change": report.total_checks_performed - previous.total_checks_performed,
        "critical_change": report.critical_variances_count - previous.critical_variances_count,
        "trend": trend,
    }


# --------------------------------------------------------------------------- #
# narrative                                                                   #
# --------------------------------------------------------------------------- #
def _summary_notes(report: VarianceReport, checks: Sequence[PhysicalStockCheck]) -> str:
    counts = {status: 0 for status in VarianceStatus}
    for c in checks:
        counts[VarianceStatus(c.variance_status)] += 1
    notes = [
        f"Period: {report.period_start:%d/%m/%Y} to {report.period_end:%d/%m/%Y}",
        f"Total checks performed: {report.total_checks_performed}",
        f"Overall variance: {report.total_variance:.2f}L ({total_variance_percentage(report):.2f}%)",
    ]
    if report.critical_variances_count:
        notes.append(f"Critical variances found: {report.critical_variances_count}")
    notes.append(
        "Status breakdown: "
        + ", ".join(f"{counts[s]} {s.value}" for s in VarianceStatus)
    )
    return "\n".join(notes)


def _recommended_actions(report: VarianceReport, checks: Sequence[PhysicalStockCheck]) -> str:
    total = report.total_checks_performed
    actions = []
    if total_variance_percentage(report) > 5:
        actions.append("Investigate systematic variance issues - overall variance exceeds 5%")
    if report.critical_variances_count > total * 0.1:
        actions.append("Review check procedures - high critical variance rate detected")
    if abs(report.storage_variance) > 100:
        actions.append("Investigate storage tank measurement accuracy")
    if abs(report.truck_variance) > 50:
        actions.append("Review mobile fuel truck measurement procedures")
    negative = sum(1 for c in checks if c.variance < -10)
    if negative > total * 0.3:
        actions.append("Investigate potential fuel losses - high negative variance pattern")
    if not actions:
        actions.append("Continue current monitoring procedures - variances within acceptable limits")
    return "\n".join(actions)


# --------------------------------------------------------------------------- #
# generation                                                                  #
# --------------------------------------------------------------------------- #
def generate_variance_report(
    session: Session,
    report_type: ReportType,
    start: date,
    end: date,
    prepared_by: str = "System",
    *,
    report_date: date | None = None,
) -> VarianceReport:
    if end < start:
        raise ValidationError([ValidationIssue("invalid_period", "period_end is before period_start", "period_end")])
    report_type = ReportType(report_type)
    report_date = report_date or date.today()

    with atomic(session, "generate_variance_report"):
        checks = _period_checks(session, start, end)
        report = VarianceReport(
            report_number=next_report_number(session, report_date, report_type),
            report_date=report_date,
            report_type=report_type,
            period_start=start,
            period_end=end,
            prepared_by=prepared_by,
            report_status=ReportStatus.DRAFT,
        )
        if checks:
            report.total_system_fuel = to_amount(sum((c.system_level for c in checks), ZERO))
            report.total_physical_fuel = to_amount(sum((c.physical_level for c in checks), ZERO))
            report.total_checks_performed = len(checks)
            report.critical_variances_count = sum(
                1 for c in checks if c.variance_status == VarianceStatus.CRITICAL
            )
            report.storage_variance = to_amount(
                sum((c.variance for c in checks if c.checkable_type == ContainerKind.STORAGE), ZERO)
            )
            report.truck_variance = to_amount(
                sum((c.variance for c in checks if c.checkable_type == ContainerKind.TRUCK), ZERO)
            )
            report.summary_notes = _summary_notes(report, checks)
            report.recommended_actions = _recommended_actions(report, checks)
        session.add(report)
        session.flush()

    session.refresh(report)
    logger.info(
        "generate_variance_report: %s %s..%s checks=%d critical=%d",
        report.report_number,
        start,
        end,
        report.total_checks_performed,
        report.critical_variances_count,
    )
    return report


def get_report(session: Session, report_id: int) -> VarianceReport:
    report = session.get(VarianceReport, report_id)
    if report is None:
        raise NotFound(f"variance report {report_id} not found")
    return report


# --------------------------------------------------------------------------- #
# workflow                                                                    #
# --------------------------------------------------------------------------- #
def _lock_report(session: Session, report_id: int) -> VarianceReport:
    report = session.exec(
        select(VarianceReport)
        .where(VarianceReport.id == report_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).first()
    if report is None:
        raise NotFound(f"variance report {report_id} not found")
    return report


def _transition(session: Session, report_id: int, step: str, apply) -> bool:
    try:
        with atomic(session, f"{step}_report"):
            report = _lock_report(session, report_id)
            apply(report)
            session.add(report)
    except ReportStateError as exc:
        logger.warning("%s_report: report %s: %s", step, report_id, exc)
        return False
    logger.info("%s_report: report %s done", step, report_id)
    return True


def finalize_report(session: Session, report_id: int, reviewed_by: str | None = None) -> bool:
    def apply(report: VarianceReport) -> None:
        if report.report_status != ReportStatus.DRAFT:
            raise ReportStateError(f"cannot finalize a {report.report_status.value} report")
        report.report_status = ReportStatus.FINAL
        if reviewed_by:
            report.reviewed_by = reviewed_by

    return _transition(session, report_id, "finalize", apply)


def approve_report(session: Session, report_id: int, approver: str) -> bool:
    def apply(report: VarianceReport) -> None:
        if report.report_status != ReportStatus.FINAL:
            raise ReportStateError(f"cannot approve a {report.report_status.value} report")
        report.report_status = ReportStatus.APPROVED
        report.approved_by = approver
        report.approved_at = datetime.now()

    return _transition(session, report_id, "approve", apply)


def reject_report(session: Session, report_id: int, reason: str) -> bool:
    def apply(report: VarianceReport) -> None:
        if report.report_status == ReportStatus.APPROVED:
            raise ReportStateError("approved reports cannot be rejected")
        report.report_status = ReportStatus.DRAFT
        report.summary_notes = f"{report.summary_notes or ''}\n\nRejected: {reason}".lstrip("\n")

    return _transition(session, report_id, "reject", apply)


# --------------------------------------------------------------------------- #
# export                                                                      #
# --------------------------------------------------------------------------- #
def report_data(session: Session, report: VarianceReport) -> dict:
    return {
        "header": {
            "report_number": report.report_number,
            "report_date": report.report_date.strftime("%d/%m/%Y"),
            "report_type": report.report_type.value,
            "period": f"{report.period_start:%d/%m/%Y} to {report.period_end:%d/%m/%Y}",
            "status": report.report_status.value,
            "prepared_by": report.prepared_by,
            "reviewed_by": report.reviewed_by,
            "approved_by": report.approved_by,
        },
        "summary": {
            "total_system_fuel": report.total_system_fuel,
            "total_physical_fuel": report.total_physical_fuel,
            "total_variance": report.total_variance,
            "variance_percentage": total_variance_percentage(report),
            "storage_variance": report.storage_variance,
            "storage_variance_percentage": storage_variance_percentage(session, report),
            "truck_variance": report.truck_variance,
            "truck_variance_percentage": truck_variance_percentage(session, report),
            "total_checks": report.total_checks_performed,
            "critical_variances": report.critical_variances_count,
            "critical_rate": critical_variance_rate(report),
            "accuracy": variance_accuracy(report),
        },
        "analysis": {
            "by_method": variance_by_method(session, report),
            "top_variances": top_variance_items(session, report),
            "comparison": compare_with_previous(session, report),
        },
        "notes": report.summary_notes,
        "recommendations": report.recommended_actions,
    }
