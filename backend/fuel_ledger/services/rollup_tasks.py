"""
Celery background tasks for ledger roll-ups.

Business logic stays in ``services.summaries`` / ``services.variance_reports``;
these wrappers only open a session, parse the JSON-friendly arguments and
return a JSON-friendly result.

Exposed tasks:
* ``rollup.unit_summaries(day)`` – rebuild every unit summary of one day
* ``rollup.variance_report(report_type, period_start, period_end)`` – draft a report
  (both bounds default to yesterday, which is what beat sends)
"""

from __future__ import annotations

import datetime as _dt
import logging
import time

from celery import shared_task
from sqlmodel import Session

from fuel_ledger.core import database
from fuel_ledger.models.variance_report import ReportType
from fuel_ledger.services.summaries import rebuild_day
from fuel_ledger.services.variance_reports import generate_variance_report

logger = logging.getLogger(__name__)


def _parse_day(value: str | _dt.date | None) -> _dt.date:
    """Accept ISO string / date; ``None`` means yesterday."""
    if value is None:
        return _dt.date.today() - _dt.timedelta(days=1)
    if isinstance(value, _dt.date):
        return value
    return _dt.date.fromisoformat(str(value).strip())


@shared_task(name="rollup.unit_summaries")
def unit_summaries(day: str | None = None) -> dict:
    start = time.perf_counter()
    target = _parse_day(day)
    with Session(database.engine) as ses:
        units = rebuild_day(ses, target)
    elapsed = round(time.perf_counter() - start, 3)
    logger.info("rollup.unit_summaries: %s units=%d elapsed=%.3fs", target, units, elapsed)
    return {
        "day": target.isoformat(),
        "units": int(units),
        "elapsed_sec": elapsed,
        "run_at": _dt.datetime.now().isoformat(),
    }


@shared_task(name="rollup.variance_report")
def variance_report(
    report_type: str = "Daily",
    period_start: str | None = None,
    period_end: str | None = None,
    prepared_by: str = "System",
) -> dict:
    """Draft a report; a missing period bound means yesterday."""
    start = time.perf_counter()
    with Session(database.engine) as ses:
        report = generate_variance_report(
            ses,
            ReportType(report_type),
            _parse_day(period_start),
            _parse_day(period_end),
            prepared_by,
        )
        result = {
            "report_id": report.id,
            "report_number": report.report_number,
            "total_checks": report.total_checks_performed,
            "critical": report.critical_variances_count,
        }
    result["elapsed_sec"] = round(time.perf_counter() - start, 3)
    return result
