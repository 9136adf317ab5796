"""
File-upload router.

* POST /v1/upload/stock-checks

Accepts a single CSV / Excel sheet of dipstick readings (multipart/form-data)
and records one physical stock check per row. Rows that fail are reported in
the response and written to a downloadable error CSV under ``/files``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from time import perf_counter
from typing import Annotated, Optional
from uuid import uuid4

import pandas as pd
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from sqlmodel import Session

from fuel_ledger.core.database import get_session
from fuel_ledger.services.stock_checks import import_stock_checks
from fuel_ledger.utils.file_parser import read_dataframe

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/upload", tags=["upload"])

UploadDep = Annotated[UploadFile, File(...)]
SesDep = Annotated[Session, Depends(get_session)]


# --------------------------------------------------------------------------- #
# error CSV helper                                                            #
# --------------------------------------------------------------------------- #
ERROR_DIR = Path("/tmp/upload_errors")
ERROR_DIR.mkdir(parents=True, exist_ok=True)


def _save_error_csv(errors: list[dict], base_url: str = "") -> str:
    """
    Save a list of {'row': int, 'message': str} dicts as CSV and return its
    URL (``<base_url>/files/err_<uuid>.csv``). The app mounts ``StaticFiles``
    at ``/files``.
    """
    if not errors:
        return ""
    fname = f"err_{uuid4().hex}.csv"
    fpath = ERROR_DIR / fname
    pd.DataFrame(errors).to_csv(fpath, index=False, encoding="utf-8-sig")
    logger.info("Saved error CSV: %s (%d errors)", fpath, len(errors))
    if base_url:
        return f"{base_url.rstrip('/')}/files/{fname}"
    return f"/files/{fname}"


# --------------------------------------------------------------------------- #
# endpoints                                                                   #
# --------------------------------------------------------------------------- #
@router.post("/stock-checks")
async def upload_stock_checks(
    file: UploadDep,
    ses: SesDep,
    request: Request,
    checker: Optional[str] = Query(None, description="Checker name for rows without one"),
):
    try:
        t0 = perf_counter()
        base_url = str(request.base_url).rstrip("/")
        logger.info(
            "upload_stock_checks: start filename=%s content_type=%s",
            file.filename,
            file.content_type,
        )

        df = read_dataframe(file)
        t1 = perf_counter()
        logger.info("upload_stock_checks: read_dataframe done rows=%s elapsed=%.3fs", len(df), t1 - t0)

        summary = import_stock_checks(ses, df, default_checker=checker)
        logger.info(
            "upload_stock_checks: done total=%s success=%s errors=%s elapsed=%.3fs",
            summary["total_rows"],
            summary["success_rows"],
            summary["error_rows"],
            perf_counter() - t0,
        )

        if summary["error_rows"] > 0:
            summary["error_csv_url"] = _save_error_csv(summary["errors"], base_url)
            summary["sample_errors"] = summary["errors"][:5]
        else:
            summary["error_csv_url"] = None
            summary["sample_errors"] = []
        summary["csv_headers"] = list(df.columns)
        return summary
    except ValueError as e:
        logger.exception("stock check upload failed: invalid file")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("stock check upload failed")
        raise HTTPException(status_code=500, detail=str(e))
