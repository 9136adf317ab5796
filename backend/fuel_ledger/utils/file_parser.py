"""
file_parser.py
==============

Turn an uploaded **CSV / Excel** sheet of dipstick readings into a
`pandas.DataFrame` with canonical column names.

* File type is decided from the extension (CSV when unknown)
* CSV encoding is guessed with **chardet**, then common fallbacks are tried
* Delimiter falls back to tab / semicolon / pipe when comma yields one column
* Every value is read as **string** (`dtype=str`, `keep_default_na=False`)
* Headers are NFKC-folded, lower-cased and mapped onto the canonical names
  ``container``, ``type``, ``physical_level``, ``checker``, ``method``, ``notes``
* Empty or unsupported files raise ``ValueError``

Accepts a FastAPI ``UploadFile``, a ``str`` / ``Path`` or raw ``bytes`` so the
same entry point serves the API and the tests.
"""

from __future__ import annotations

import io
import re
import unicodedata
from pathlib import Path
from typing import Final, Iterable

import chardet
import pandas as pd
from fastapi import UploadFile

ENCODINGS: Final[list[str]] = [
    "utf-8",
    "utf-8-sig",
    "utf-16",
    "utf-16-le",
    "utf-16-be",
    "cp1252",
    "iso8859-1",
]

CANONICAL_COLUMNS: Final[tuple[str, ...]] = ("container", "type", "physical_level", "checker", "method", "notes")

_ALIASES: Final[dict[str, str]] = {
    # --- container ------------------------------------------------------
    "code": "container",
    "container_code": "container",
    "storage_code": "container",
    "truck_code": "container",
    "tank": "container",
    # --- container kind -------------------------------------------------
    "kind": "type",
    "container_type": "type",
    "checkable_type": "type",
    # --- reading --------------------------------------------------------
    "level": "physical_level",
    "physical": "physical_level",
    "measured_level": "physical_level",
    "reading": "physical_level",
    "liters": "physical_level",
    "litres": "physical_level",
    # --- people / method ------------------------------------------------
    "checker_name": "checker",
    "checked_by": "checker",
    "check_method": "method",
    "note": "notes",
    "remarks": "notes",
}

_SEP_RE = re.compile(r"[\s\-./]+")


# --------------------------------------------------------------------------- #
# public API                                                                  #
# --------------------------------------------------------------------------- #
def read_dataframe(file: UploadFile | str | Path | bytes | bytearray, filename: str = "") -> pd.DataFrame:
    """
    Parameters
    ----------
    file :
        * **FastAPI UploadFile** – production upload
        * **str / Path** – file on disk
        * **bytes / bytearray** – in-memory content (treated as CSV unless
          *filename* says otherwise)

    Returns
    -------
    pandas.DataFrame
        First row is the header; all cells are strings.

    Raises
    ------
    ValueError
        empty file, unsupported extension, undecodable CSV, no data rows
    """
    raw, name = _get_raw_and_name(file)
    name = filename or name

    if not raw:
        raise ValueError("File is empty")

    lower_name = name.lower()
    if lower_name.endswith((".xlsx", ".xls")):
        df = pd.read_excel(io.BytesIO(raw), dtype=str, keep_default_na=False)
    elif lower_name.endswith(".csv") or "." not in lower_name:
        df = _read_csv(raw)
    else:
        raise ValueError("Unsupported file type (only .csv/.xlsx/.xls accepted)")

    df.columns = [_canonical_header(c) for c in df.columns]
    if df.empty:
        raise ValueError("File has no data rows")
    return df


__all__ = ["CANONICAL_COLUMNS", "read_dataframe"]


# --------------------------------------------------------------------------- #
# helpers (private)                                                           #
# --------------------------------------------------------------------------- #
def _read_csv(raw: bytes) -> pd.DataFrame:
    might_be_utf16 = b"\x00" in raw[:1024]
    enc_guess = (chardet.detect(raw[:4096]).get("encoding") or "").lower()
    enc_try_order = (["utf-16", "utf-16-le", "utf-16-be"] if might_be_utf16 else []) + [enc_guess] + ENCODINGS

    for enc in _unique(e for e in enc_try_order if e):
        try:
            df = pd.read_csv(io.BytesIO(raw), encoding=enc, dtype=str, keep_default_na=False)
        except (UnicodeDecodeError, LookupError):
            continue
        if df.shape[1] == 1:
            for sep in ("\t", ";", "|"):
                try:
                    alt = pd.read_csv(io.BytesIO(raw), encoding=enc, dtype=str, keep_default_na=False, sep=sep)
                except (pd.errors.ParserError, UnicodeDecodeError):
                    continue
                if alt.shape[1] > 1:
                    df = alt
                    break
        return df
    raise ValueError("Cannot decode CSV - unknown encoding")


def _canonical_header(name) -> str:
    text = unicodedata.normalize("NFKC", str(name)).replace("\ufeff", "").strip().lower()
    text = _SEP_RE.sub("_", text).strip("_")
    return _ALIASES.get(text, text)


def _get_raw_and_name(file: UploadFile | str | Path | bytes | bytearray) -> tuple[bytes, str]:
    if isinstance(file, (bytes, bytearray)):
        return bytes(file), ""
    if isinstance(file, (str, Path)):
        p = Path(file)
        return p.read_bytes(), p.name
    if isinstance(file, UploadFile) or (hasattr(file, "file") and hasattr(file, "filename")):
        return file.file.read(), file.filename or ""
    raise TypeError(f"file must be UploadFile | str | Path | bytes | bytearray; got {type(file)}")


def _unique(seq: Iterable[str]) -> list[str]:
    """Drop duplicates, keep order."""
    seen: set[str] = set()
    out: list[str] = []
    for item in seq:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
