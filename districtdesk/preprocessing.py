"""
preprocessing.py — Spreadsheet Reading, Column Mapping & Key Cleaning
District Data Console
"""

import io
import re
import zipfile
from typing import Callable, Dict, List, Optional, Tuple
import pandas as pd
import xlrd
from loguru import logger
from openpyxl.utils.exceptions import InvalidFileException
from districtdesk.errors import ValidationFailed


# ── Constants ─────────────────────────────────────────────────────────────────
SPREADSHEET_SUFFIXES = (".xlsx", ".xls", ".csv")
FILENAME_SEPARATORS = ("-", "_", " ")
UNKNOWN_KEY = "UNKNOWN"

# First rule whose predicate accepts a header claims it for that field.
HEADER_RULES: List[Tuple[Callable[[str], bool], str]] = [
    (lambda h: "name" in h, "name"),
    (lambda h: "mobile" in h or "phone" in h or "contact" in h, "mobileNumber"),
    (lambda h: "address" in h, "address"),
]
RECORD_FIELDS = [field for _, field in HEADER_RULES]


# ── Loading ───────────────────────────────────────────────────────────────────
def read_spreadsheet(content: bytes, filename: str) -> pd.DataFrame:
    """Parse an uploaded workbook or CSV with every cell kept as text."""
    suffix = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    try:
        if suffix == "csv":
            df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False)
        elif suffix == "xlsx":
            df = pd.read_excel(io.BytesIO(content), dtype=str, keep_default_na=False, engine="openpyxl")
        elif suffix == "xls":
            df = pd.read_excel(io.BytesIO(content), dtype=str, keep_default_na=False)
        else:
            raise ValidationFailed(f"Unsupported file type: {filename}")
    except (
        ValueError,
        pd.errors.ParserError,
        zipfile.BadZipFile,
        InvalidFileException,
        xlrd.XLRDError,
    ) as e:
        raise ValidationFailed(f"Could not read {filename}: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    logger.info(f"Read {filename}: {len(df)} rows, {len(df.columns)} columns.")
    return df


# ── Column Mapping ────────────────────────────────────────────────────────────
def build_column_mapping(headers: List[str]) -> Dict[str, str]:
    """
    Map record fields to spreadsheet headers (case-insensitive substring rules).

    Headers are scanned left to right; the first header matching a field's
    rule wins. A single header may satisfy several fields
    (e.g. "Contact Name" → name and mobileNumber).
    """
    mapping: Dict[str, str] = {}
    for header in headers:
        lowered = str(header).lower()
        for predicate, field in HEADER_RULES:
            if field not in mapping and predicate(lowered):
                mapping[field] = header
    missing = [f for f in RECORD_FIELDS if f not in mapping]
    if missing:
        logger.warning(f"No column found for {missing}; those fields will be empty.")
    return mapping


def _cell(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def extract_rows(df: pd.DataFrame, mapping: Dict[str, str]) -> List[Dict[str, str]]:
    """Records for every non-blank row, values trimmed."""
    rows = []
    skipped = 0
    for raw in df.to_dict(orient="records"):
        if not any(_cell(v) for v in raw.values()):
            skipped += 1
            continue
        rows.append({
            field: _cell(raw.get(mapping[field])) if field in mapping else ""
            for field in RECORD_FIELDS
        })
    if skipped:
        logger.info(f"Skipped {skipped} empty rows.")
    return rows


# ── Partition Keys ────────────────────────────────────────────────────────────
def sanitize_partition_key(value: Optional[str]) -> str:
    """Store-safe key: '/', '\\' and '.' become '_'; blank becomes UNKNOWN."""
    cleaned = re.sub(r"[/\\.]", "_", str(value or "")).strip()
    return cleaned or UNKNOWN_KEY


def parse_upload_filename(filename: str) -> Tuple[str, str]:
    """
    "<District>-<Village>.xlsx" → (district, village).
    The first "-" splits; failing that "_", failing that a space.
    """
    stem = filename.strip()
    for suffix in SPREADSHEET_SUFFIXES:
        if stem.lower().endswith(suffix):
            stem = stem[: -len(suffix)]
            break

    for sep in FILENAME_SEPARATORS:
        if sep in stem:
            district, village = (part.strip() for part in stem.split(sep, 1))
            if not district or not village:
                raise ValidationFailed(
                    f"Invalid filename {filename!r}: district and village must both be present."
                )
            return district, village

    raise ValidationFailed(
        f"Invalid filename {filename!r}: expected \"<District>-<Village>.xlsx\"."
    )


def parse_address(address: Optional[str]) -> Tuple[str, str]:
    """"City, District, State, PIN" → (district, city)."""
    if not address:
        return "", ""
    parts = [p.strip() for p in address.split(",")]
    city = parts[0]
    district = parts[1] if len(parts) >= 2 else ""
    return district, city
