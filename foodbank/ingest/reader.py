from __future__ import annotations

import io
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pandas as pd

from ..errors import InputError
from ..models.import_row import IMPORT_COLUMNS, REQUIRED_COLUMNS, ImportRow, parse_int
from ..services.validator import MAX_IMPORT_ROWS

"""Import CSV reader.

- first line is the header; names are lower-cased and trimmed, blank header
  cells are ignored, a repeated name is rejected
- a data row with more fields than the header is a parsing error
- every cell is read as a string (no NA coercion), so "NA" or "null" in a
  free-text field stays as typed
- fully blank lines are skipped; row numbers are 1-based data row indices
- coercion of each cell into ImportRow fields is done by ImportRow.from_record
"""

__all__ = [
    "read_import_csv",
    "parse_import_csv",
    "import_rows_from_records",
    "check_headers",
    "csv_template",
    "TEMPLATE_FILENAME",
]

TEMPLATE_FILENAME = "client-import-template.csv"

_TEMPLATE = """\
name,address,family_size,num_children,children_ages,reason,appointment_day,appointment_time,pref_gluten_free,pref_halal,pref_vegetarian,pref_no_cooking
"John Smith","123 High Street, London N12 0AB",4,2,"5, 8","Referred by GP",Tuesday,10:30,false,false,false,false
"Jane Doe","45 Park Road, Barnet EN5 1AA",2,0,"","Job loss",Thursday,14:00,false,true,false,false
"Bob Wilson","78 Church Lane, Finchley N3 2PQ",3,1,"3","Financial hardship",Monday,09:00,true,false,false,false
"""


def csv_template() -> str:
    """Static CSV template: the header plus three example rows."""
    return _TEMPLATE


def check_headers(headers: Iterable[str]) -> list[str]:
    """Validate normalised headers. Returns them with blanks dropped.

    Raises:
        InputError: a column is missing, repeated or not recognised
    """
    present = [h for h in headers if h]
    repeated = sorted({h for h in present if present.count(h) > 1})
    if repeated:
        raise InputError(f"Duplicate columns: {', '.join(repeated)}")
    missing = [c for c in REQUIRED_COLUMNS if c not in present]
    if missing:
        raise InputError(f"Missing required columns: {', '.join(missing)}")
    unknown = [h for h in present if h not in IMPORT_COLUMNS]
    if unknown:
        raise InputError(f"Unknown columns: {', '.join(unknown)}")
    return present


def _frame_to_rows(df: pd.DataFrame, max_rows: int) -> list[ImportRow]:
    df = df.rename(columns=lambda c: str(c).strip().lower())
    columns = check_headers(df.columns)
    df = df.fillna("")  # short rows leave NaN in the missing trailing cells

    if df.empty:
        raise InputError("CSV file contains no data rows")
    if len(df) > max_rows:
        raise InputError(f"Too many rows (max {max_rows:,})")

    rows: list[ImportRow] = []
    for idx, record in enumerate(df[columns].to_dict(orient="records"), start=1):
        rows.append(ImportRow.from_record(record, row_number=idx))
    return rows


def _read_frame(source: Any) -> pd.DataFrame:
    try:
        # header=None: the header line fixes the field count, so a data row
        # with more fields is a ParserError instead of a shifted implicit index
        raw = pd.read_csv(
            source,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError as e:
        raise InputError("CSV file is empty") from e
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise InputError(f"CSV parsing error: {e}") from e

    df = raw.iloc[1:].reset_index(drop=True)
    df.columns = [str(c) for c in raw.iloc[0]]
    return df


def read_import_csv(path: Path, max_rows: int = MAX_IMPORT_ROWS) -> list[ImportRow]:
    if not path.exists():
        raise InputError(f"file not found: {path}")
    return _frame_to_rows(_read_frame(path), max_rows)


def parse_import_csv(text: str, max_rows: int = MAX_IMPORT_ROWS) -> list[ImportRow]:
    """Same as read_import_csv for CSV text already in memory."""
    return _frame_to_rows(_read_frame(io.StringIO(text.removeprefix("\ufeff"))), max_rows)


def import_rows_from_records(records: Any) -> list[ImportRow]:
    """Build ImportRows from JSON objects, either a list or a {"clients": [...]} body.

    An explicit row_number in a record is kept; otherwise rows are numbered
    by position.
    """
    if isinstance(records, dict):
        if "clients" not in records:
            raise InputError("request body must contain a 'clients' list")
        records = records["clients"]
    if not isinstance(records, list):
        raise InputError("clients must be a list")
    rows: list[ImportRow] = []
    for idx, record in enumerate(records, start=1):
        if not isinstance(record, dict):
            raise InputError(f"client #{idx} must be an object")
        row_number = parse_int(record.get("row_number")) or idx
        rows.append(ImportRow.from_record(record, row_number=row_number))
    return rows
