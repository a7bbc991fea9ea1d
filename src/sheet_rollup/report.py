"""Excel export writer — produces ``{title}_{timestamp}.xlsx``."""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE, TYPE_STRING
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from sheet_rollup.errors import EmptyDatasetError
from sheet_rollup.io import write_bytes
from sheet_rollup.models import Record

# ── Style constants ──────────────────────────────────────────────

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center", wrap_text=True)

SHEET_TITLE = "Sheet1"

_AUTO_WIDTH_SAMPLE_ROWS = 300
_UNSAFE_TITLE_RE = re.compile(r'[\\/:*?"<>|]+')


# ── Helpers ──────────────────────────────────────────────────────


def _style_header(ws: Worksheet, ncols: int) -> None:
    for c in range(1, ncols + 1):
        cell = ws.cell(row=1, column=c)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN


def _auto_width(ws: Worksheet) -> None:
    max_row = min(ws.max_row, _AUTO_WIDTH_SAMPLE_ROWS + 1)  # include header row
    for c_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(c_idx)
        width = 0
        for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=c_idx, max_col=c_idx):
            cell = row[0]
            width = max(width, len(str(cell.value or "")))
        width += 4
        ws.column_dimensions[letter].width = min(width, 30)


def _excel_value(val: Any) -> Any:
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):
        return val

    if isinstance(val, pd.Timestamp):
        dt = val.to_pydatetime()
        return dt.replace(tzinfo=None) if dt.tzinfo else dt

    if isinstance(val, datetime) and val.tzinfo:
        return val.replace(tzinfo=None)

    return val


def _write_cell(ws: Worksheet, row: int, column: int, value: Any) -> None:
    value = _excel_value(value)
    if isinstance(value, str):
        value = ILLEGAL_CHARACTERS_RE.sub("", value)
    cell = ws.cell(row=row, column=column, value=value)
    # openpyxl treats any "=..." string as a formula; keep it as text instead.
    if isinstance(cell.value, str) and cell.data_type != TYPE_STRING:
        cell.data_type = TYPE_STRING


def export_columns(records: Sequence[Record]) -> list[str]:
    """Column order: first record's keys, then keys first seen in later records."""
    columns: dict[str, None] = {}
    for record in records:
        for key in record:
            columns.setdefault(key, None)
    return list(columns)


# ── Public API ───────────────────────────────────────────────────


def records_to_workbook(records: Sequence[Record]) -> Workbook:
    """Build a single-sheet workbook (``Sheet1``) from *records*.

    Raises
    ------
    EmptyDatasetError
        If *records* is empty; a header-less file is never produced.
    """
    if not records:
        raise EmptyDatasetError("No data to export")

    wb = Workbook()
    ws = wb.active
    if ws is None:
        ws = wb.create_sheet()
    ws.title = SHEET_TITLE

    col_names = export_columns(records)
    for c_idx, col_name in enumerate(col_names, 1):
        _write_cell(ws, 1, c_idx, col_name)
    for r_idx, record in enumerate(records, 2):
        for c_idx, col_name in enumerate(col_names, 1):
            _write_cell(ws, r_idx, c_idx, record.get(col_name))

    _style_header(ws, len(col_names))
    ws.freeze_panes = "A2"
    ws.auto_filter.ref = ws.dimensions
    _auto_width(ws)
    return wb


def workbook_bytes(records: Sequence[Record]) -> bytes:
    """Serialize *records* into xlsx bytes."""
    buffer = BytesIO()
    records_to_workbook(records).save(buffer)
    return buffer.getvalue()


def export_filename(title: str, now: datetime | None = None) -> str:
    """Return ``{title}_{timestamp}.xlsx``; the timestamp is ISO-8601 UTC with ``:``/``.`` as ``-``."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    stamp = now.isoformat(timespec="milliseconds") + "Z"
    stamp = stamp.replace(":", "-").replace(".", "-")
    safe_title = _UNSAFE_TITLE_RE.sub("_", title).strip() or "export"
    return f"{safe_title}_{stamp}.xlsx"


def write_export(
    out_dir: Path,
    records: Sequence[Record],
    title: str,
    *,
    now: datetime | None = None,
) -> Path:
    """Write *records* to ``out_dir/{title}_{timestamp}.xlsx`` and return the path."""
    payload = workbook_bytes(records)
    return write_bytes(Path(out_dir) / export_filename(title, now), payload)
