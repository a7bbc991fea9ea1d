"""Workbook ingestion — decode payloads into normalized :class:`Sheet` records."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Literal

import pandas as pd

from sheet_rollup.errors import (
    DecodeError,
    InsufficientDataWarning,
    SheetRollupError,
    UnsupportedFileError,
)
from sheet_rollup.io import is_accepted_file, read_workbook_frames
from sheet_rollup.models import BatchReport, Row, Scalar, Sheet
from sheet_rollup.observer import LoggingObserver, PipelineObserver

Grid = list[list[Any]]
OnError = Literal["skip", "abort"]

MIN_SHEET_ROWS = 2

# ── Header-row rules ─────────────────────────────────────────────


@dataclass(frozen=True)
class HeaderRule:
    """Worksheets whose name contains ``name_pattern`` read headers from ``header_row``."""

    name_pattern: str
    header_row: int
    data_start: int

    def __post_init__(self) -> None:
        if self.header_row < 0:
            raise ValueError("header_row must be >= 0")
        if self.data_start <= self.header_row:
            raise ValueError("data_start must be greater than header_row")

    def matches(self, sheet_name: str) -> bool:
        return self.name_pattern.lower() in sheet_name.lower()


DEFAULT_HEADER_ROW = 0
DEFAULT_DATA_START = 1

# "Agent Wise" exports carry a title row above the real header.
DEFAULT_HEADER_RULES: tuple[HeaderRule, ...] = (HeaderRule("agent wise", 1, 2),)


def resolve_header_rule(
    sheet_name: str, rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES
) -> tuple[int, int]:
    """Return ``(header_row, data_start)`` for *sheet_name*; first matching rule wins."""
    for rule in rules:
        if rule.matches(sheet_name):
            return rule.header_row, rule.data_start
    return DEFAULT_HEADER_ROW, DEFAULT_DATA_START


def parse_header_rule(raw: str) -> HeaderRule:
    """Parse ``pattern:header_row:data_start`` (row indices are 0-based)."""
    pattern, sep, rest = raw.rpartition(":")
    pattern, sep2, header = pattern.rpartition(":")
    if not sep or not sep2 or not pattern.strip():
        raise ValueError(
            f"Invalid header rule: {raw!r}  (expected pattern:header_row:data_start)"
        )
    try:
        return HeaderRule(pattern.strip(), int(header), int(rest))
    except ValueError as exc:
        raise ValueError(f"Invalid header rule {raw!r}: {exc}") from exc


# ── Value coercion ───────────────────────────────────────────────


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _iso_instant(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


def coerce_value(value: Any) -> Scalar:
    """Coerce one decoded cell to its string-or-null form.

    ============  ==========================================
    cell          result
    ============  ==========================================
    empty / NaN   ``None``
    datetime      ISO-8601 UTC, e.g. ``2024-01-05T00:00:00.000Z``
    date          same, at midnight
    time          ``HH:MM:SS``
    bool          ``"true"`` / ``"false"``
    number        decimal string, ``10.0`` becomes ``"10"``
    other         ``str(value)``
    ============  ==========================================

    Time-only cells stay a time of day. They are not anchored to the
    spreadsheet epoch, so ``09:15`` never becomes ``1899-12-30T09:15:00.000Z``.
    """
    if _is_missing(value):
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return _iso_instant(value)
    if isinstance(value, date):
        return _iso_instant(datetime.combine(value, time()))
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    if not isinstance(value, (str, int, float)):
        item = getattr(value, "item", None)
        if callable(item):
            return coerce_value(item())
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    return str(value)


# ── Worksheet normalisation ──────────────────────────────────────


def normalize_worksheet(
    file_name: str,
    sheet_name: str,
    grid: Grid,
    *,
    rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES,
    observer: PipelineObserver | None = None,
) -> Sheet | None:
    """Turn a raw cell grid into a :class:`Sheet`, or ``None`` if it is too short.

    ``grid`` rows may be ragged; the header width is the longest row.
    """
    observer = observer or LoggingObserver()
    if len(grid) < MIN_SHEET_ROWS:
        observer.warn(InsufficientDataWarning(file_name, sheet_name, len(grid)))
        return None

    header_row, data_start = resolve_header_rule(sheet_name, rules)
    observer.info(
        f'Processing sheet "{sheet_name}": using row {header_row + 1} as headers, '
        f"data starts from row {data_start + 1}"
    )

    width = max(len(row) for row in grid)
    raw_headers = grid[header_row] if header_row < len(grid) else []
    headers: list[str] = []
    for idx in range(width):
        label = coerce_value(raw_headers[idx]) if idx < len(raw_headers) else None
        headers.append(label if label is not None else f"Column {idx + 1}")

    rows: list[Row] = []
    for raw in grid[data_start:]:
        row: Row = {}
        for idx, header in enumerate(headers):
            row[header] = coerce_value(raw[idx]) if idx < len(raw) else None
        rows.append(row)

    preview = ", ".join(headers[:10])
    more = f" ...and {len(headers) - 10} more" if len(headers) > 10 else ""
    observer.info(f'Sheet "{sheet_name}": found {len(headers)} columns: {preview}{more}')
    return Sheet(file_name=file_name, sheet_name=sheet_name, headers=headers, rows=rows)


# ── Decoding ─────────────────────────────────────────────────────


def _frame_to_grid(frame: pd.DataFrame) -> Grid:
    used: Grid = []
    for values in frame.itertuples(index=False, name=None):
        cells = [None if _is_missing(val) else val for val in values]
        while cells and cells[-1] is None:
            cells.pop()
        if cells:
            used.append(cells)

    # The grid starts at the used range's first column, not at column A.
    origin = min(
        (next(idx for idx, cell in enumerate(cells) if cell is not None) for cells in used),
        default=0,
    )
    return [cells[origin:] for cells in used]


def decode_workbook(payload: bytes, file_name: str) -> dict[str, Grid]:
    """Decode *payload* into one raw grid per worksheet, in workbook order.

    Blank rows are dropped and trailing empty cells are trimmed, so row
    lengths reflect the cells actually present.

    Raises
    ------
    UnsupportedFileError
        If the extension has no decoder.
    DecodeError
        If the bytes cannot be read as a workbook.
    """
    try:
        frames = read_workbook_frames(payload, file_name)
    except SheetRollupError:
        raise
    except Exception as exc:  # decoders raise zipfile, xlrd and pyxlsb errors alike
        raise DecodeError(file_name, str(exc) or type(exc).__name__) from exc
    return {name: _frame_to_grid(frame) for name, frame in frames.items()}


def ingest_workbook(
    payload: bytes,
    file_name: str,
    *,
    rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES,
    observer: PipelineObserver | None = None,
) -> list[Sheet]:
    """Decode *payload* and return the sheets that have at least two rows."""
    observer = observer or LoggingObserver()
    sheets: list[Sheet] = []
    for sheet_name, grid in decode_workbook(payload, file_name).items():
        sheet = normalize_worksheet(
            file_name, sheet_name, grid, rules=rules, observer=observer
        )
        if sheet is not None:
            sheets.append(sheet)
    return sheets


class _ReportingObserver:
    def __init__(self, inner: PipelineObserver, report: BatchReport) -> None:
        self.inner = inner
        self.report = report

    def info(self, message: str) -> None:
        self.inner.info(message)

    def warn(self, warning: Warning) -> None:
        self.report.warnings.append(str(warning))
        self.inner.warn(warning)

    def error(self, message: str) -> None:
        self.report.errors.append(message)
        self.inner.error(message)


def ingest_batch(
    files: Iterable[tuple[str, bytes]],
    *,
    rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES,
    observer: PipelineObserver | None = None,
    on_error: OnError = "skip",
) -> tuple[list[Sheet], BatchReport]:
    """Ingest ``(file_name, payload)`` pairs into one flat sheet list.

    With ``on_error="skip"`` a file that is rejected or fails to decode is
    recorded in the report and the batch continues; ``"abort"`` re-raises.
    """
    if on_error not in ("skip", "abort"):
        raise ValueError(f"Invalid on_error policy: {on_error!r}. Use skip/abort.")

    report = BatchReport()
    reporter = _ReportingObserver(observer or LoggingObserver(), report)
    sheets: list[Sheet] = []
    for file_name, payload in files:
        report.files_in += 1
        try:
            if not is_accepted_file(file_name):
                raise UnsupportedFileError(f"Rejected {file_name}: not an Excel workbook")
            sheets.extend(
                ingest_workbook(payload, file_name, rules=rules, observer=reporter)
            )
        except (DecodeError, UnsupportedFileError) as exc:
            if on_error == "abort":
                raise
            report.files_failed += 1
            reporter.error(str(exc))

    report.sheets_out = len(sheets)
    reporter.info(f"Processed {len(sheets)} sheets from {report.files_in} file(s)")
    return sheets, report


# ── Sheet helpers ────────────────────────────────────────────────


def list_columns(sheets: Iterable[Sheet]) -> list[str]:
    """Return the sorted union of every sheet's headers."""
    columns: set[str] = set()
    for sheet in sheets:
        columns.update(sheet.headers)
    return sorted(columns)


def select_sheets(sheets: Sequence[Sheet], keys: Iterable[str] | None) -> list[Sheet]:
    """Keep sheets whose ``file:sheet`` key is in *keys* (``None`` keeps all)."""
    if keys is None:
        return list(sheets)
    wanted = set(keys)
    return [sheet for sheet in sheets if sheet.key in wanted]
