"""Ingestion: header-row rules, value coercion, worksheet normalisation, batches."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from io import BytesIO

import pandas as pd
import pytest
from openpyxl import Workbook

from sheet_rollup.errors import DecodeError, UnsupportedFileError
from sheet_rollup.ingest import (
    DEFAULT_HEADER_RULES,
    HeaderRule,
    coerce_value,
    ingest_batch,
    ingest_workbook,
    list_columns,
    normalize_worksheet,
    parse_header_rule,
    resolve_header_rule,
    select_sheets,
)
from sheet_rollup.models import Sheet
from sheet_rollup.observer import LoggingObserver
from sheet_rollup.report import workbook_bytes

from conftest import WorkbookFactory


@pytest.fixture
def observer() -> LoggingObserver:
    return LoggingObserver(logging.getLogger("sheet_rollup.tests"))


# ── Header rules ─────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("sheet_name", "expected"),
    [
        ("Sheet1", (0, 1)),
        ("Agent Wise", (1, 2)),
        ("JAN agent WISE summary", (1, 2)),
        ("Agentwise", (0, 1)),
    ],
)
def test_resolve_header_rule_default_table(sheet_name: str, expected: tuple[int, int]) -> None:
    assert resolve_header_rule(sheet_name, DEFAULT_HEADER_RULES) == expected


def test_resolve_header_rule_first_match_wins() -> None:
    rules = (HeaderRule("summary", 3, 5), HeaderRule("sum", 1, 2))

    assert resolve_header_rule("Monthly Summary", rules) == (3, 5)
    assert resolve_header_rule("Checksum", rules) == (1, 2)
    assert resolve_header_rule("Other", rules) == (0, 1)


def test_parse_header_rule() -> None:
    assert parse_header_rule("region: north:2:4") == HeaderRule("region: north", 2, 4)

    with pytest.raises(ValueError, match="pattern:header_row:data_start"):
        parse_header_rule("agent wise")

    with pytest.raises(ValueError, match="Invalid header rule"):
        parse_header_rule("agent wise:x:2")

    with pytest.raises(ValueError, match="data_start"):
        parse_header_rule("agent wise:2:2")


# ── Value coercion ───────────────────────────────────────────────


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        ("", None),
        (float("nan"), None),
        (pd.NaT, None),
        ("  ", "  "),
        ("NA", "NA"),
        (7, "7"),
        (10.0, "10"),
        (1.5, "1.5"),
        (-0.25, "-0.25"),
        (True, "true"),
        (False, "false"),
        (datetime(2024, 1, 5), "2024-01-05T00:00:00.000Z"),
        (datetime(2024, 1, 5, 13, 4, 5, 120000), "2024-01-05T13:04:05.120Z"),
        (
            datetime(2024, 1, 5, 2, 0, tzinfo=timezone(timedelta(hours=2))),
            "2024-01-05T00:00:00.000Z",
        ),
        (pd.Timestamp("2024-03-01 08:30"), "2024-03-01T08:30:00.000Z"),
        (date(2024, 2, 29), "2024-02-29T00:00:00.000Z"),
        (time(9, 15), "09:15:00"),
    ],
)
def test_coerce_value_conversion_table(value: object, expected: str | None) -> None:
    assert coerce_value(value) == expected


def test_coerce_value_unwraps_numpy_scalars() -> None:
    assert coerce_value(pd.Series([7], dtype="int64").iloc[0]) == "7"
    assert coerce_value(pd.Series([2.0], dtype="float64").iloc[0]) == "2"


# ── Worksheet normalisation ──────────────────────────────────────


def test_normalize_worksheet_headers_span_longest_row(observer: LoggingObserver) -> None:
    grid = [
        ["region", "amount"],
        ["E", 10],
        ["W", 5, None, "note"],
    ]

    sheet = normalize_worksheet("a.xlsx", "Sales", grid, observer=observer)

    assert sheet is not None
    assert sheet.headers == ["region", "amount", "Column 3", "Column 4"]
    assert sheet.rows == [
        {"region": "E", "amount": "10", "Column 3": None, "Column 4": None},
        {"region": "W", "amount": "5", "Column 3": None, "Column 4": "note"},
    ]
    assert len(sheet.headers) == max(len(row) for row in grid)


def test_normalize_worksheet_synthesizes_blank_header_cells(observer: LoggingObserver) -> None:
    grid = [["id", None, "", datetime(2024, 1, 1)], [1, 2, 3, 4]]

    sheet = normalize_worksheet("a.xlsx", "S", grid, observer=observer)

    assert sheet is not None
    assert sheet.headers == ["id", "Column 2", "Column 3", "2024-01-01T00:00:00.000Z"]


def test_normalize_worksheet_agent_wise_uses_second_row(observer: LoggingObserver) -> None:
    grid = [
        ["Agent performance - March"],
        ["agent", "calls"],
        ["a-1", 12],
        ["a-2", 7],
    ]

    sheet = normalize_worksheet("a.xlsx", "Agent Wise", grid, observer=observer)

    assert sheet is not None
    assert sheet.headers == ["agent", "calls"]
    assert [row["agent"] for row in sheet.rows] == ["a-1", "a-2"]


def test_normalize_worksheet_other_sheets_use_first_row(observer: LoggingObserver) -> None:
    grid = [["Title"], ["agent", "calls"], ["a-1", 12]]

    sheet = normalize_worksheet("a.xlsx", "Team", grid, observer=observer)

    assert sheet is not None
    assert sheet.headers == ["Title", "Column 2"]
    assert len(sheet.rows) == 2


def test_normalize_worksheet_custom_rule_table(observer: LoggingObserver) -> None:
    grid = [["report"], ["generated today"], ["k", "v"], ["x", 1]]
    rules = (HeaderRule("export", 2, 3),)

    sheet = normalize_worksheet("a.xlsx", "CRM Export", grid, rules=rules, observer=observer)

    assert sheet is not None
    assert sheet.headers == ["k", "v"]
    assert sheet.rows == [{"k": "x", "v": "1"}]


@pytest.mark.parametrize("grid", [[], [["only", "headers"]]])
def test_normalize_worksheet_skips_short_sheets_with_warning(
    grid: list[list[object]], observer: LoggingObserver
) -> None:
    sheet = normalize_worksheet("a.xlsx", "Tiny", grid, observer=observer)

    assert sheet is None
    assert len(observer.warnings) == 1
    assert "Tiny" in observer.warnings[0]
    assert f"({len(grid)} rows)" in observer.warnings[0]


def test_normalize_worksheet_duplicate_headers_keep_last_cell(observer: LoggingObserver) -> None:
    grid = [["amount", "amount"], ["1", "2"]]

    sheet = normalize_worksheet("a.xlsx", "Dupes", grid, observer=observer)

    assert sheet is not None
    assert sheet.headers == ["amount", "amount"]
    assert sheet.rows == [{"amount": "2"}]


# ── Workbook decoding ────────────────────────────────────────────


def test_ingest_workbook_reads_every_sheet(
    xlsx_bytes: WorkbookFactory, observer: LoggingObserver
) -> None:
    payload = xlsx_bytes(
        {
            "Sales": [
                ["region", "amount", "when"],
                ["E", 10, datetime(2024, 1, 5)],
                [],
                ["W", 2.5, None, "late"],
                ["NA", None, None],
            ],
            "Empty": [["just a title"]],
            "Agent Wise": [["March"], ["agent", "calls"], ["a-1", 3]],
        }
    )

    sheets = ingest_workbook(payload, "book.xlsx", observer=observer)

    assert [s.sheet_name for s in sheets] == ["Sales", "Agent Wise"]
    sales = sheets[0]
    assert sales.file_name == "book.xlsx"
    assert sales.headers == ["region", "amount", "when", "Column 4"]
    assert sales.rows == [
        {"region": "E", "amount": "10", "when": "2024-01-05T00:00:00.000Z", "Column 4": None},
        {"region": "W", "amount": "2.5", "when": None, "Column 4": "late"},
        {"region": "NA", "amount": None, "when": None, "Column 4": None},
    ]
    assert sheets[1].headers == ["agent", "calls"]
    assert sheets[1].rows == [{"agent": "a-1", "calls": "3"}]
    assert any("Empty" in w for w in observer.warnings)


def test_ingest_workbook_starts_at_first_used_column(observer: LoggingObserver) -> None:
    wb = Workbook()
    ws = wb.active
    assert ws is not None
    ws.title = "Offset"
    ws["B1"] = "region"
    ws["C1"] = "amount"
    ws["B2"] = "E"
    ws["C2"] = 10
    ws["D3"] = "late"
    buffer = BytesIO()
    wb.save(buffer)

    (sheet,) = ingest_workbook(buffer.getvalue(), "offset.xlsx", observer=observer)

    assert sheet.headers == ["region", "amount", "Column 3"]
    assert sheet.rows == [
        {"region": "E", "amount": "10", "Column 3": None},
        {"region": None, "amount": None, "Column 3": "late"},
    ]


def test_ingest_workbook_malformed_bytes_raise_decode_error(observer: LoggingObserver) -> None:
    with pytest.raises(DecodeError) as excinfo:
        ingest_workbook(b"definitely not a workbook", "broken.xlsx", observer=observer)

    assert excinfo.value.file_name == "broken.xlsx"
    assert "broken.xlsx" in str(excinfo.value)


def test_ingest_workbook_wraps_decoder_failures(
    monkeypatch: pytest.MonkeyPatch, observer: LoggingObserver
) -> None:
    def _fake_read_excel(io: object, **kwargs: object) -> dict[str, pd.DataFrame]:
        del io, kwargs
        raise KeyError("xl/workbook.xml")

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    with pytest.raises(DecodeError, match="workbook.xml"):
        ingest_workbook(b"x", "odd.xlsx", observer=observer)


def test_round_trip_preserves_headers_and_row_count(
    xlsx_bytes: WorkbookFactory, observer: LoggingObserver
) -> None:
    payload = xlsx_bytes(
        {
            "Data": [
                ["name", "city", "code"],
                ["Ann", "Oslo", "x=1"],
                ["Bob", None, "-5"],
                [None, "Rome", "x"],
            ]
        }
    )
    first = ingest_workbook(payload, "in.xlsx", observer=observer)[0]

    exported = workbook_bytes(first.rows)
    second = ingest_workbook(exported, "out.xlsx", observer=observer)[0]

    assert second.sheet_name == "Sheet1"
    assert set(second.headers) == set(first.headers)
    assert len(second.rows) == len(first.rows)
    assert second.rows == first.rows


# ── Batches ──────────────────────────────────────────────────────


def test_ingest_batch_skips_bad_files_and_reports(
    xlsx_bytes: WorkbookFactory, observer: LoggingObserver
) -> None:
    good = xlsx_bytes({"S": [["a"], ["1"]], "Short": [["a"]]})
    files = [
        ("good.xlsx", good),
        ("broken.xlsx", b"garbage"),
        ("notes.csv", b"a,b\n"),
        ("again.xlsx", good),
    ]

    sheets, report = ingest_batch(files, observer=observer, on_error="skip")

    assert [s.key for s in sheets] == ["good.xlsx:S", "again.xlsx:S"]
    assert report.files_in == 4
    assert report.files_failed == 2
    assert report.sheets_out == 2
    assert len(report.errors) == 2
    assert "broken.xlsx" in report.errors[0]
    assert "notes.csv" in report.errors[1]
    assert len(report.warnings) == 2
    assert observer.warnings == report.warnings


def test_ingest_batch_abort_reraises(
    xlsx_bytes: WorkbookFactory, observer: LoggingObserver
) -> None:
    files = [("good.xlsx", xlsx_bytes({"S": [["a"], ["1"]]})), ("broken.xlsx", b"garbage")]

    with pytest.raises(DecodeError):
        ingest_batch(files, observer=observer, on_error="abort")

    with pytest.raises(UnsupportedFileError):
        ingest_batch([("x.txt", b"")], observer=observer, on_error="abort")


def test_ingest_batch_rejects_unknown_policy(observer: LoggingObserver) -> None:
    with pytest.raises(ValueError, match="on_error"):
        ingest_batch([], observer=observer, on_error="retry")  # type: ignore[arg-type]


# ── Sheet helpers ────────────────────────────────────────────────


def _sheet(file_name: str, sheet_name: str, headers: list[str]) -> Sheet:
    return Sheet(file_name=file_name, sheet_name=sheet_name, headers=headers, rows=[])


def test_list_columns_is_sorted_union() -> None:
    sheets = [_sheet("a.xlsx", "S", ["b", "a"]), _sheet("b.xlsx", "S", ["c", "a"])]

    assert list_columns(sheets) == ["a", "b", "c"]


def test_select_sheets_keeps_order_and_none_keeps_all() -> None:
    sheets = [_sheet("a.xlsx", "S1", []), _sheet("a.xlsx", "S2", []), _sheet("b.xlsx", "S1", [])]

    assert select_sheets(sheets, None) == sheets
    assert select_sheets(sheets, ["b.xlsx:S1", "a.xlsx:S1"]) == [sheets[0], sheets[2]]
    assert select_sheets(sheets, []) == []
