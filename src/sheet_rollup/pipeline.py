"""Extraction, grouping and validation — pure functions, no side effects."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from sheet_rollup.errors import MissingRequiredColumnError
from sheet_rollup.models import (
    AggregateOp,
    ColumnMapping,
    GroupingConfig,
    Record,
    Sheet,
    ValidationResult,
)

# ── Extraction ───────────────────────────────────────────────────


def extract_columns(sheets: Sequence[Sheet], mappings: Sequence[ColumnMapping]) -> list[Record]:
    """Project every row of every sheet through *mappings*.

    Rows keep sheet-then-row order. When two mappings share a target the
    later one wins. A required mapping whose source value is missing, null or
    ``""`` raises :class:`MissingRequiredColumnError` and nothing is returned.
    """
    extracted: list[Record] = []
    for sheet in sheets:
        for row in sheet.rows:
            out: Record = {}
            for mapping in mappings:
                value = row.get(mapping.source_column)
                if mapping.required and (value is None or value == ""):
                    raise MissingRequiredColumnError(
                        sheet.file_name, sheet.sheet_name, mapping.source_column
                    )
                out[mapping.target_column] = value
            extracted.append(out)
    return extracted


# ── Aggregation ──────────────────────────────────────────────────


def to_number(value: Any) -> float:
    """Parse *value* as a float; anything unparsable or non-finite counts as ``0``.

    Python spellings that spreadsheets never produce (``"1_000"``, ``"inf"``)
    are not numbers here.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if "_" in text:
            return 0.0
        try:
            number = float(text or 0)
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def _sum(values: list[Any]) -> float:
    return float(sum(to_number(v) for v in values))


def _average(values: list[Any]) -> float:
    return _sum(values) / len(values) if values else 0.0


def _count(values: list[Any]) -> int:
    return len(values)


def _min(values: list[Any]) -> float:
    return min(to_number(v) for v in values) if values else 0.0


def _max(values: list[Any]) -> float:
    return max(to_number(v) for v in values) if values else 0.0


AGGREGATORS: dict[AggregateOp, Callable[[list[Any]], float | int]] = {
    AggregateOp.SUM: _sum,
    AggregateOp.AVERAGE: _average,
    AggregateOp.COUNT: _count,
    AggregateOp.MIN: _min,
    AggregateOp.MAX: _max,
}

_uncovered = set(AggregateOp) - set(AGGREGATORS)
if _uncovered:
    raise RuntimeError(f"No aggregator for: {sorted(op.value for op in _uncovered)}")


def group_rows(rows: Iterable[Record], config: GroupingConfig) -> list[Record]:
    """Group *rows* by ``config.group_by`` and compute each aggregation per group.

    Groups come out in first-seen order. The key is the tuple of group-by
    values, so values containing any delimiter never collide. An empty
    ``group_by`` folds every row into a single group.
    """
    groups: dict[tuple[Any, ...], list[Record]] = {}
    for row in rows:
        key = tuple(row.get(col) for col in config.group_by)
        groups.setdefault(key, []).append(row)

    results: list[Record] = []
    for key, members in groups.items():
        record: Record = dict(zip(config.group_by, key))
        for agg in config.aggregations:
            values = [row[agg.column] for row in members if row.get(agg.column) is not None]
            record[agg.output_column] = AGGREGATORS[agg.operation](values)
        results.append(record)
    return results


# ── Validation ───────────────────────────────────────────────────


def validate_headers(sheets: Iterable[Sheet], expected_columns: Iterable[str]) -> ValidationResult:
    """Check every sheet carries all of *expected_columns*."""
    expected = list(dict.fromkeys(expected_columns))
    errors: list[str] = []
    for sheet in sheets:
        present = set(sheet.headers)
        missing = [col for col in expected if col not in present]
        if missing:
            errors.append(
                f"File {sheet.file_name}, Sheet {sheet.sheet_name}: "
                f"Missing columns: {', '.join(missing)}"
            )
    return ValidationResult(is_valid=not errors, errors=errors)
