"""Data models shared across the package."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from numbers import Integral
from typing import Any

Scalar = str | None
Row = dict[str, Scalar]
Record = dict[str, Any]


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_list(values: Sequence[Any] | None, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return normalized


def _to_non_blank_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} must not be blank")
    return value


# ── Sheets ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Sheet:
    """One worksheet, normalized to string headers and string-or-null cells.

    Every row's key set is ``set(headers)``; rows keep their original order.
    """

    file_name: str
    sheet_name: str
    headers: list[str] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _to_string_list(self.headers, "headers"))

    @property
    def key(self) -> str:
        return f"{self.file_name}:{self.sheet_name}"


# ── Mapping / grouping config ────────────────────────────────────


@dataclass(frozen=True)
class ColumnMapping:
    """Project ``source_column`` onto ``target_column``."""

    source_column: str
    target_column: str
    required: bool = False

    def __post_init__(self) -> None:
        _to_non_blank_str(self.source_column, "source_column")
        _to_non_blank_str(self.target_column, "target_column")


class AggregateOp(str, Enum):
    SUM = "sum"
    AVERAGE = "average"
    COUNT = "count"
    MIN = "min"
    MAX = "max"

    @property
    def suffix(self) -> str:
        return "avg" if self is AggregateOp.AVERAGE else self.value


@dataclass(frozen=True)
class Aggregation:
    column: str
    operation: AggregateOp

    def __post_init__(self) -> None:
        _to_non_blank_str(self.column, "column")
        if isinstance(self.operation, AggregateOp):
            return
        try:
            op = AggregateOp(str(self.operation).strip().lower())
        except ValueError as exc:
            choices = ", ".join(member.value for member in AggregateOp)
            raise ValueError(
                f"Unknown aggregation {self.operation!r}. Use one of: {choices}"
            ) from exc
        object.__setattr__(self, "operation", op)

    @property
    def output_column(self) -> str:
        return f"{self.column}_{self.operation.suffix}"


@dataclass(frozen=True)
class GroupingConfig:
    group_by: list[str] = field(default_factory=list)
    aggregations: list[Aggregation] = field(default_factory=list)

    def __post_init__(self) -> None:
        object.__setattr__(self, "group_by", _to_string_list(self.group_by, "group_by"))
        object.__setattr__(self, "aggregations", list(self.aggregations))

    @property
    def is_empty(self) -> bool:
        return not self.group_by and not self.aggregations


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


# ── Run artifacts ────────────────────────────────────────────────


@dataclass
class BatchReport:
    """Quality-control report for one batch run.

    Contract invariant: ``files_failed <= files_in``.
    """

    files_in: int = 0
    files_failed: int = 0
    sheets_out: int = 0
    rows_extracted: int = 0
    groups_out: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.files_in = _to_non_negative_int(self.files_in, "files_in")
        self.files_failed = _to_non_negative_int(self.files_failed, "files_failed")
        self.sheets_out = _to_non_negative_int(self.sheets_out, "sheets_out")
        self.rows_extracted = _to_non_negative_int(self.rows_extracted, "rows_extracted")
        self.groups_out = _to_non_negative_int(self.groups_out, "groups_out")
        self.warnings = _to_string_list(self.warnings, "warnings")
        self.errors = _to_string_list(self.errors, "errors")
        if self.files_failed > self.files_in:
            raise ValueError("files_failed must be <= files_in")

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_in": self.files_in,
            "files_failed": self.files_failed,
            "sheets_out": self.sheets_out,
            "rows_extracted": self.rows_extracted,
            "groups_out": self.groups_out,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


@dataclass
class RunManifest:
    """Audit-trail manifest for a single CLI run."""

    tool: str = "sheet-rollup"
    version: str = ""
    run_id: str = ""
    inputs: list[dict[str, str]] = field(default_factory=list)
    output_paths: list[str] = field(default_factory=list)
    created_at_utc: str = ""
    rows_out: int = 0
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""

    def __post_init__(self) -> None:
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")
        if self.status not in {"success", "failed"}:
            raise ValueError("status must be 'success' or 'failed'")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "run_id": self.run_id,
            "inputs": [dict(item) for item in self.inputs],
            "output_paths": list(self.output_paths),
            "created_at_utc": self.created_at_utc,
            "rows_out": self.rows_out,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
