"""Typed failures raised by the ingestion, extraction and export steps."""

from __future__ import annotations


class SheetRollupError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class UnsupportedFileError(SheetRollupError, ValueError):
    """The file was rejected at the boundary, before any decoding."""


class DecodeError(SheetRollupError, ValueError):
    """A workbook payload could not be decoded."""

    def __init__(self, file_name: str, reason: str) -> None:
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Could not decode {file_name}: {reason}")


class MissingRequiredColumnError(SheetRollupError):
    """A required mapping found a null, missing or empty source value."""

    def __init__(self, file_name: str, sheet_name: str, column: str) -> None:
        self.file_name = file_name
        self.sheet_name = sheet_name
        self.column = column
        super().__init__(
            f"Required column '{column}' is missing or empty in {file_name} (sheet '{sheet_name}')"
        )


class EmptyDatasetError(SheetRollupError, ValueError):
    """Export was asked to write a dataset with no records."""


class InsufficientDataWarning(UserWarning):
    """A worksheet had fewer than two rows and was dropped.

    Reported through the pipeline observer, never raised.
    """

    def __init__(self, file_name: str, sheet_name: str, row_count: int) -> None:
        self.file_name = file_name
        self.sheet_name = sheet_name
        self.row_count = row_count
        super().__init__(
            f'Sheet "{sheet_name}" in {file_name} has insufficient data ({row_count} rows)'
        )
