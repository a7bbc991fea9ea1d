"""sheet-rollup — Merge batches of spreadsheets, remap columns, and roll them up."""

__version__ = "0.2.0"

ACCEPTED_EXTENSIONS: tuple[str, ...] = (".xlsx", ".xls", ".xlsb")

ACCEPTED_MIME_TYPES: dict[str, str] = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.ms-excel.sheet.binary.macroEnabled.12": ".xlsb",
}

DEFAULT_EXPORT_TITLE = "rollup"
