from __future__ import annotations

from collections.abc import Callable
from io import BytesIO
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook

WorkbookFactory = Callable[[dict[str, list[list[Any]]]], bytes]


def build_xlsx(sheets: dict[str, list[list[Any]]]) -> bytes:
    """Return xlsx bytes with one worksheet per entry, rows appended in order."""
    wb = Workbook()
    default = wb.active
    if default is not None:
        wb.remove(default)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def xlsx_bytes() -> WorkbookFactory:
    return build_xlsx


@pytest.fixture
def write_xlsx(tmp_path: Path) -> Callable[[str, dict[str, list[list[Any]]]], Path]:
    def _write(name: str, sheets: dict[str, list[list[Any]]]) -> Path:
        path = tmp_path / name
        path.write_bytes(build_xlsx(sheets))
        return path

    return _write
