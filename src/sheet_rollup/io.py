"""I/O helpers — accept input files, read workbook frames, write artifacts."""

from __future__ import annotations

import json
from datetime import date, datetime
from io import BytesIO
from pathlib import Path, PurePath
from typing import Any, Callable, cast

import pandas as pd

from sheet_rollup import ACCEPTED_EXTENSIONS, ACCEPTED_MIME_TYPES
from sheet_rollup.errors import UnsupportedFileError

_ENGINES: dict[str, str] = {
    ".xlsx": "openpyxl",
    ".xls": "xlrd",
    ".xlsb": "pyxlsb",
}

# ── Acceptance ───────────────────────────────────────────────────


def is_accepted_file(name: str, mime_type: str | None = None) -> bool:
    """Return True when *name* has a workbook extension or *mime_type* is a workbook type."""
    if mime_type and mime_type in ACCEPTED_MIME_TYPES:
        return True
    return PurePath(name).suffix.lower() in ACCEPTED_EXTENSIONS


def engine_for(file_name: str) -> str:
    """Return the pandas Excel engine used to decode *file_name*."""
    suffix = PurePath(file_name).suffix.lower()
    try:
        return _ENGINES[suffix]
    except KeyError:
        accepted = ", ".join(ACCEPTED_EXTENSIONS)
        raise UnsupportedFileError(
            f"Unsupported file type: {suffix!r}. Use {accepted}"
        ) from None


# ── Loading ──────────────────────────────────────────────────────


def load_payload(path: Path) -> bytes:
    """Read the raw bytes of a workbook at *path*.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    UnsupportedFileError
        If *path* is a directory or its extension is not accepted.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.is_dir():
        raise UnsupportedFileError(f"Input path is a directory, not a file: {path}")
    if not is_accepted_file(path.name):
        accepted = ", ".join(ACCEPTED_EXTENSIONS)
        raise UnsupportedFileError(
            f"Unsupported file type: {path.suffix.lower()!r}. Use {accepted}"
        )
    return path.read_bytes()


def read_workbook_frames(payload: bytes, file_name: str) -> dict[str, pd.DataFrame]:
    """Decode every worksheet of *payload* into a header-less object DataFrame.

    Only empty cells become NaN; literal strings such as ``"NA"`` are kept.
    """
    engine = engine_for(file_name)
    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    try:
        frames = read_excel(
            BytesIO(payload),
            sheet_name=None,
            header=None,
            dtype=object,
            engine=engine,
            keep_default_na=False,
            na_values=[""],
        )
    except ImportError as exc:
        raise UnsupportedFileError(
            f"Reading {PurePath(file_name).suffix.lower()} files needs the {engine!r} "
            f"package: pip install {engine}"
        ) from exc
    return {str(name): frame for name, frame in frames.items()}


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path


def write_bytes(path: Path, payload: bytes) -> Path:
    """Write *payload* to *path* through a temp file in the same directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.stem}.tmp{path.suffix}")
    try:
        tmp_path.write_bytes(payload)
        tmp_path.replace(path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path
