"""QC report persistence."""

from __future__ import annotations

from pathlib import Path

from sheet_rollup.io import write_json
from sheet_rollup.models import BatchReport


def write_qc_report(out_dir: Path, report: BatchReport) -> Path:
    """Write ``qc_report.json`` into *out_dir* and return the path."""
    return write_json(out_dir / "qc_report.json", report.to_dict())
