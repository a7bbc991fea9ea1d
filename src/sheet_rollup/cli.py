"""CLI entry point for sheet-rollup."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table as RichTable

from sheet_rollup import DEFAULT_EXPORT_TITLE, __version__
from sheet_rollup.errors import SheetRollupError
from sheet_rollup.ingest import (
    DEFAULT_HEADER_RULES,
    HeaderRule,
    ingest_batch,
    list_columns,
    parse_header_rule,
    select_sheets,
)
from sheet_rollup.io import load_payload, write_json
from sheet_rollup.models import (
    Aggregation,
    BatchReport,
    ColumnMapping,
    GroupingConfig,
    Record,
    RunManifest,
    Sheet,
)
from sheet_rollup.observer import LoggingObserver, setup_logging
from sheet_rollup.pipeline import extract_columns, group_rows, validate_headers
from sheet_rollup.qc import write_qc_report
from sheet_rollup.report import write_export
from sheet_rollup.utils import sha256_bytes, utcnow_iso

app = typer.Typer(
    name="srollup",
    help="sheet-rollup — Merge spreadsheets, remap columns, and roll them up.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()


class OnErrorOption(str, Enum):
    skip = "skip"
    abort = "abort"


class _RunFailed(Exception):
    def __init__(
        self, message: str, *, report: BatchReport | None = None, code: int = 2
    ) -> None:
        super().__init__(message)
        self.report = report
        self.code = code


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"sheet-rollup v{__version__}")
        raise typer.Exit()


def _parse_mapping(item: str, *, required: bool) -> ColumnMapping:
    """Parse ``target=source`` into a :class:`ColumnMapping`."""
    if "=" not in item:
        raise ValueError(f"Invalid mapping: {item!r}  (expected target=source)")
    target, source = item.split("=", 1)
    target, source = target.strip(), source.strip()
    if not target or not source:
        raise ValueError("Mappings must have non-empty target and source (target=source)")
    return ColumnMapping(source_column=source, target_column=target, required=required)


def _load_profile_map(profile: Path | None) -> list[str]:
    """Return mapping lines from a profile file; ``*`` prefixes a required mapping."""
    if not profile:
        return []
    if not profile.exists():
        raise ValueError(f"Profile not found: {profile} (expected lines like amount=Amount)")
    if profile.is_dir():
        raise ValueError(f"Profile is a directory, not a file: {profile}")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read profile {profile}: {exc}") from exc

    lines: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        lines.append(stripped)
    return lines


def _build_mappings(
    profile: Path | None, col_map: list[str] | None, required_map: list[str] | None
) -> list[ColumnMapping]:
    mappings: list[ColumnMapping] = []
    for line in _load_profile_map(profile):
        if line.startswith("*"):
            mappings.append(_parse_mapping(line[1:], required=True))
        else:
            mappings.append(_parse_mapping(line, required=False))
    mappings.extend(_parse_mapping(item, required=False) for item in col_map or [])
    mappings.extend(_parse_mapping(item, required=True) for item in required_map or [])
    if not mappings:
        raise ValueError("No column mappings given. Use --map target=source or --profile.")
    return mappings


def _parse_aggregation(item: str) -> Aggregation:
    """Parse ``column:operation`` into an :class:`Aggregation`."""
    column, sep, operation = item.rpartition(":")
    if not sep or not column.strip() or not operation.strip():
        raise ValueError(f"Invalid aggregation: {item!r}  (expected column:operation)")
    return Aggregation(column=column.strip(), operation=operation)


def _header_rules(raw: list[str] | None) -> tuple[HeaderRule, ...]:
    if not raw:
        return DEFAULT_HEADER_RULES
    return tuple(parse_header_rule(item) for item in raw)


def _read_inputs(paths: Sequence[Path]) -> list[tuple[str, bytes]]:
    return [(path.name, load_payload(path)) for path in paths]


def _input_entries(files: Sequence[tuple[str, bytes]]) -> list[dict[str, str]]:
    return [{"file_name": name, "sha256": sha256_bytes(payload)} for name, payload in files]


def _write_manifest(
    out_dir: Path,
    files: Sequence[tuple[str, bytes]],
    run_id: str,
    created_at: str,
    *,
    output_paths: Sequence[Path] = (),
    rows_out: int = 0,
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
) -> Path:
    manifest = RunManifest(
        version=__version__,
        run_id=run_id,
        inputs=_input_entries(files),
        output_paths=[str(path.resolve()) for path in output_paths],
        created_at_utc=created_at,
        rows_out=rows_out,
        status=status,
        error_code=error_code,
        error_message=error_message,
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _write_failure_artifacts(
    out_dir: Path,
    files: Sequence[tuple[str, bytes]],
    run_id: str,
    created_at: str,
    *,
    message: str,
    report: BatchReport | None = None,
    error_code: int = 2,
) -> tuple[Path, Path]:
    report = report or BatchReport(files_in=len(files))
    if message not in report.errors:
        report.errors.append(message)
    qc_path = write_qc_report(out_dir, report)
    manifest_path = _write_manifest(
        out_dir,
        files,
        run_id,
        created_at,
        status="failed",
        error_code=error_code,
        error_message=message,
    )
    return qc_path, manifest_path


def _fail(
    out_dir: Path,
    files: Sequence[tuple[str, bytes]],
    run_id: str,
    created_at: str,
    *,
    message: str,
    report: BatchReport | None = None,
    error_code: int = 2,
) -> typer.Exit:
    qc_path, manifest_path = _write_failure_artifacts(
        out_dir,
        files,
        run_id,
        created_at,
        message=message,
        report=report,
        error_code=error_code,
    )
    _err(message)
    console.print(f"  QC report -> {qc_path}")
    console.print(f"  Manifest  -> {manifest_path}")
    return typer.Exit(code=error_code)


def _ingest(
    files: Sequence[tuple[str, bytes]],
    *,
    rules: Sequence[HeaderRule],
    on_error: OnErrorOption,
    sheet_keys: list[str] | None,
) -> tuple[list[Sheet], BatchReport]:
    observer = LoggingObserver()
    sheets, report = ingest_batch(
        files, rules=rules, observer=observer, on_error=on_error.value
    )
    sheets = select_sheets(sheets, sheet_keys or None)
    report.sheets_out = len(sheets)
    if not sheets:
        raise _RunFailed("No sheets with data to process.", report=report)
    return sheets, report


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """sheet-rollup CLI."""


# ── run command ──────────────────────────────────────────────────


@app.command()
def run(
    inputs: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Workbook to ingest (.xlsx, .xls, .xlsb). Repeat for a batch.",
        exists=True, readable=True,
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for the export + QC + manifest.",
    ),
    col_map: list[str] | None = typer.Option(
        None, "--map", "-m",
        help="Optional column mapping: target=source. E.g. --map amount=Amount",
    ),
    required_map: list[str] | None = typer.Option(
        None, "--require", "-r",
        help="Required column mapping: target=source; empty source values abort the run.",
    ),
    profile: Path | None = typer.Option(
        None, "--profile",
        help="Profile file of target=source lines; prefix a line with * to require it.",
    ),
    group_by: list[str] | None = typer.Option(
        None, "--group-by", "-g",
        help="Target column to group by. Repeat for a compound key.",
    ),
    aggregations: list[str] | None = typer.Option(
        None, "--agg", "-a",
        help="Aggregation column:operation (sum, average, count, min, max).",
    ),
    header_rules: list[str] | None = typer.Option(
        None, "--header-rule",
        help="pattern:header_row:data_start (0-based); replaces the default 'agent wise' rule.",
    ),
    sheet_keys: list[str] | None = typer.Option(
        None, "--sheet",
        help="Only process file:sheet. Repeatable; default is every sheet.",
    ),
    title: str = typer.Option(
        DEFAULT_EXPORT_TITLE, "--title", "-t",
        help="Export title; files are named {title}_extracted_… and {title}_grouped_….",
    ),
    on_error: OnErrorOption = typer.Option(
        OnErrorOption.skip, "--on-error",
        help="What to do when a file cannot be decoded: skip it or abort the batch.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose",
        help="Log every sheet as it is processed.",
    ),
) -> None:
    """Ingest workbooks, remap columns, group, and export the result."""
    echo = _printer(quiet)
    setup_logging(quiet=quiet, verbose=verbose, console=console)
    created_at = utcnow_iso()
    run_id = created_at
    out_dir.mkdir(parents=True, exist_ok=True)
    files: list[tuple[str, bytes]] = []
    report: BatchReport | None = None

    try:
        mappings = _build_mappings(profile, col_map, required_map)
        config = GroupingConfig(
            group_by=list(group_by or []),
            aggregations=[_parse_aggregation(item) for item in aggregations or []],
        )
        rules = _header_rules(header_rules)
        files = _read_inputs(inputs)
    except (ValueError, OSError) as exc:
        raise _fail(out_dir, files, run_id, created_at, message=str(exc))

    if not quiet:
        console.print(Panel(
            f"[bold]sheet-rollup[/bold] v{__version__}\n"
            f"Inputs: {', '.join(name for name, _ in files)}\nOutput: {out_dir}",
            title="Pipeline Start", border_style="blue",
        ))
        console.print(f"  Mappings: {len(mappings)} ({sum(m.required for m in mappings)} required)")
        if not config.is_empty:
            console.print(
                f"  Group by: {', '.join(config.group_by) or '(all rows)'}; "
                f"aggregations: {', '.join(a.output_column for a in config.aggregations) or 'none'}"
            )

    try:
        # ── Ingest ───────────────────────────────────────────────
        echo("[blue]>[/blue] Reading workbooks …")
        sheets, report = _ingest(
            files, rules=rules, on_error=on_error, sheet_keys=sheet_keys
        )
        echo(f"  {len(sheets)} sheet(s) from {report.files_in - report.files_failed} file(s)")

        # ── Extract ──────────────────────────────────────────────
        echo("[blue]>[/blue] Extracting columns …")
        extracted = extract_columns(sheets, mappings)
        report.rows_extracted = len(extracted)
        echo(f"  {len(extracted)} rows extracted")

        # ── Group ────────────────────────────────────────────────
        grouped: list[Record] | None = None
        if not config.is_empty:
            echo("[blue]>[/blue] Grouping …")
            grouped = group_rows(extracted, config)
            report.groups_out = len(grouped)
            echo(f"  {len(grouped)} groups")

        # ── Export ───────────────────────────────────────────────
        echo("[blue]>[/blue] Writing export …")
        export_paths = [write_export(out_dir, extracted, f"{title}_extracted")]
        if grouped is not None:
            export_paths.append(write_export(out_dir, grouped, f"{title}_grouped"))
        for export_path in export_paths:
            echo(f"  Export   -> {export_path}")

        result: list[Record] = extracted if grouped is None else grouped
        qc_path = write_qc_report(out_dir, report)
        echo(f"  QC report -> {qc_path}")
        manifest_path = _write_manifest(
            out_dir, files, run_id, created_at,
            output_paths=export_paths, rows_out=len(result),
        )
        echo(f"  Manifest -> {manifest_path}")

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {len(extracted)} rows extracted"
                + (f", {len(grouped)} groups" if grouped is not None else "")
                + f" -> {out_dir}",
                title="Pipeline Complete", border_style="green",
            ))
    except _RunFailed as exc:
        raise _fail(
            out_dir, files, run_id, created_at,
            message=str(exc), report=exc.report or report, error_code=exc.code,
        )
    except SheetRollupError as exc:
        raise _fail(out_dir, files, run_id, created_at, message=str(exc), report=report)
    except Exception as exc:
        raise _fail(
            out_dir, files, run_id, created_at,
            message=f"Unexpected internal error: {exc}", report=report, error_code=1,
        )


# ── validate command ─────────────────────────────────────────────


@app.command()
def validate(
    inputs: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Workbook to check. Repeat for a batch.",
        exists=True, readable=True,
    ),
    expected: list[str] = typer.Option(
        ..., "--expect", "-e",
        help="Column every sheet must carry. Repeatable.",
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for QC + manifest.",
    ),
    header_rules: list[str] | None = typer.Option(
        None, "--header-rule",
        help="pattern:header_row:data_start (0-based); replaces the default 'agent wise' rule.",
    ),
    sheet_keys: list[str] | None = typer.Option(
        None, "--sheet",
        help="Only check file:sheet. Repeatable.",
    ),
    on_error: OnErrorOption = typer.Option(
        OnErrorOption.skip, "--on-error",
        help="What to do when a file cannot be decoded: skip it or abort.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes QC + manifest.",
    ),
) -> None:
    """Check that every sheet carries the expected columns.

    Writes qc_report.json + run_manifest.json only.
    Exit 0 = OK, exit 2 = missing columns.
    """
    setup_logging(quiet=quiet, console=console)
    created_at = utcnow_iso()
    run_id = created_at
    out_dir.mkdir(parents=True, exist_ok=True)
    files: list[tuple[str, bytes]] = []
    report: BatchReport | None = None

    try:
        rules = _header_rules(header_rules)
        files = _read_inputs(inputs)
    except (ValueError, OSError) as exc:
        raise _fail(out_dir, files, run_id, created_at, message=str(exc))

    if not quiet:
        console.print(Panel(
            f"[bold]sheet-rollup[/bold] v{__version__}  [dim]validate mode[/dim]\n"
            f"Inputs: {', '.join(name for name, _ in files)}",
            title="Validate", border_style="cyan",
        ))

    try:
        sheets, report = _ingest(
            files, rules=rules, on_error=on_error, sheet_keys=sheet_keys
        )
        result = validate_headers(sheets, expected)
        report.errors.extend(result.errors)
        qc_path = write_qc_report(out_dir, report)
        manifest_path = _write_manifest(
            out_dir, files, run_id, created_at,
            status="success" if result.is_valid else "failed",
            error_code=None if result.is_valid else 2,
            error_message="; ".join(result.errors),
        )
    except _RunFailed as exc:
        raise _fail(
            out_dir, files, run_id, created_at,
            message=str(exc), report=exc.report or report, error_code=exc.code,
        )
    except SheetRollupError as exc:
        raise _fail(out_dir, files, run_id, created_at, message=str(exc), report=report)
    except Exception as exc:
        raise _fail(
            out_dir, files, run_id, created_at,
            message=f"Unexpected internal error: {exc}", report=report, error_code=1,
        )

    # ── Summary table ────────────────────────────────────────────
    if not quiet:
        tbl = RichTable(title="Validation Summary", show_lines=True)
        tbl.add_column("Sheet", style="bold")
        tbl.add_column("Result")
        for sheet in sheets:
            missing = [col for col in expected if col not in sheet.headers]
            tbl.add_row(
                f"{sheet.file_name} / {sheet.sheet_name}",
                f"[red]FAIL[/red] missing {', '.join(missing)}" if missing else "[green]PASS[/green]",
            )
        for warning in report.warnings:
            tbl.add_row("Warning", f"[yellow]{warning}[/yellow]")
        tbl.add_row("Status", "[green]PASS[/green]" if result.is_valid else "[red]FAIL[/red]")
        console.print(tbl)
    console.print(f"  QC       -> {qc_path}")
    console.print(f"  Manifest -> {manifest_path}")

    if not result.is_valid:
        for error in result.errors:
            _err(error)
        console.print(f"  Expected: {', '.join(expected)}")
        raise typer.Exit(code=2)


# ── inspect command ──────────────────────────────────────────────


@app.command()
def inspect(
    inputs: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Workbook to inspect. Repeatable.",
        exists=True, readable=True,
    ),
    header_rules: list[str] | None = typer.Option(
        None, "--header-rule",
        help="pattern:header_row:data_start (0-based); replaces the default 'agent wise' rule.",
    ),
) -> None:
    """List sheets, their sizes, and every column available for mapping."""
    setup_logging(quiet=True, console=console)
    try:
        rules = _header_rules(header_rules)
        files = _read_inputs(inputs)
        sheets, report = ingest_batch(files, rules=rules, observer=LoggingObserver())
    except (ValueError, OSError) as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    tbl = RichTable(title="Sheets", show_lines=False)
    tbl.add_column("Key", style="bold")
    tbl.add_column("Columns", justify="right")
    tbl.add_column("Rows", justify="right")
    for sheet in sheets:
        tbl.add_row(sheet.key, str(len(sheet.headers)), str(len(sheet.rows)))
    console.print(tbl)
    console.print(f"  Columns: {', '.join(list_columns(sheets)) or 'none'}")
    for error in report.errors:
        _err(error)
    if report.files_failed:
        raise typer.Exit(code=2)
