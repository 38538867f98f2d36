from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from catalog_import import __version__ as TOOL_VERSION
from catalog_import.config import ImportConfig, load_config, starter_config_text
from catalog_import.conflicts import format_conflict_report
from catalog_import.context import RunContext
from catalog_import.errors import (
    ConfigError,
    EmptyDatasetError,
    FileAccessError,
    FormatError,
    ImportCancelled,
    PersistenceError,
)
from catalog_import.executor import format_import_results, outcomes_frame
from catalog_import.loader import FileSource
from catalog_import.pipeline import ImportReport, preview, run_import, validate_file
from catalog_import.resolution import parse_strategy
from catalog_import.store import CatalogStore, open_store
from catalog_import.validator import get_error_summary


EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_FILE_FAILED = 2
EXIT_ROW_ISSUES = 3
EXIT_COMMIT_FAILED = 4
EXIT_CANCELLED = 5

OUTPUT_STAMP_ENV = "CATALOG_IMPORT_OUTPUT_STAMP"
OUTCOME_FORMATS = {".csv", ".xlsx"}
MAX_CONFLICTS_IN_TEXT = 20

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class CatalogImportArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def timestamp_token() -> str:
    override = os.environ.get(OUTPUT_STAMP_ENV)
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "catalog-import-output" / f"{input_path.stem}-{timestamp_token()}"


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "generated_at":
                result[key] = "1970-01-01T00:00:00Z"
            else:
                result[key] = remove_generated_at(item)
        return result
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ConfigError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (FileAccessError, FormatError, EmptyDatasetError, ImportError)):
        return EXIT_FILE_FAILED
    if isinstance(exc, PersistenceError):
        return EXIT_COMMIT_FAILED
    if isinstance(exc, ImportCancelled):
        return EXIT_CANCELLED
    return EXIT_COMMAND_ERROR


# ══════════════════════════════════════════════════════════════════════════════
# ARGUMENT → CONFIG
# ══════════════════════════════════════════════════════════════════════════════

def parse_pairs(values: list[str] | None, flag: str) -> list[tuple[str, str]]:
    pairs = []
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip() or not value.strip():
            raise CliError(f"{flag} expects KEY=VALUE, got '{item}'", EXIT_COMMAND_ERROR)
        pairs.append((key.strip(), value.strip()))
    return pairs


def parse_row_number(text: str, flag: str) -> int:
    try:
        row = int(text)
    except ValueError:
        raise CliError(f"{flag} expects a 1-based row number, got '{text}'", EXIT_COMMAND_ERROR)
    if row < 1:
        raise CliError(f"{flag} expects a 1-based row number, got '{text}'", EXIT_COMMAND_ERROR)
    return row - 1


def parse_row_tags(values: list[str] | None) -> dict[int, str]:
    # Unknown tags are kept: the resolution step skips those rows and reports them.
    return {parse_row_number(row, "--resolve"): tag for row, tag in parse_pairs(values, "--resolve")}


def build_config(args: argparse.Namespace) -> ImportConfig:
    config = load_config(args.config) if getattr(args, "config", None) else ImportConfig()
    overrides: dict[str, Any] = {}

    header_map = parse_pairs(getattr(args, "header_map", None), "--header-map")
    if header_map:
        overrides["header_mapping"] = {**config.header_mapping, **dict(header_map)}
    if getattr(args, "id_strategy", None):
        overrides["duplicate_id_strategy"] = args.id_strategy
    if getattr(args, "code_strategy", None):
        overrides["duplicate_code_strategy"] = args.code_strategy
    if getattr(args, "apply_to_all", False):
        overrides["apply_to_all"] = True
    if getattr(args, "semester", None):
        overrides["default_semester_id"] = args.semester
    if getattr(args, "department", None):
        overrides["default_department_id"] = args.department
    if getattr(args, "allow_large", False):
        overrides["row_limit_policy"] = "warn"
    if getattr(args, "timeout", None) is not None:
        overrides["timeout_seconds"] = args.timeout
    if getattr(args, "store_url", None):
        overrides["store_url"] = args.store_url
    if getattr(args, "store_file", None):
        overrides["store_path"] = args.store_file

    if not overrides:
        return config
    return ImportConfig.from_dict({**config.to_dict(), **overrides})


def resolve_store(config: ImportConfig) -> CatalogStore:
    url = config.resolved_store_url() if not config.store_path else config.store_url
    store = open_store(url=url, path=config.store_path, timeout=config.timeout_seconds)
    if store is None:
        raise CliError(
            "No catalog store configured. Use --store-url, --store-file or set CATALOG_IMPORT_STORE_URL.",
            EXIT_COMMAND_ERROR,
        )
    return store


def input_source(args: argparse.Namespace) -> FileSource:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_FILE_FAILED)
    return FileSource.from_path(input_path, args.media_type)


# ══════════════════════════════════════════════════════════════════════════════
# HUMAN RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_validation_lines(report: ImportReport, *, verbose: bool) -> list[str]:
    parse = report.parse
    summary = report.validation.summary
    lines = [
        f"File: {report.source}",
        f"Format: {parse.format}",
        f"Rows: {parse.total_rows}",
        f"Valid: {summary.valid_rows}",
        f"Invalid: {summary.invalid_rows}",
        f"Validation rate: {summary.validation_rate}%",
    ]
    if summary.field_error_counts:
        lines.append("Errors by field:")
        lines.extend(f"- {name}: {count}" for name, count in sorted(summary.field_error_counts.items()))
    invalid = report.validation.invalid_rows
    if invalid:
        shown = invalid if verbose else invalid[:MAX_CONFLICTS_IN_TEXT]
        lines.append("Invalid rows:")
        lines.extend(f"- {line}" for line in get_error_summary(shown))
        if len(shown) < len(invalid):
            lines.append(f"- ... {len(invalid) - len(shown)} more (use -v to list all)")
    return lines


def render_conflict_lines(report: ImportReport, *, verbose: bool) -> list[str]:
    conflicts = report.conflicts
    if conflicts is None:
        return []
    summary = conflicts.summary
    lines = [
        f"Existing records: {report.snapshot_size}",
        f"Conflicting rows: {conflicts.conflicting_rows}",
        f"- id conflicts: {summary.id_conflicts}",
        f"- code conflicts: {summary.code_conflicts}",
        f"- both: {summary.both_conflicts}",
    ]
    conflicting = [item for item in conflicts.reports if item.has_conflict]
    shown = conflicting if verbose else conflicting[:MAX_CONFLICTS_IN_TEXT]
    lines.extend(format_conflict_report(item) for item in shown)
    if len(shown) < len(conflicting):
        lines.append(f"... {len(conflicting) - len(shown)} more conflicting rows (use -v to list all)")
    if report.plan is not None:
        plan = report.plan.to_dict()
        lines.append(
            f"Plan: overwrite {plan['to_overwrite']}, keep both {plan['to_keep_both']}, skip {plan['to_skip']}"
        )
    return lines


def render_report_text(report: ImportReport, *, verbose: bool = False) -> str:
    lines = [f"catalog-import {report.command}"]
    lines.extend(render_validation_lines(report, verbose=verbose))
    lines.extend(render_conflict_lines(report, verbose=verbose))
    if report.result is not None:
        lines.append(format_import_results(report.result))
    if report.warnings:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in report.warnings)
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════════
# OUTPUTS
# ══════════════════════════════════════════════════════════════════════════════

def write_outcomes(report: ImportReport, target: str, input_path: Path) -> Path:
    if report.result is None:
        raise CliError("--outcomes is only available for import runs", EXIT_COMMAND_ERROR)
    path = Path(target) if target else default_output_dir(input_path) / "outcomes.csv"
    suffix = path.suffix.lower()
    if suffix not in OUTCOME_FORMATS:
        raise CliError(f"Outcome export must be .csv or .xlsx, got '{suffix or '[missing extension]'}'", EXIT_COMMAND_ERROR)
    path = safe_output_path(path)
    ensure_parent(path)
    frame = outcomes_frame(report.result)
    if suffix == ".xlsx":
        frame.to_excel(path, index=False, sheet_name="Outcomes", engine="openpyxl")
    else:
        frame.to_csv(path, index=False)
    return path


def finish(report: ImportReport, args: argparse.Namespace) -> None:
    payload = remove_generated_at(report.to_dict())
    if args.output:
        output_path = safe_output_path(Path(args.output))
        write_json(output_path, payload)
        emit_human(f"Report written: {output_path}", quiet=args.quiet)
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(render_report_text(report, verbose=args.verbose).rstrip(), quiet=args.quiet)


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def run_validate(args: argparse.Namespace) -> int:
    try:
        source = input_source(args)
        config = build_config(args)
        context = RunContext(config.timeout_seconds)
        report = validate_file(source, config, context=context)
        finish(report, args)
        return EXIT_ROW_ISSUES if report.validation.invalid_rows else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_preview(args: argparse.Namespace) -> int:
    try:
        source = input_source(args)
        config = build_config(args)
        store = resolve_store(config)
        context = RunContext(config.timeout_seconds)
        report = preview(source, store, config, row_tags=parse_row_tags(args.resolve), context=context)
        finish(report, args)
        return EXIT_ROW_ISSUES if report.has_row_issues else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_import_command(args: argparse.Namespace) -> int:
    try:
        source = input_source(args)
        config = build_config(args)
        store = resolve_store(config)
        context = RunContext(config.timeout_seconds)
        excluded = [parse_row_number(item, "--exclude") for item in args.exclude or []]
        report = run_import(
            source,
            store,
            config,
            row_tags=parse_row_tags(args.resolve),
            excluded_rows=excluded,
            context=context,
        )
        finish(report, args)
        if args.outcomes is not None:
            outcomes_path = write_outcomes(report, args.outcomes, Path(args.input))
            emit_human(f"Outcomes written: {outcomes_path}", quiet=args.quiet)
        return EXIT_SUCCESS if report.committed else EXIT_COMMIT_FAILED
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_text(config_path, starter_config_text())
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def _strategy(value: str) -> str:
    strategy = parse_strategy(value)
    if strategy is None:
        raise argparse.ArgumentTypeError(f"unknown strategy '{value}'")
    return strategy.value


def add_common_arguments(command: argparse.ArgumentParser, *, needs_store: bool) -> None:
    command.add_argument("input", help="Input file path (.csv, .xlsx, .xls, .json)")
    command.add_argument("--config", help="JSON config path")
    command.add_argument("--media-type", dest="media_type", help="Declared media type, checked before the extension")
    command.add_argument("--header-map", dest="header_map", action="append", metavar="HEADER=FIELD", help="Map a raw header to a field (repeatable)")
    command.add_argument("--semester", help="Default semester id (sem1..sem8) for rows without one")
    command.add_argument("--department", help="Default department id for rows without one")
    command.add_argument("--allow-large", dest="allow_large", action="store_true", help="Warn instead of rejecting files over the hard row limit")
    command.add_argument("--timeout", type=float, help="Seconds allowed for reading, fetching and saving")
    command.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    command.add_argument("--output", help="Write the JSON report to this path")
    command.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    command.add_argument("-v", "--verbose", action="store_true", help="More human logs")
    if needs_store:
        store = command.add_mutually_exclusive_group()
        store.add_argument("--store-url", dest="store_url", help="Catalog store URL (GET all / POST replace-all)")
        store.add_argument("--store-file", dest="store_file", help="Catalog store JSON file")
        command.add_argument("--id-strategy", dest="id_strategy", type=_strategy, help="Strategy for rows with an id conflict")
        command.add_argument("--code-strategy", dest="code_strategy", type=_strategy, help="Strategy for rows with only a code conflict")
        command.add_argument("--apply-to-all", dest="apply_to_all", action="store_true", help="Apply the axis strategies to every conflicting row")
        command.add_argument("--resolve", action="append", metavar="ROW=STRATEGY", help="Per-row strategy, 1-based data row (repeatable)")


def build_parser() -> argparse.ArgumentParser:
    parser = CatalogImportArgumentParser(prog="catalog-import", description="Bulk course catalog import.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Parse, normalize and validate a file.")
    add_common_arguments(validate, needs_store=False)

    preview_cmd = subparsers.add_parser("preview", help="Validate and check conflicts against the store without saving.")
    add_common_arguments(preview_cmd, needs_store=True)

    import_cmd = subparsers.add_parser("import", help="Run a full import and commit it.")
    add_common_arguments(import_cmd, needs_store=True)
    import_cmd.add_argument("--exclude", action="append", metavar="ROW", help="Leave a 1-based data row out of the import (repeatable)")
    import_cmd.add_argument("--outcomes", nargs="?", const="", default=None, help="Export row outcomes (.csv or .xlsx)")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default="catalog-import.json", help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "validate":
            return run_validate(args)
        if args.command == "preview":
            return run_preview(args)
        if args.command == "import":
            return run_import_command(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
