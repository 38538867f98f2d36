"""
pipeline.py — End-to-end import runs

    validate_file(source, config)          parse -> normalize -> validate
    preview(source, store, config)         ... -> conflicts -> resolution (no write)
    run_import(source, store, config)      ... -> executor -> one replace-all write

The store snapshot is fetched once per run and shared by conflict detection
and the executor. Fatal conditions raise ImportPipelineError subclasses;
everything row-level ends up in the returned ImportReport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from catalog_import.config import ImportConfig
from catalog_import.conflicts import ConflictDetectionResult, detect_conflicts
from catalog_import.context import RunContext, ensure_context
from catalog_import.errors import EmptyDatasetError
from catalog_import.executor import ImportResult, execute_import, import_rows_from_plan
from catalog_import.identifiers import ColorPalette, IdentifierGenerator
from catalog_import.loader import FileSource, ParseResult, enforce_row_limits, parse_source
from catalog_import.normalizer import Normalizer
from catalog_import.resolution import ResolutionPlan, ResolutionPolicy, resolve
from catalog_import.store import CatalogStore, StoreRecord
from catalog_import.validator import BatchValidationResult, validate_batch

logger = logging.getLogger(__name__)

# Bump a version when the JSON layout of that command's report changes.
REPORT_VERSIONS = {
    "validate": "1.0.0",
    "preview": "1.0.0",
    "import": "1.0.0",
}


@dataclass
class ImportReport:
    command: str
    source: str
    parse: ParseResult
    validation: BatchValidationResult
    conflicts: Optional[ConflictDetectionResult] = None
    plan: Optional[ResolutionPlan] = None
    result: Optional[ImportResult] = None
    store: Optional[str] = None
    snapshot_size: Optional[int] = None
    extra_warnings: list[str] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        messages = list(self.parse.warnings)
        messages.extend(
            f"Row {warning.row_index + 1}: {warning.field}: {warning.message}"
            for warning in self.validation.warnings
        )
        if self.plan is not None:
            messages.extend(failure.message for failure in self.plan.failures)
        messages.extend(self.extra_warnings)
        return messages

    @property
    def has_row_issues(self) -> bool:
        if self.validation.invalid_rows:
            return True
        return bool(self.conflicts and self.conflicts.conflicting_rows)

    @property
    def committed(self) -> bool:
        return self.result is not None and self.result.success

    def metrics(self) -> dict[str, Any]:
        summary = self.validation.summary
        metrics: dict[str, Any] = {
            "total_rows": self.parse.total_rows,
            "valid_rows": summary.valid_rows,
            "invalid_rows": summary.invalid_rows,
        }
        if self.conflicts is not None:
            metrics["conflicting_rows"] = self.conflicts.conflicting_rows
        if self.result is not None:
            metrics["processed_rows"] = self.result.processed_rows
        return metrics

    @property
    def status(self) -> str:
        if self.result is not None:
            return "ok" if self.result.success else "failed"
        return "issues" if self.has_row_issues else "ok"

    def contract(self) -> dict[str, str]:
        name = f"catalog_import.{self.command}"
        return {"name": name, "version": REPORT_VERSIONS[self.command]}

    def run_summary(self) -> dict[str, Any]:
        warnings = self.warnings
        return {
            "tool": "catalog-import",
            "command": self.command,
            "status": self.status,
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "input_file": self.source,
            "store": self.store,
            "warnings_count": len(warnings),
            "warnings": warnings,
            "metrics": self.metrics(),
        }

    def to_dict(self) -> dict[str, Any]:
        contract = self.contract()
        payload: dict[str, Any] = {
            "contract": contract,
            "schema_version": contract["version"],
            "run_summary": self.run_summary(),
            "parse": self.parse.to_dict(),
            "validation": self.validation.to_dict(),
        }
        if self.snapshot_size is not None:
            payload["existing_records"] = self.snapshot_size
        if self.conflicts is not None:
            payload["conflicts"] = self.conflicts.to_dict()
        if self.plan is not None:
            payload["resolution"] = self.plan.to_dict()
        if self.result is not None:
            payload["import"] = self.result.to_dict()
        return payload


@dataclass
class _Prepared:
    parse: ParseResult
    validation: BatchValidationResult
    id_generator: IdentifierGenerator


def _prepare(
    source: FileSource,
    config: ImportConfig,
    context: RunContext,
    id_generator: Optional[IdentifierGenerator],
    palette: Optional[ColorPalette],
) -> _Prepared:
    parsed = parse_source(source, config, context=context)
    enforce_row_limits(parsed, config.row_limit_policy)
    if parsed.total_rows == 0:
        raise EmptyDatasetError()

    id_generator = id_generator or IdentifierGenerator(config.id_prefix)
    normalizer = Normalizer.from_config(config, id_generator=id_generator, palette=palette)
    rows = normalizer.normalize_rows(parsed.rows)
    validation = validate_batch(rows)
    return _Prepared(parsed, validation, id_generator)


def _store_label(store: CatalogStore) -> str:
    for attr in ("url", "path"):
        value = getattr(store, attr, None)
        if value:
            return str(value)
    return type(store).__name__


def _detect_and_resolve(
    prepared: _Prepared,
    snapshot: list[StoreRecord],
    config: ImportConfig,
    row_tags: Optional[Mapping[int, str]],
) -> tuple[ConflictDetectionResult, ResolutionPlan]:
    valid_rows = prepared.validation.valid_rows
    conflicts = detect_conflicts(
        [row.record for row in valid_rows],
        snapshot,
        row_indices=[row.row_index for row in valid_rows],
    )
    plan = resolve(conflicts.reports, ResolutionPolicy.from_config(config), row_tags)
    return conflicts, plan


def validate_file(
    source: FileSource,
    config: Optional[ImportConfig] = None,
    *,
    context: Optional[RunContext] = None,
    id_generator: Optional[IdentifierGenerator] = None,
    palette: Optional[ColorPalette] = None,
) -> ImportReport:
    config = config or ImportConfig()
    context = ensure_context(context)
    prepared = _prepare(source, config, context, id_generator, palette)
    return ImportReport("validate", source.filename, prepared.parse, prepared.validation)


def preview(
    source: FileSource,
    store: CatalogStore,
    config: Optional[ImportConfig] = None,
    *,
    row_tags: Optional[Mapping[int, str]] = None,
    context: Optional[RunContext] = None,
    id_generator: Optional[IdentifierGenerator] = None,
    palette: Optional[ColorPalette] = None,
) -> ImportReport:
    """Everything up to the resolution plan; the store is read but never written."""
    config = config or ImportConfig()
    context = ensure_context(context)
    prepared = _prepare(source, config, context, id_generator, palette)
    snapshot = store.fetch_all(context)
    conflicts, plan = _detect_and_resolve(prepared, snapshot, config, row_tags)
    return ImportReport(
        "preview",
        source.filename,
        prepared.parse,
        prepared.validation,
        conflicts=conflicts,
        plan=plan,
        store=_store_label(store),
        snapshot_size=len(snapshot),
    )


def run_import(
    source: FileSource,
    store: CatalogStore,
    config: Optional[ImportConfig] = None,
    *,
    row_tags: Optional[Mapping[int, str]] = None,
    excluded_rows: Iterable[int] = (),
    context: Optional[RunContext] = None,
    id_generator: Optional[IdentifierGenerator] = None,
    palette: Optional[ColorPalette] = None,
) -> ImportReport:
    """
    Full run ending in one replace-all write.

    ``row_tags`` and ``excluded_rows`` use 0-based source row indices.
    Rows that failed validation never reach the executor.
    """
    config = config or ImportConfig()
    context = ensure_context(context)
    prepared = _prepare(source, config, context, id_generator, palette)
    snapshot = store.fetch_all(context)
    conflicts, plan = _detect_and_resolve(prepared, snapshot, config, row_tags)

    rows = import_rows_from_plan(plan, excluded_rows)
    result = execute_import(
        rows,
        store,
        snapshot=snapshot,
        context=context,
        id_generator=prepared.id_generator,
    )
    report = ImportReport(
        "import",
        source.filename,
        prepared.parse,
        prepared.validation,
        conflicts=conflicts,
        plan=plan,
        result=result,
        store=_store_label(store),
        snapshot_size=len(snapshot),
    )
    if prepared.validation.invalid_rows:
        report.extra_warnings.append(
            f"{len(prepared.validation.invalid_rows)} invalid rows were not imported"
        )
    return report
