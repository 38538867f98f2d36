"""
executor.py — Apply row decisions to a working copy of the catalog and commit it

One snapshot in, one replace-all write out. Outcomes are computed in memory
first; if the write fails nothing is counted as processed and every row is
reported failed (skips stay skips).
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

import pandas as pd

from catalog_import.context import RunContext, ensure_context
from catalog_import.errors import PersistenceError
from catalog_import.identifiers import IdentifierGenerator
from catalog_import.records import CatalogRecord, dedupe_preserving_order, normalize_key
from catalog_import.resolution import DECISION_KEEP_BOTH, DECISION_OVERWRITE, DECISION_SKIP, ResolutionPlan
from catalog_import.store import CatalogStore, StoreRecord

logger = logging.getLogger(__name__)

STATUS_IMPORTED = "imported"
STATUS_UPDATED = "updated"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

REASON_EXCLUDED = "Excluded from import by user selection"
REASON_SKIPPED = "Skipped due to conflict resolution choice"
REASON_OVERWROTE_BY_ID = "Overwrote existing subject with matching ID"
REASON_UPDATED_BY_CODE = "Updated existing subject with matching code"
REASON_ID_ALREADY_MODIFIED = "Subject with this ID was already modified in this import"
REASON_CODE_ALREADY_MODIFIED = "Subject with this code was already modified in this import"
REASON_ADDED = "Added as new subject (no conflicts)"
REASON_ADDED_KEEP_BOTH = "Added as new subject"
REASON_ADDED_WITH_NEW_ID = "Added as new subject with generated ID to avoid conflicts"


@dataclass
class ImportRow:
    row_index: int
    record: CatalogRecord
    decision: str = DECISION_OVERWRITE
    include: bool = True
    reason: Optional[str] = None


@dataclass
class RowOutcome:
    row_index: int
    status: str
    reason: str
    record: CatalogRecord
    record_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_index + 1,
            "status": self.status,
            "reason": self.reason,
            "id": self.record_id,
            "code": self.record.code,
            "name": self.record.name,
        }


@dataclass
class ImportCounts:
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    total_records: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "total_records": self.total_records,
        }


@dataclass
class ImportResult:
    success: bool
    total_rows: int
    processed_rows: int
    outcomes: list[RowOutcome]
    counts: ImportCounts
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "counts": self.counts.to_dict(),
            "errors": list(self.errors),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def import_rows_from_plan(plan: ResolutionPlan, excluded_rows: Iterable[int] = ()) -> list[ImportRow]:
    """Build executor input from a resolution plan; ``excluded_rows`` are 0-based."""
    excluded = set(excluded_rows)
    return [
        ImportRow(
            row_index=item.row_index,
            record=item.report.record,
            decision=item.decision,
            include=item.row_index not in excluded,
            reason=item.reason,
        )
        for item in plan.decisions
    ]


# ══════════════════════════════════════════════════════════════════════════════
# MERGE
# ══════════════════════════════════════════════════════════════════════════════

def merge_record(record: CatalogRecord, existing: Optional[StoreRecord] = None) -> StoreRecord:
    """
    New values win. Against an existing slot, isMajor is kept when the row
    did not supply it and teachingDepartmentIds become the ordered union.
    Unknown keys already on the stored record are carried over.
    """
    incoming = record.to_store_dict()
    if existing is None:
        incoming["teachingDepartmentIds"] = dedupe_preserving_order(incoming["teachingDepartmentIds"])
        return incoming

    merged = copy.deepcopy(existing)
    merged.update(incoming)
    if "isMajor" not in record.supplied_fields and "isMajor" in existing:
        merged["isMajor"] = existing["isMajor"]

    old_departments = existing.get("teachingDepartmentIds") or []
    if not isinstance(old_departments, list):
        old_departments = [old_departments]
    combined = list(old_departments) + list(incoming["teachingDepartmentIds"])
    if combined:
        merged["teachingDepartmentIds"] = dedupe_preserving_order(combined)
    return merged


def _first_index(records: Sequence[StoreRecord], attr: str) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, item in enumerate(records):
        key = normalize_key(item.get(attr))
        if key:
            index.setdefault(key, position)
    return index


# ══════════════════════════════════════════════════════════════════════════════
# EXECUTION
# ══════════════════════════════════════════════════════════════════════════════

def apply_rows(
    rows: Sequence[ImportRow],
    snapshot: Sequence[StoreRecord],
    id_generator: Optional[IdentifierGenerator] = None,
) -> tuple[list[StoreRecord], list[RowOutcome]]:
    """Pure part of an import: the new catalog and one outcome per row."""
    id_generator = id_generator or IdentifierGenerator()
    working = copy.deepcopy(list(snapshot))
    by_id = _first_index(working, "id")
    by_code = _first_index(working, "code")
    modified: set[int] = set()
    outcomes: list[RowOutcome] = []

    for row in rows:
        record = row.record

        if not row.include:
            outcomes.append(RowOutcome(row.row_index, STATUS_SKIPPED, REASON_EXCLUDED, record))
            continue

        if row.decision == DECISION_SKIP:
            outcomes.append(RowOutcome(row.row_index, STATUS_SKIPPED, row.reason or REASON_SKIPPED, record))
            continue

        id_slot = by_id.get(normalize_key(record.id))
        code_slot = by_code.get(normalize_key(record.code))

        if row.decision == DECISION_OVERWRITE:
            if id_slot is not None:
                if id_slot in modified:
                    outcomes.append(RowOutcome(row.row_index, STATUS_FAILED, REASON_ID_ALREADY_MODIFIED, record))
                    continue
                working[id_slot] = merge_record(record, working[id_slot])
                modified.add(id_slot)
                outcomes.append(
                    RowOutcome(row.row_index, STATUS_UPDATED, REASON_OVERWROTE_BY_ID, record, working[id_slot]["id"])
                )
            elif code_slot is not None:
                if code_slot in modified:
                    outcomes.append(RowOutcome(row.row_index, STATUS_FAILED, REASON_CODE_ALREADY_MODIFIED, record))
                    continue
                original_id = working[code_slot].get("id")
                merged = merge_record(record, working[code_slot])
                merged["id"] = original_id
                working[code_slot] = merged
                modified.add(code_slot)
                outcomes.append(
                    RowOutcome(row.row_index, STATUS_UPDATED, REASON_UPDATED_BY_CODE, record, original_id)
                )
            else:
                merged = merge_record(record)
                working.append(merged)
                outcomes.append(RowOutcome(row.row_index, STATUS_IMPORTED, REASON_ADDED, record, merged["id"]))

        elif row.decision == DECISION_KEEP_BOTH:
            merged = merge_record(record)
            if id_slot is not None or code_slot is not None:
                merged["id"] = id_generator.generate()
                reason = REASON_ADDED_WITH_NEW_ID
                if code_slot is not None:
                    reason += f"; code '{record.code}' is now shared with an existing subject"
            else:
                reason = REASON_ADDED_KEEP_BOTH
            working.append(merged)
            outcomes.append(RowOutcome(row.row_index, STATUS_IMPORTED, reason, record, merged["id"]))

        else:
            outcomes.append(
                RowOutcome(row.row_index, STATUS_SKIPPED, f"Unknown decision '{row.decision}'; row skipped", record)
            )
            continue

        logger.debug("Row %d: %s", row.row_index + 1, outcomes[-1].reason)

    return working, outcomes


def _count(outcomes: Sequence[RowOutcome], status: str) -> int:
    return sum(1 for outcome in outcomes if outcome.status == status)


def execute_import(
    rows: Sequence[ImportRow],
    store: CatalogStore,
    *,
    snapshot: Optional[Sequence[StoreRecord]] = None,
    context: Optional[RunContext] = None,
    id_generator: Optional[IdentifierGenerator] = None,
) -> ImportResult:
    """
    Apply ``rows`` and commit the whole catalog with one replace-all call.

    Pass the snapshot used for conflict detection to avoid fetching twice.
    A failed commit is reported in the result, not raised. Fetch failures
    and cancellation still raise.
    """
    context = ensure_context(context)
    if snapshot is None:
        snapshot = store.fetch_all(context)

    final_records, outcomes = apply_rows(rows, snapshot, id_generator)

    try:
        store.replace_all(final_records, context)
    except PersistenceError as exc:
        logger.error("Commit failed, nothing was imported: %s", exc.message)
        return ImportResult(
            success=False,
            total_rows=len(rows),
            processed_rows=0,
            outcomes=outcomes,
            counts=ImportCounts(
                imported=0,
                updated=0,
                skipped=_count(outcomes, STATUS_SKIPPED),
                failed=len(outcomes),
                total_records=len(snapshot),
            ),
            errors=[exc.message],
        )

    counts = ImportCounts(
        imported=_count(outcomes, STATUS_IMPORTED),
        updated=_count(outcomes, STATUS_UPDATED),
        skipped=_count(outcomes, STATUS_SKIPPED),
        failed=_count(outcomes, STATUS_FAILED),
        total_records=len(final_records),
    )
    logger.info(
        "Committed %d records: %d imported, %d updated, %d skipped, %d failed",
        counts.total_records,
        counts.imported,
        counts.updated,
        counts.skipped,
        counts.failed,
    )
    return ImportResult(
        success=True,
        total_rows=len(rows),
        processed_rows=counts.imported + counts.updated,
        outcomes=outcomes,
        counts=counts,
    )


# ══════════════════════════════════════════════════════════════════════════════
# REPORTING
# ══════════════════════════════════════════════════════════════════════════════

def format_import_results(result: ImportResult) -> str:
    if not result.success:
        return f"Import failed: {', '.join(result.errors)}"

    counts = result.counts
    lines = [
        "Import completed successfully!",
        f"Total processed: {result.processed_rows}/{result.total_rows} rows",
        f"- Imported: {counts.imported} new subjects",
        f"- Updated: {counts.updated} existing subjects",
        f"- Skipped: {counts.skipped} subjects",
        f"- Failed: {counts.failed} subjects",
        f"Total subjects in database: {counts.total_records}",
    ]
    if result.errors:
        lines.append(f"Warnings: {', '.join(result.errors)}")
    return "\n".join(lines)


OUTCOME_COLUMNS = ["row", "status", "reason", "id", "code", "name"]


def outcomes_frame(result: ImportResult) -> pd.DataFrame:
    return pd.DataFrame([outcome.to_dict() for outcome in result.outcomes], columns=OUTCOME_COLUMNS)
