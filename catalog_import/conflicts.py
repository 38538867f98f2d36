"""
conflicts.py — Duplicate detection on the identity key (id) and business key (code)

Both keys are compared trimmed and lowercased, within the incoming batch
and against one snapshot of the existing catalog. Stored values keep their
original casing; the normalized form is only ever used as a lookup key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from catalog_import.records import CatalogRecord, normalize_key

logger = logging.getLogger(__name__)


class ConflictType(str, Enum):
    NONE = "none"
    DUPLICATE_ID = "duplicateId"
    DUPLICATE_CODE = "duplicateCode"
    BOTH = "both"


class ResolutionStrategy(str, Enum):
    OVERWRITE = "overwrite"
    SKIP = "skip"
    RENAME = "rename"
    USER_DECISION = "userDecision"
    KEEP_BOTH = "keep_both"


RECOMMENDED_RESOLUTION = {
    ConflictType.NONE: ResolutionStrategy.OVERWRITE,
    ConflictType.DUPLICATE_ID: ResolutionStrategy.OVERWRITE,
    ConflictType.DUPLICATE_CODE: ResolutionStrategy.SKIP,
    ConflictType.BOTH: ResolutionStrategy.USER_DECISION,
}



def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class ConflictReference:
    """The identifying fields of an existing record that collides with a row."""

    id: str
    code: str
    name: str
    department_id: str
    semester_id: str

    @classmethod
    def from_store(cls, record: Mapping[str, Any]) -> "ConflictReference":
        return cls(
            id=_text(record.get("id")),
            code=_text(record.get("code")),
            name=_text(record.get("name")),
            department_id=_text(record.get("departmentId")),
            semester_id=_text(record.get("semesterId")),
        )

    def label(self) -> str:
        return f"{self.name} ({self.code})"

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "departmentId": self.department_id,
            "semesterId": self.semester_id,
        }


@dataclass
class ConflictReport:
    row_index: int
    record: CatalogRecord
    conflict_type: ConflictType
    has_id_conflict: bool
    has_code_conflict: bool
    existing_by_id: list[ConflictReference] = field(default_factory=list)
    existing_by_code: list[ConflictReference] = field(default_factory=list)
    intra_file_id_conflicts: list[int] = field(default_factory=list)
    intra_file_code_conflicts: list[int] = field(default_factory=list)

    @property
    def recommended_resolution(self) -> ResolutionStrategy:
        return RECOMMENDED_RESOLUTION[self.conflict_type]

    @property
    def has_conflict(self) -> bool:
        return self.conflict_type is not ConflictType.NONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_index + 1,
            "id": self.record.id,
            "code": self.record.code,
            "name": self.record.name,
            "conflict_type": self.conflict_type.value,
            "has_id_conflict": self.has_id_conflict,
            "has_code_conflict": self.has_code_conflict,
            "existing_by_id": [ref.to_dict() for ref in self.existing_by_id],
            "existing_by_code": [ref.to_dict() for ref in self.existing_by_code],
            "intra_file_id_rows": [i + 1 for i in self.intra_file_id_conflicts],
            "intra_file_code_rows": [i + 1 for i in self.intra_file_code_conflicts],
            "recommended_resolution": self.recommended_resolution.value,
        }


@dataclass
class ConflictSummary:
    id_conflicts: int = 0
    code_conflicts: int = 0
    both_conflicts: int = 0
    intra_file_id_duplicates: int = 0
    intra_file_code_duplicates: int = 0
    existing_data_id_conflicts: int = 0
    existing_data_code_conflicts: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "id_conflicts": self.id_conflicts,
            "code_conflicts": self.code_conflicts,
            "both_conflicts": self.both_conflicts,
            "intra_file_id_duplicates": self.intra_file_id_duplicates,
            "intra_file_code_duplicates": self.intra_file_code_duplicates,
            "existing_data_id_conflicts": self.existing_data_id_conflicts,
            "existing_data_code_conflicts": self.existing_data_code_conflicts,
        }


@dataclass
class ConflictDetectionResult:
    reports: list[ConflictReport]
    summary: ConflictSummary

    @property
    def total_rows(self) -> int:
        return len(self.reports)

    @property
    def conflicting_rows(self) -> int:
        return sum(1 for report in self.reports if report.has_conflict)

    @property
    def conflict_free_rows(self) -> int:
        return self.total_rows - self.conflicting_rows

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "conflicting_rows": self.conflicting_rows,
            "conflict_free_rows": self.conflict_free_rows,
            "summary": self.summary.to_dict(),
            "reports": [report.to_dict() for report in self.reports if report.has_conflict],
        }


# ══════════════════════════════════════════════════════════════════════════════
# DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def classify(has_id_conflict: bool, has_code_conflict: bool) -> ConflictType:
    if has_id_conflict and has_code_conflict:
        return ConflictType.BOTH
    if has_id_conflict:
        return ConflictType.DUPLICATE_ID
    if has_code_conflict:
        return ConflictType.DUPLICATE_CODE
    return ConflictType.NONE


def _intra_batch_duplicates(keys: Sequence[str], row_indices: Sequence[int]) -> dict[str, list[int]]:
    groups: dict[str, list[int]] = {}
    for key, row_index in zip(keys, row_indices):
        if not key:
            continue
        groups.setdefault(key, []).append(row_index)
    return {key: indices for key, indices in groups.items() if len(indices) > 1}


def _existing_index(snapshot: Sequence[Mapping[str, Any]], attr: str) -> dict[str, list[ConflictReference]]:
    index: dict[str, list[ConflictReference]] = {}
    for existing in snapshot:
        key = normalize_key(existing.get(attr))
        if not key:
            continue
        index.setdefault(key, []).append(ConflictReference.from_store(existing))
    return index


def detect_conflicts(
    records: Sequence[CatalogRecord],
    existing: Sequence[Mapping[str, Any]],
    row_indices: Optional[Sequence[int]] = None,
) -> ConflictDetectionResult:
    """
    Classify every record against the rest of the batch and the existing snapshot.

    ``row_indices`` carries the source-row position of each record (records
    that failed validation leave gaps); it defaults to list positions.
    """
    if row_indices is None:
        row_indices = list(range(len(records)))
    if len(row_indices) != len(records):
        raise ValueError("row_indices must have one entry per record")

    ids = [normalize_key(record.id) for record in records]
    codes = [normalize_key(record.code) for record in records]

    intra_ids = _intra_batch_duplicates(ids, row_indices)
    intra_codes = _intra_batch_duplicates(codes, row_indices)
    existing_ids = _existing_index(existing, "id")
    existing_codes = _existing_index(existing, "code")

    reports: list[ConflictReport] = []
    for record, row_index, id_key, code_key in zip(records, row_indices, ids, codes):
        by_id = list(existing_ids.get(id_key, [])) if id_key else []
        by_code = list(existing_codes.get(code_key, [])) if code_key else []
        has_id = id_key in intra_ids or bool(by_id)
        has_code = code_key in intra_codes or bool(by_code)

        reports.append(
            ConflictReport(
                row_index=row_index,
                record=record,
                conflict_type=classify(has_id, has_code),
                has_id_conflict=has_id,
                has_code_conflict=has_code,
                existing_by_id=by_id,
                existing_by_code=by_code,
                intra_file_id_conflicts=[i for i in intra_ids.get(id_key, []) if i != row_index],
                intra_file_code_conflicts=[i for i in intra_codes.get(code_key, []) if i != row_index],
            )
        )

    summary = ConflictSummary(
        id_conflicts=sum(1 for r in reports if r.has_id_conflict),
        code_conflicts=sum(1 for r in reports if r.has_code_conflict),
        both_conflicts=sum(1 for r in reports if r.conflict_type is ConflictType.BOTH),
        intra_file_id_duplicates=sum(len(indices) for indices in intra_ids.values()),
        intra_file_code_duplicates=sum(len(indices) for indices in intra_codes.values()),
        existing_data_id_conflicts=sum(1 for r in reports if r.existing_by_id),
        existing_data_code_conflicts=sum(1 for r in reports if r.existing_by_code),
    )
    result = ConflictDetectionResult(reports, summary)
    logger.info(
        "Conflict detection: %d rows, %d conflicting (%d id, %d code, %d both)",
        result.total_rows,
        result.conflicting_rows,
        summary.id_conflicts,
        summary.code_conflicts,
        summary.both_conflicts,
    )
    return result


# ══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def format_conflict_report(report: ConflictReport) -> str:
    lines = [f"Row {report.row_index + 1}: {report.record.name} ({report.record.code})"]

    if not report.has_conflict:
        lines.append("  ✓ No conflicts detected")
        return "\n".join(lines)

    if report.has_id_conflict:
        if report.intra_file_id_conflicts:
            rows = ", ".join(str(i + 1) for i in report.intra_file_id_conflicts)
            lines.append(f"  ⚠ Duplicate ID within file (rows: {rows})")
        if report.existing_by_id:
            existing = ", ".join(ref.label() for ref in report.existing_by_id)
            lines.append(f"  ⚠ ID conflicts with existing: {existing}")

    if report.has_code_conflict:
        if report.intra_file_code_conflicts:
            rows = ", ".join(str(i + 1) for i in report.intra_file_code_conflicts)
            lines.append(f"  ⚠ Duplicate code within file (rows: {rows})")
        if report.existing_by_code:
            existing = ", ".join(ref.label() for ref in report.existing_by_code)
            lines.append(f"  ⚠ Code conflicts with existing: {existing}")

    lines.append(f"  → Recommended action: {report.recommended_resolution.value}")
    return "\n".join(lines)
