"""
Header alias resolution.

Raw header spellings are mapped to canonical field names with this
priority: caller mapping, built-in alias table, then pass-through. Headers
that match nothing are kept under their own (trimmed) name so unexpected
columns stay visible in reports.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

from catalog_import.records import CellValue, RawRow


HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "subject_id", "subjectId", "subject-id"),
    "name": ("name", "subject_name", "subjectName", "subject-name", "title"),
    "shortName": ("short_name", "shortName", "short-name", "abbreviation", "abbr"),
    "code": ("code", "subject_code", "subjectCode", "subject-code", "course_code", "courseCode"),
    "creditHours": ("credit_hours", "creditHours", "credit-hours", "credits", "hours", "ch"),
    "color": ("color", "subject_color", "subjectColor", "hex_color", "hexColor"),
    "departmentId": ("department_id", "departmentId", "department-id", "dept_id", "deptId"),
    "semesterLevel": ("semester_level", "semesterLevel", "semester-level", "level", "sem_level"),
    "semesterId": ("semester_id", "semesterId", "semester-id", "semester", "sem_id", "semId"),
    "isCore": ("is_core", "isCore", "is-core", "core", "is_required", "isRequired", "required"),
    "isMajor": ("is_major", "isMajor", "is-major", "major"),
    "teachingDepartmentIds": (
        "teaching_department_ids",
        "teachingDepartmentIds",
        "teaching-department-ids",
        "teaching_departments",
        "teaching_depts",
        "teachingDepts",
    ),
    "description": ("description", "desc", "details"),
    "notes": ("notes", "note", "comments", "comment"),
    "status": ("status", "state", "active", "enabled"),
}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_UNDERSCORE_RUN_RE = re.compile(r"_+")


def normalize_header_name(header: str) -> str:
    """'Credit Hours ' -> 'credit_hours', 'semester-ID' -> 'semester_id'."""
    lowered = _NON_ALNUM_RE.sub("_", header.strip().lower())
    return _UNDERSCORE_RUN_RE.sub("_", lowered).strip("_")


def _alias_lookup() -> dict[str, str]:
    # Matching is done on lowercase and normalized spellings, so
    # 'subjectName', 'SUBJECT NAME' and 'subject-name' all resolve.
    lookup: dict[str, str] = {}
    for canonical, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            lookup.setdefault(alias.lower(), canonical)
            lookup.setdefault(normalize_header_name(alias), canonical)
    return lookup


_ALIAS_LOOKUP = _alias_lookup()


def resolve_header(raw_header: str, custom_mapping: Optional[Mapping[str, str]] = None) -> str:
    trimmed = raw_header.strip()
    normalized = normalize_header_name(trimmed)

    if custom_mapping:
        if trimmed in custom_mapping:
            return custom_mapping[trimmed]
        if normalized in custom_mapping:
            return custom_mapping[normalized]

    return _ALIAS_LOOKUP.get(trimmed.lower()) or _ALIAS_LOOKUP.get(normalized) or trimmed


def build_header_mapping(
    raw_headers: list[str],
    custom_mapping: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Return {trimmed raw header: canonical field name} in header order."""
    mapping: dict[str, str] = {}
    for raw in raw_headers:
        trimmed = str(raw).strip()
        if not trimmed or trimmed in mapping:
            continue
        mapping[trimmed] = resolve_header(trimmed, custom_mapping)
    return mapping


def find_header_collisions(header_mapping: Mapping[str, str]) -> dict[str, list[str]]:
    """Return {canonical field: [raw headers]} for fields fed by more than one column."""
    sources: dict[str, list[str]] = {}
    for raw, canonical in header_mapping.items():
        sources.setdefault(canonical, []).append(raw)
    return {canonical: raws for canonical, raws in sources.items() if len(raws) > 1}


def _is_empty(value: CellValue) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def apply_header_mapping(
    raw_row: Mapping[str, CellValue],
    header_mapping: Mapping[str, str],
    *,
    trim_values: bool = True,
) -> RawRow:
    """
    Rename a raw row's keys to canonical names.

    String values are trimmed when requested and empty cells are dropped,
    so a missing field and a blank cell look the same downstream.
    """
    row: RawRow = {}
    for raw_key, value in raw_row.items():
        key = str(raw_key).strip()
        canonical = header_mapping.get(key, key)
        if trim_values and isinstance(value, str):
            value = value.strip()
        if _is_empty(value):
            continue
        row[canonical] = value
    return row
