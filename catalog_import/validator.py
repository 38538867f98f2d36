"""
Schema validation for normalized rows.

Two entry points:
    validate_record(row)  -> CatalogRecord, raises ValidationError on failure
    validate_batch(rows)  -> BatchValidationResult, never raises for row problems

Field errors are reported against canonical (camelCase) field names. A
semesterId/semesterLevel disagreement is always reported on semesterId.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import pydantic

from catalog_import.errors import ValidationError
from catalog_import.records import CatalogRecord, CellValue, RawRow

logger = logging.getLogger(__name__)

LONG_NAME_WARNING_LENGTH = 100

FIELD_LABELS = {
    "id": "Subject ID",
    "name": "Subject name",
    "shortName": "Short name",
    "code": "Subject code",
    "creditHours": "Credit hours",
    "color": "Color",
    "departmentId": "Department ID",
    "semesterLevel": "Semester level",
    "semesterId": "Semester ID",
    "isCore": "isCore",
    "isMajor": "isMajor",
    "teachingDepartmentIds": "Teaching department IDs",
}

_ALIASES = {
    name: (info.alias or name) for name, info in CatalogRecord.model_fields.items()
}


@dataclass
class FieldError:
    field: str
    message: str
    value: CellValue = None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "message": self.message, "value": self.value}


@dataclass
class RowWarning:
    row_index: int
    field: str
    message: str
    details: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_index + 1,
            "field": self.field,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class ValidRow:
    row_index: int
    record: CatalogRecord
    original: RawRow


@dataclass
class InvalidRow:
    row_index: int
    errors: list[FieldError]
    original: RawRow

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_index + 1,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class ValidationSummary:
    total_rows: int
    valid_rows: int
    invalid_rows: int
    rows_with_warnings: int = 0
    field_error_counts: dict[str, int] = field(default_factory=dict)

    @property
    def validation_rate(self) -> float:
        if not self.total_rows:
            return 0.0
        return round(self.valid_rows / self.total_rows * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "rows_with_warnings": self.rows_with_warnings,
            "validation_rate": self.validation_rate,
            "field_error_counts": dict(self.field_error_counts),
        }


@dataclass
class BatchValidationResult:
    valid_rows: list[ValidRow]
    invalid_rows: list[InvalidRow]
    warnings: list[RowWarning]
    summary: ValidationSummary

    @property
    def records(self) -> list[CatalogRecord]:
        return [row.record for row in self.valid_rows]

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "invalid_rows": [row.to_dict() for row in self.invalid_rows],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


# ══════════════════════════════════════════════════════════════════════════════
# ERROR TRANSLATION
# ══════════════════════════════════════════════════════════════════════════════

def _field_name(loc: tuple[Any, ...]) -> str:
    if not loc:
        return "unknown"
    head = str(loc[0])
    return _ALIASES.get(head, head)


def _friendly_message(field_name: str, error: dict[str, Any]) -> str:
    kind = error.get("type", "")
    ctx = error.get("ctx") or {}
    label = FIELD_LABELS.get(field_name, field_name)

    if kind in {"missing", "blank_string"}:
        if field_name == "color":
            return "Color is required"
        return f"{label} is required and cannot be empty"
    if kind == "string_too_long":
        return f"{label} cannot exceed {ctx.get('max_length')} characters"
    if kind == "string_type":
        return f"{label} must be text"
    if kind in {"int_parsing", "int_from_float", "int_type"}:
        return f"{label} must be a whole number"
    if field_name == "semesterLevel" and kind in {"greater_than_equal", "less_than_equal"}:
        return "Semester level must be between 1 and 8"
    if kind == "greater_than_equal":
        return f"{label} must be at least {ctx.get('ge')}"
    if kind == "less_than_equal":
        return f"{label} cannot exceed {ctx.get('le')}"
    if kind in {"bool_type", "bool_parsing"}:
        return f"{label} must be a boolean value (true/false)"
    if kind in {"list_type"}:
        return f"{label} must be a list of department IDs"
    return str(error.get("msg", "Unknown validation error"))


def _field_errors(exc: pydantic.ValidationError, row: RawRow) -> list[FieldError]:
    errors: list[FieldError] = []
    for error in exc.errors():
        name = _field_name(tuple(error.get("loc", ())))
        errors.append(FieldError(name, _friendly_message(name, error), row.get(name)))
    return errors


# ══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ══════════════════════════════════════════════════════════════════════════════

def check_record(row: RawRow) -> tuple[Optional[CatalogRecord], list[FieldError]]:
    """Validate one row and return (record, []) or (None, every field error)."""
    try:
        return CatalogRecord.model_validate(row), []
    except pydantic.ValidationError as exc:
        return None, _field_errors(exc, row)


def validate_record(row: RawRow) -> CatalogRecord:
    """Strict variant: raises ValidationError carrying the row's field errors."""
    record, errors = check_record(row)
    if record is None:
        raise ValidationError(errors)
    return record


def row_warnings(row_index: int, row: RawRow) -> list[RowWarning]:
    warnings: list[RowWarning] = []
    name = row.get("name")
    if isinstance(name, str) and len(name) > LONG_NAME_WARNING_LENGTH:
        warnings.append(
            RowWarning(
                row_index,
                "name",
                "Subject name is very long",
                f"Name exceeds {LONG_NAME_WARNING_LENGTH} characters ({len(name)} chars)",
            )
        )
    return warnings


def validate_batch(rows: Iterable[RawRow]) -> BatchValidationResult:
    """
    Validate every row. Invalid rows are collected with all of their field
    errors; the rest of the batch is unaffected.
    """
    valid: list[ValidRow] = []
    invalid: list[InvalidRow] = []
    warnings: list[RowWarning] = []
    total = 0

    for index, row in enumerate(rows):
        total += 1
        warnings.extend(row_warnings(index, row))
        record, errors = check_record(row)
        if record is None:
            invalid.append(InvalidRow(index, errors, row))
            logger.debug("Row %d invalid: %s", index + 1, [e.field for e in errors])
        else:
            valid.append(ValidRow(index, record, row))

    summary = ValidationSummary(
        total_rows=total,
        valid_rows=len(valid),
        invalid_rows=len(invalid),
        rows_with_warnings=len({warning.row_index for warning in warnings}),
        field_error_counts=get_field_error_counts(invalid),
    )
    logger.info(
        "Validated %d rows: %d valid, %d invalid, %d with warnings",
        summary.total_rows,
        summary.valid_rows,
        summary.invalid_rows,
        summary.rows_with_warnings,
    )
    return BatchValidationResult(valid, invalid, warnings, summary)


# ══════════════════════════════════════════════════════════════════════════════
# REPORT HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def get_error_summary(invalid_rows: list[InvalidRow]) -> list[str]:
    """['Row 3: code: Subject code is required and cannot be empty', ...]"""
    lines = []
    for row in invalid_rows:
        messages = ", ".join(f"{error.field}: {error.message}" for error in row.errors)
        lines.append(f"Row {row.row_index + 1}: {messages}")
    return lines


def get_field_error_counts(invalid_rows: list[InvalidRow]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for row in invalid_rows:
        for error in row.errors:
            counts[error.field] = counts.get(error.field, 0) + 1
    return counts


def filter_rows_by_error_field(invalid_rows: list[InvalidRow], field_name: str) -> list[InvalidRow]:
    return [row for row in invalid_rows if any(error.field == field_name for error in row.errors)]
