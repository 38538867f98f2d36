from __future__ import annotations

import unittest

from catalog_import.errors import ValidationError
from catalog_import.validator import (
    filter_rows_by_error_field,
    get_error_summary,
    get_field_error_counts,
    validate_batch,
    validate_record,
)


def valid_row(**overrides):
    row = {
        "id": "sub1",
        "name": "Intro to CS",
        "shortName": "ICS",
        "code": "CS101",
        "creditHours": 3,
        "color": "bg-blue-100",
        "departmentId": "d1",
        "semesterLevel": 1,
        "semesterId": "sem1",
    }
    row.update(overrides)
    return {key: value for key, value in row.items() if value is not None}


def fields_of(exc: ValidationError) -> set[str]:
    return {error.field for error in exc.errors}


class StrictValidationTests(unittest.TestCase):
    def test_valid_row_applies_defaults(self):
        record = validate_record(valid_row())
        self.assertEqual(record.code, "CS101")
        self.assertIs(record.is_core, False)
        self.assertIs(record.is_major, True)
        self.assertEqual(record.teaching_department_ids, [])

    def test_semester_mismatch_is_reported_on_semester_id(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(semesterLevel=3, semesterId="sem1"))
        self.assertEqual(fields_of(ctx.exception), {"semesterId"})
        self.assertIn("semesterId", ctx.exception.message)

    def test_semester_id_pattern(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(semesterId="semester1"))
        self.assertIn("semesterId", fields_of(ctx.exception))

    def test_required_fields_cannot_be_missing_or_blank(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(code=None, shortName="   "))
        errors = {error.field: error.message for error in ctx.exception.errors}
        self.assertEqual(errors["code"], "Subject code is required and cannot be empty")
        self.assertEqual(errors["shortName"], "Short name is required and cannot be empty")

    def test_length_limits(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(name="n" * 201, shortName="s" * 51, code="c" * 21))
        errors = {error.field: error.message for error in ctx.exception.errors}
        self.assertEqual(errors["name"], "Subject name cannot exceed 200 characters")
        self.assertEqual(errors["shortName"], "Short name cannot exceed 50 characters")
        self.assertEqual(errors["code"], "Subject code cannot exceed 20 characters")

    def test_numeric_ranges(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(creditHours=11))
        self.assertEqual(ctx.exception.errors[0].message, "Credit hours cannot exceed 10")

        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(creditHours=0))
        self.assertEqual(ctx.exception.errors[0].message, "Credit hours must be at least 1")

        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(creditHours=2.5))
        self.assertEqual(ctx.exception.errors[0].message, "Credit hours must be a whole number")

        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(semesterLevel=9, semesterId="sem1"))
        self.assertIn("semesterLevel", fields_of(ctx.exception))

    def test_color_prefix(self):
        validate_record(valid_row(color="#ffcc00"))
        with self.assertRaises(ValidationError) as ctx:
            validate_record(valid_row(color="red"))
        self.assertEqual(fields_of(ctx.exception), {"color"})

    def test_teaching_departments_are_deduplicated(self):
        record = validate_record(valid_row(teachingDepartmentIds=["d2", "d3", "d2"]))
        self.assertEqual(record.teaching_department_ids, ["d2", "d3"])

    def test_store_dict_uses_canonical_names(self):
        payload = validate_record(valid_row(description="ignored")).to_store_dict()
        self.assertEqual(payload["shortName"], "ICS")
        self.assertEqual(payload["semesterId"], "sem1")
        self.assertNotIn("description", payload)


class BatchValidationTests(unittest.TestCase):
    def test_batch_collects_every_error_without_stopping(self):
        rows = [
            valid_row(),
            valid_row(id="sub2", creditHours=11, code="c" * 25),
            valid_row(id="sub3", code="CS103"),
        ]
        result = validate_batch(rows)
        self.assertEqual(result.summary.total_rows, 3)
        self.assertEqual(result.summary.valid_rows, 2)
        self.assertEqual(result.summary.invalid_rows, 1)
        self.assertEqual(result.summary.validation_rate, 66.67)
        invalid = result.invalid_rows[0]
        self.assertEqual(invalid.row_index, 1)
        self.assertEqual({error.field for error in invalid.errors}, {"creditHours", "code"})
        self.assertEqual([row.row_index for row in result.valid_rows], [0, 2])

    def test_long_names_warn_but_stay_valid(self):
        result = validate_batch([valid_row(name="x" * 150)])
        self.assertEqual(result.summary.valid_rows, 1)
        self.assertEqual(result.summary.rows_with_warnings, 1)
        self.assertEqual(result.warnings[0].field, "name")
        self.assertIn("150 chars", result.warnings[0].details)

    def test_empty_batch(self):
        result = validate_batch([])
        self.assertEqual(result.summary.total_rows, 0)
        self.assertEqual(result.summary.validation_rate, 0.0)

    def test_report_helpers(self):
        result = validate_batch(
            [
                valid_row(code=None),
                valid_row(id="sub2", color="red", code=None),
                valid_row(id="sub3", color="blue"),
            ]
        )
        lines = get_error_summary(result.invalid_rows)
        self.assertEqual(lines[0], "Row 1: code: Subject code is required and cannot be empty")
        self.assertEqual(get_field_error_counts(result.invalid_rows), {"code": 2, "color": 2})
        self.assertEqual(
            [row.row_index for row in filter_rows_by_error_field(result.invalid_rows, "color")],
            [1, 2],
        )
        self.assertEqual(result.summary.field_error_counts, {"code": 2, "color": 2})


if __name__ == "__main__":
    unittest.main()
