from __future__ import annotations

import random
import unittest

from catalog_import.config import ImportConfig
from catalog_import.identifiers import ColorPalette, IdentifierGenerator
from catalog_import.normalizer import (
    Normalizer,
    coerce_boolean,
    coerce_number,
    semester_level_from_id,
    split_department_ids,
)
from catalog_import.validator import validate_record


def csv_row(**overrides):
    row = {
        "id": "sub1",
        "name": "Intro to CS",
        "shortName": "ICS",
        "code": "CS101",
        "creditHours": "3",
        "departmentId": "d1",
        "semesterLevel": "1",
        "semesterId": "sem1",
        "isCore": "yes",
        "isMajor": "0",
    }
    row.update(overrides)
    return {key: value for key, value in row.items() if value is not None}


class CoercionTests(unittest.TestCase):
    def test_numbers(self):
        self.assertEqual(coerce_number("3"), 3)
        self.assertIsInstance(coerce_number("3"), int)
        self.assertEqual(coerce_number(" 2.0 "), 2)
        self.assertIsInstance(coerce_number(4.0), int)
        self.assertEqual(coerce_number("3.5"), 3.5)
        self.assertEqual(coerce_number("abc"), "abc")
        self.assertEqual(coerce_number("nan"), "nan")
        self.assertIs(coerce_number(True), True)

    def test_booleans(self):
        for value in ("true", "TRUE", "1", "yes", " Yes ", 2, -1, 0.5, True):
            self.assertIs(coerce_boolean(value), True, value)
        for value in ("false", "0", "no", "maybe", "", 0, 0.0, False):
            self.assertIs(coerce_boolean(value), False, value)

    def test_department_lists(self):
        self.assertEqual(split_department_ids("d1; d2,d1 ,"), ["d1", "d2"])
        self.assertEqual(split_department_ids([" d3", "d3", "d4"]), ["d3", "d4"])
        self.assertEqual(split_department_ids(None), [])

    def test_semester_level_from_id(self):
        self.assertEqual(semester_level_from_id("sem4"), 4)
        self.assertIsNone(semester_level_from_id("sem9"))
        self.assertIsNone(semester_level_from_id("fall"))


class NormalizerTests(unittest.TestCase):
    def setUp(self):
        self.generator = IdentifierGenerator(rng=random.Random(1))
        self.normalizer = Normalizer(id_generator=self.generator, palette=ColorPalette())

    def test_well_formed_row_ends_up_fully_typed(self):
        normalized = self.normalizer.normalize(csv_row())
        record = validate_record(normalized)
        self.assertIsInstance(record.credit_hours, int)
        self.assertIsInstance(record.semester_level, int)
        self.assertIs(record.is_core, True)
        self.assertIs(record.is_major, False)
        self.assertEqual(record.color, "bg-blue-100")

    def test_strings_are_trimmed(self):
        normalized = self.normalizer.normalize(csv_row(name="  Spaced  ", code=" CS101 "))
        self.assertEqual(normalized["name"], "Spaced")
        self.assertEqual(normalized["code"], "CS101")

    def test_spreadsheet_numbers_in_text_fields_become_strings(self):
        normalized = self.normalizer.normalize(csv_row(code=101, departmentId=7.0))
        self.assertEqual(normalized["code"], "101")
        self.assertEqual(normalized["departmentId"], "7")

    def test_unparsable_numbers_are_left_for_the_validator(self):
        normalized = self.normalizer.normalize(csv_row(creditHours="three"))
        self.assertEqual(normalized["creditHours"], "three")

    def test_level_is_inferred_from_semester_id(self):
        normalized = self.normalizer.normalize(csv_row(semesterLevel=None, semesterId="sem4"))
        self.assertEqual(normalized["semesterLevel"], 4)

    def test_level_wins_when_both_disagree(self):
        normalized = self.normalizer.normalize(csv_row(semesterLevel="3", semesterId="sem1"))
        self.assertEqual(normalized["semesterLevel"], 3)
        self.assertEqual(normalized["semesterId"], "sem3")

    def test_missing_id_is_generated_and_present_id_kept(self):
        generated = self.normalizer.normalize(csv_row(id=None))
        self.assertTrue(generated["id"].startswith("sub"))
        kept = self.normalizer.normalize(csv_row(id="  custom-7 "))
        self.assertEqual(kept["id"], "custom-7")

    def test_palette_advances_only_for_rows_without_color(self):
        first = self.normalizer.normalize(csv_row())
        supplied = self.normalizer.normalize(csv_row(color="#123456"))
        second = self.normalizer.normalize(csv_row())
        self.assertEqual(first["color"], "bg-blue-100")
        self.assertEqual(supplied["color"], "#123456")
        self.assertEqual(second["color"], "bg-blue-150")

    def test_teaching_departments_are_split(self):
        normalized = self.normalizer.normalize(csv_row(teachingDepartmentIds="d2;d3, d2"))
        self.assertEqual(normalized["teachingDepartmentIds"], ["d2", "d3"])

    def test_absent_booleans_stay_absent(self):
        normalized = self.normalizer.normalize(csv_row(isCore=None, isMajor=None))
        self.assertNotIn("isMajor", normalized)
        record = validate_record(normalized)
        self.assertIs(record.is_core, False)
        self.assertIs(record.is_major, True)
        self.assertNotIn("isMajor", record.supplied_fields)

    def test_default_semester_fills_missing_values(self):
        normalizer = Normalizer.from_config(ImportConfig(default_semester_id="sem2"))
        normalized = normalizer.normalize(csv_row(semesterLevel=None, semesterId=None))
        self.assertEqual(normalized["semesterId"], "sem2")
        self.assertEqual(normalized["semesterLevel"], 2)

    def test_assign_semester_to_all_overrides_file_values(self):
        config = ImportConfig(default_semester_id="sem5", assign_semester_to_all=True)
        normalized = Normalizer.from_config(config).normalize(csv_row())
        self.assertEqual(normalized["semesterId"], "sem5")
        self.assertEqual(normalized["semesterLevel"], 5)

    def test_default_department_fills_missing(self):
        normalizer = Normalizer.from_config(ImportConfig(default_department_id="d9"))
        self.assertEqual(normalizer.normalize(csv_row(departmentId=None))["departmentId"], "d9")
        self.assertEqual(normalizer.normalize(csv_row())["departmentId"], "d1")

    def test_id_prefix_comes_from_config(self):
        normalizer = Normalizer.from_config(ImportConfig(id_prefix="crs"))
        self.assertTrue(normalizer.normalize(csv_row(id=None))["id"].startswith("crs"))


if __name__ == "__main__":
    unittest.main()
