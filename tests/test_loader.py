from __future__ import annotations

import io
import json
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from openpyxl import Workbook

from catalog_import import loader
from catalog_import.config import ImportConfig
from catalog_import.errors import FileAccessError, FormatError
from catalog_import.loader import (
    FileSource,
    ParseOptions,
    detect_format,
    enforce_row_limits,
    parse_bytes,
    parse_excel,
    parse_json,
    read_source,
)


HEADER = "Subject Name,Code,Credits,Department ID,Semester"


def csv_bytes(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def workbook_bytes(rows: list[list], *, extra_sheets: tuple[str, ...] = ()) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Subjects"
    for row in rows:
        ws.append(row)
    for name in extra_sheets:
        wb.create_sheet(name)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class FormatDetectionTests(unittest.TestCase):
    def test_media_type_comes_first(self):
        self.assertEqual(detect_format("application/json", "subjects.csv"), "json")
        self.assertEqual(detect_format("text/csv", "upload.bin"), "csv")
        self.assertEqual(
            detect_format("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "x"),
            "excel",
        )

    def test_extension_is_second(self):
        self.assertEqual(detect_format(None, "Subjects.XLSX"), "excel")
        self.assertEqual(detect_format("", "legacy.xls"), "excel")
        self.assertEqual(detect_format("application/octet-stream", "data.json"), "json")

    def test_generic_text_falls_back_to_csv(self):
        self.assertEqual(detect_format("text/plain", "notes"), "csv")

    def test_unknown_input_is_rejected(self):
        with self.assertRaisesRegex(FormatError, "Unable to detect file format"):
            detect_format("application/pdf", "subjects.pdf")


class SourceReadingTests(unittest.TestCase):
    def test_missing_file(self):
        with self.assertRaisesRegex(FileAccessError, "File not found"):
            read_source(FileSource.from_path("/definitely/not/here.csv"))

    def test_empty_input(self):
        with self.assertRaisesRegex(FileAccessError, "is empty"):
            read_source(FileSource.from_bytes(b"", "empty.csv"))

    def test_oversized_path_is_rejected_before_reading(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "big.csv"
            path.write_bytes(b"x" * 64)
            with mock.patch.object(loader, "MAX_FILE_BYTES", 16):
                with mock.patch.object(Path, "read_bytes", side_effect=AssertionError("read too early")):
                    with self.assertRaisesRegex(FileAccessError, "too large"):
                        read_source(FileSource.from_path(path))

    def test_oversized_bytes_respect_explicit_ceiling(self):
        with self.assertRaises(FileAccessError):
            read_source(FileSource.from_bytes(b"x" * 32, "a.csv"), max_bytes=8)


class CsvParsingTests(unittest.TestCase):
    def test_headers_are_resolved_to_canonical_names(self):
        result = parse_bytes(csv_bytes(HEADER, "Intro to CS,CS101,3,d1,sem1"), filename="s.csv")
        self.assertEqual(result.format, "csv")
        self.assertEqual(result.delimiter, ",")
        self.assertEqual(
            result.rows,
            [{"name": "Intro to CS", "code": "CS101", "creditHours": "3", "departmentId": "d1", "semesterId": "sem1"}],
        )
        self.assertEqual(result.header_mapping["Credits"], "creditHours")

    def test_semicolon_delimiter(self):
        text = HEADER.replace(",", ";")
        result = parse_bytes(csv_bytes(text, "Algebra;MA101;4;d2;sem2", "Physics;PH101;3;d3;sem1"), filename="s.csv")
        self.assertEqual(result.delimiter, ";")
        self.assertEqual(result.rows[1]["code"], "PH101")

    def test_unknown_columns_pass_through(self):
        result = parse_bytes(csv_bytes("code,Room", "CS101,B12"), filename="s.csv")
        self.assertEqual(result.rows, [{"code": "CS101", "Room": "B12"}])

    def test_blank_lines_and_empty_rows_are_skipped(self):
        result = parse_bytes(csv_bytes(HEADER, "A,CS1,3,d1,sem1", "", ",,,,", "B,CS2,3,d1,sem1"), filename="s.csv")
        self.assertEqual([row["code"] for row in result.rows], ["CS1", "CS2"])

    def test_malformed_rows_become_warnings(self):
        result = parse_bytes(
            csv_bytes(HEADER, "A,CS1,3,d1,sem1", "B,CS2,3,d1,sem1,extra,cells", "C,CS3,3,d1,sem1"),
            filename="s.csv",
        )
        self.assertEqual([row["code"] for row in result.rows], ["CS1", "CS3"])
        self.assertTrue(any("malformed row" in warning for warning in result.warnings))

    def test_bom_and_latin1_are_decoded(self):
        data = "\ufeffname,code\n".encode("utf-8") + "Café Basics,FR101\n".encode("latin-1")
        result = parse_bytes(data, filename="s.csv")
        self.assertEqual(result.rows[0], {"name": "Café Basics", "code": "FR101"})

    def test_custom_header_mapping(self):
        options = ParseOptions(header_mapping={"Title": "name"})
        result = parse_bytes(csv_bytes("Title,code", "Intro,CS1"), filename="s.csv", options=options)
        self.assertEqual(result.rows[0]["name"], "Intro")

    def test_missing_required_columns_warning(self):
        result = parse_bytes(csv_bytes("name,code", "Intro,CS1"), filename="s.csv")
        warning = next(w for w in result.warnings if w.startswith("Missing expected columns"))
        self.assertIn("shortName", warning)
        self.assertIn("semesterId", warning)

    def test_two_columns_for_one_field_are_reported(self):
        result = parse_bytes(csv_bytes("code,Course Code,name", "CS1,CS2,Intro", "CS3,,Algebra"), filename="s.csv")
        self.assertEqual([row["code"] for row in result.rows], ["CS2", "CS3"])
        warning = next(w for w in result.warnings if w.startswith("Columns"))
        self.assertIn("'code', 'Course Code'", warning)

    def test_max_rows_truncates_with_warning(self):
        options = ParseOptions(max_rows=2)
        result = parse_bytes(csv_bytes("code", "A", "B", "C"), filename="s.csv", options=options)
        self.assertEqual(len(result.rows), 2)
        self.assertTrue(any("first 2 of 3" in warning for warning in result.warnings))


class SpreadsheetParsingTests(unittest.TestCase):
    def test_first_sheet_is_parsed_and_blank_rows_skipped(self):
        data = workbook_bytes(
            [
                ["Subject Name", "Code", "Credits", "Is Core"],
                ["Intro", "CS101", 3, True],
                [None, None, None, None],
                ["Data", 202, 4.0, False],
            ],
            extra_sheets=("Notes",),
        )
        result = parse_bytes(data, filename="subjects.xlsx")
        self.assertEqual(result.format, "excel")
        self.assertEqual(result.sheet_name, "Subjects")
        self.assertEqual(len(result.rows), 2)
        self.assertEqual(result.rows[0], {"name": "Intro", "code": "CS101", "creditHours": 3, "isCore": True})
        self.assertEqual(result.rows[1]["code"], 202)
        self.assertTrue(any("Multiple sheets" in warning for warning in result.warnings))

    def test_blank_rows_can_be_kept(self):
        data = workbook_bytes([["code"], ["A"], [None], ["B"]])
        result = parse_excel(data, "s.xlsx", ParseOptions(skip_blank_rows=False))
        self.assertEqual(result.rows, [{"code": "A"}, {}, {"code": "B"}])

    def test_dates_become_iso_text(self):
        data = workbook_bytes([["code", "updated"], ["A", datetime(2024, 1, 2, 3, 4, 5)]])
        result = parse_excel(data, "s.xlsx")
        self.assertEqual(result.rows[0]["updated"], "2024-01-02T03:04:05")

    def test_empty_header_row_is_fatal(self):
        data = workbook_bytes([[None, None], ["A", "B"]])
        with self.assertRaisesRegex(FormatError, "No headers"):
            parse_excel(data, "s.xlsx")

    def test_empty_workbook_is_fatal(self):
        with self.assertRaises(FormatError):
            parse_excel(workbook_bytes([]), "s.xlsx")

    def test_corrupt_workbook_is_a_format_error(self):
        with self.assertRaisesRegex(FormatError, "could not open workbook"):
            parse_excel(b"not-a-zip", "s.xlsx")

    def test_missing_xlrd_raises_clear_importerror(self):
        original_import = __import__

        def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
            if name == "xlrd":
                raise ImportError("simulated missing xlrd")
            return original_import(name, globals, locals, fromlist, level)

        with mock.patch("builtins.__import__", side_effect=fake_import):
            with self.assertRaisesRegex(ImportError, r"\.xls files require xlrd"):
                parse_excel(b"not-a-real-xls", "legacy.xls")


class JsonParsingTests(unittest.TestCase):
    def test_header_set_is_union_of_keys(self):
        payload = [{"name": "A", "code": "C1"}, {"code": "C2", "credits": 3}]
        result = parse_json(json.dumps(payload).encode())
        self.assertEqual(result.raw_headers, ["name", "code", "credits"])
        self.assertEqual(result.rows[1], {"code": "C2", "creditHours": 3})

    def test_empty_array_is_a_warning_not_an_error(self):
        result = parse_bytes(b"[]", filename="s.json")
        self.assertEqual(result.total_rows, 0)
        self.assertIn("JSON file is empty", result.warnings)

    def test_bare_object_is_rejected(self):
        with self.assertRaisesRegex(FormatError, "array of objects"):
            parse_json(b'{"name": "A"}')

    def test_array_of_scalars_is_rejected(self):
        with self.assertRaisesRegex(FormatError, "must contain objects"):
            parse_json(b"[1, 2]")

    def test_invalid_json(self):
        with self.assertRaisesRegex(FormatError, "Invalid JSON"):
            parse_json(b"[{")

    def test_stray_non_objects_are_skipped_with_warning(self):
        result = parse_json(b'[{"code": "A"}, 5, {"code": "B"}]')
        self.assertEqual([row["code"] for row in result.rows], ["A", "B"])
        self.assertTrue(any("Row 2" in warning for warning in result.warnings))

    def test_lists_are_kept_for_department_ids(self):
        result = parse_json(b'[{"code": "A", "teachingDepartmentIds": ["d1", "d2"]}]')
        self.assertEqual(result.rows[0]["teachingDepartmentIds"], ["d1", "d2"])


class RowLimitTests(unittest.TestCase):
    def test_patched_limits_drive_warnings_and_flag(self):
        with mock.patch.object(loader, "ROW_WARNING_COUNT", 2), mock.patch.object(loader, "ROW_HARD_LIMIT_COUNT", 3):
            result = parse_bytes(csv_bytes("code", "A", "B", "C", "D"), filename="s.csv")
        self.assertTrue(result.exceeds_hard_limit)
        self.assertTrue(any("recommended limit of 2" in warning for warning in result.warnings))
        self.assertTrue(any("maximum limit of 3" in warning for warning in result.warnings))

    def test_ten_thousand_and_one_rows_hit_the_hard_limit(self):
        lines = ["code"] + [f"C{i}" for i in range(10_001)]
        result = parse_bytes(csv_bytes(*lines), filename="big.csv")
        self.assertEqual(result.total_rows, 10_001)
        self.assertTrue(result.exceeds_hard_limit)
        self.assertTrue(any("maximum limit of 10000" in warning for warning in result.warnings))

        with self.assertRaises(FileAccessError):
            enforce_row_limits(result, "reject")
        enforce_row_limits(result, "warn")

    def test_under_the_limit_is_not_flagged(self):
        result = parse_bytes(csv_bytes("code", "A"), filename="s.csv")
        self.assertFalse(result.exceeds_hard_limit)
        enforce_row_limits(result, "reject")

    def test_config_limits_are_used_by_parse_source(self):
        config = ImportConfig(row_warning_count=1, row_hard_limit=2)
        source = FileSource.from_bytes(csv_bytes("code", "A", "B", "C"), "s.csv")
        result = loader.parse_source(source, config)
        self.assertTrue(result.exceeds_hard_limit)


if __name__ == "__main__":
    unittest.main()
