from __future__ import annotations

import importlib.util
import sys
import unittest
from pathlib import Path
from unittest import mock

from catalog_import.errors import ConfigError

ROOT = Path(__file__).resolve().parents[1]
WEB_APP = ROOT / "web" / "app.py"


def load_module(module_path: Path, module_name: str):
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    module = importlib.util.module_from_spec(spec)
    assert spec and spec.loader
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


WEB_APP_MODULE = load_module(WEB_APP, "catalog_import_web_app_tests")


class WebAppHelperTests(unittest.TestCase):
    def test_build_config_maps_widget_values(self):
        config = WEB_APP_MODULE.build_config("sem3", "  d4 ", "keep_both", "overwrite", True)
        self.assertEqual(config.default_semester_id, "sem3")
        self.assertEqual(config.default_department_id, "d4")
        self.assertEqual(config.duplicate_id_strategy, "keep_both")
        self.assertTrue(config.apply_to_all)

    def test_keep_from_file_leaves_semester_unset(self):
        config = WEB_APP_MODULE.build_config(WEB_APP_MODULE.SEMESTER_OPTIONS[0], "", "overwrite", "skip", False)
        self.assertIsNone(config.default_semester_id)
        self.assertIsNone(config.default_department_id)

    def test_upload_source_keeps_declared_type(self):
        upload = mock.Mock()
        upload.getvalue.return_value = b"code\nA\n"
        upload.name = "subjects.csv"
        upload.type = "text/csv"
        source = WEB_APP_MODULE.upload_source(upload)
        self.assertEqual(source.filename, "subjects.csv")
        self.assertEqual(source.media_type, "text/csv")
        self.assertEqual(source.data, b"code\nA\n")

    def test_current_store_rejects_two_targets(self):
        state = {"store_url_input": "http://x", "store_file_input": "subjects.json"}
        with mock.patch.object(WEB_APP_MODULE.st, "session_state", state):
            with self.assertRaises(ConfigError):
                WEB_APP_MODULE.current_store()

    def test_row_tags_drop_batch_default_and_shift_to_source_index(self):
        tags = WEB_APP_MODULE.build_row_tags(
            {2: "keep_both", 3: WEB_APP_MODULE.ROW_TAG_DEFAULT, 5: "overwrite"}
        )
        self.assertEqual(tags, {1: "keep_both", 4: "overwrite"})

    def test_row_choices_are_offered_only_for_conflicting_rows(self):
        clean = mock.Mock(has_conflict=False, row_index=0)
        clash = mock.Mock(has_conflict=True, row_index=3)
        clash.record.name = "Intro to CS"
        clash.record.code = "CS101"
        clash.conflict_type.value = "both"
        clash.recommended_resolution.value = "userDecision"
        report = mock.Mock()
        report.conflicts.conflicting_rows = 1
        report.conflicts.reports = [clean, clash]

        fake_st = mock.MagicMock()
        fake_st.selectbox.return_value = "overwrite"
        with mock.patch.object(WEB_APP_MODULE, "st", fake_st):
            choices = WEB_APP_MODULE.render_row_choices(report)

        self.assertEqual(choices, {4: "overwrite"})
        self.assertEqual(fake_st.selectbox.call_count, 1)
        self.assertEqual(fake_st.selectbox.call_args.kwargs["key"], "row_tag_4")
        self.assertEqual(WEB_APP_MODULE.build_row_tags(choices), {3: "overwrite"})

    def test_no_row_choices_without_conflicts(self):
        report = mock.Mock()
        report.conflicts = None
        self.assertEqual(WEB_APP_MODULE.render_row_choices(report), {})

    def test_strategy_options_cover_every_strategy(self):
        self.assertIn("keep_both", WEB_APP_MODULE.STRATEGY_OPTIONS)
        self.assertIn("userDecision", WEB_APP_MODULE.STRATEGY_OPTIONS)


if __name__ == "__main__":
    unittest.main()
