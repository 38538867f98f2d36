from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from catalog_import.config import STORE_URL_ENV, ImportConfig, load_config, starter_config_text
from catalog_import.errors import ConfigError


class ImportConfigTests(unittest.TestCase):
    def test_defaults(self):
        config = ImportConfig()
        self.assertEqual(config.max_file_bytes, 10 * 1024 * 1024)
        self.assertEqual(config.row_warning_count, 5000)
        self.assertEqual(config.row_hard_limit, 10000)
        self.assertEqual(config.row_limit_policy, "reject")
        self.assertEqual(config.duplicate_id_strategy, "overwrite")
        self.assertEqual(config.duplicate_code_strategy, "skip")
        self.assertFalse(config.apply_to_all)

    def test_invalid_values_are_rejected(self):
        for kwargs in (
            {"row_limit_policy": "ignore"},
            {"row_hard_limit": 0},
            {"max_rows": -1},
            {"default_semester_id": "sem9"},
            {"assign_semester_to_all": True},
            {"timeout_seconds": 0},
        ):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ConfigError):
                    ImportConfig(**kwargs)

    def test_unknown_keys_are_rejected(self):
        with self.assertRaisesRegex(ConfigError, "Unknown config keys"):
            ImportConfig.from_dict({"rows": 5})

    def test_store_url_falls_back_to_environment(self):
        with mock.patch.dict(os.environ, {STORE_URL_ENV: "http://catalog.test"}):
            self.assertEqual(ImportConfig().resolved_store_url(), "http://catalog.test")
            self.assertEqual(ImportConfig(store_url="http://mine").resolved_store_url(), "http://mine")


class LoadConfigTests(unittest.TestCase):
    def test_round_trip_through_starter_text(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "catalog-import.json"
            path.write_text(starter_config_text(), encoding="utf-8")
            config = load_config(path)
        self.assertEqual(config.header_mapping, {"Course Title": "name"})
        self.assertEqual(config.default_semester_id, "sem1")

    def test_yaml_is_not_supported_yet(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text("apply_to_all: true\n", encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "YAML configs are not supported yet"):
                load_config(path)

    def test_bad_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = Path(tmpdir) / "nope.json"
            with self.assertRaisesRegex(ConfigError, "Config not found"):
                load_config(missing)

            listing = Path(tmpdir) / "list.json"
            listing.write_text(json.dumps([1, 2]), encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "JSON object"):
                load_config(listing)

            toml = Path(tmpdir) / "config.toml"
            toml.write_text("x = 1", encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "Unsupported config format"):
                load_config(toml)


if __name__ == "__main__":
    unittest.main()
