"""Import configuration: dataclass defaults, JSON config files, starter config."""

from __future__ import annotations

import json
import os
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from catalog_import.errors import ConfigError


DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024
DEFAULT_ROW_WARNING_COUNT = 5_000
DEFAULT_ROW_HARD_LIMIT = 10_000
DEFAULT_TIMEOUT_SECONDS = 30.0

ROW_LIMIT_POLICIES = ("reject", "warn")
STORE_URL_ENV = "CATALOG_IMPORT_STORE_URL"
SUPPORTED_CONFIG_SUFFIXES = {".json", ".yml", ".yaml"}

_SEMESTER_RE = re.compile(r"^sem[1-8]$")


@dataclass
class ImportConfig:
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    row_warning_count: int = DEFAULT_ROW_WARNING_COUNT
    row_hard_limit: int = DEFAULT_ROW_HARD_LIMIT
    row_limit_policy: str = "reject"
    max_rows: int = 0
    skip_blank_rows: bool = True
    trim_values: bool = True
    header_mapping: dict[str, str] = field(default_factory=dict)

    default_semester_id: Optional[str] = None
    assign_semester_to_all: bool = False
    default_department_id: Optional[str] = None
    id_prefix: str = "sub"

    duplicate_id_strategy: str = "overwrite"
    duplicate_code_strategy: str = "skip"
    apply_to_all: bool = False

    store_url: Optional[str] = None
    store_path: Optional[str] = None
    timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.row_limit_policy not in ROW_LIMIT_POLICIES:
            raise ConfigError(
                f"row_limit_policy must be one of {list(ROW_LIMIT_POLICIES)}, got {self.row_limit_policy!r}"
            )
        for name in ("max_file_bytes", "row_warning_count", "row_hard_limit"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.max_rows < 0:
            raise ConfigError("max_rows cannot be negative (0 means unlimited)")
        if self.default_semester_id is not None and not _SEMESTER_RE.match(self.default_semester_id):
            raise ConfigError("default_semester_id must be in format 'sem1', 'sem2', ..., 'sem8'")
        if self.assign_semester_to_all and self.default_semester_id is None:
            raise ConfigError("assign_semester_to_all requires default_semester_id")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigError("timeout_seconds must be positive when set")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ImportConfig":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")
        return cls(**payload)

    def resolved_store_url(self) -> Optional[str]:
        return self.store_url or os.environ.get(STORE_URL_ENV) or None


def load_config(path: "str | Path") -> ImportConfig:
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config not found: {config_path}")
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError(f"Unsupported config format '{suffix}'. Use .json")
    if suffix in {".yml", ".yaml"}:
        raise ConfigError("YAML configs are not supported yet. Use JSON for now.")
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Could not read config: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a JSON object")
    return ImportConfig.from_dict(payload)


def starter_config_text() -> str:
    payload = ImportConfig().to_dict()
    payload["header_mapping"] = {"Course Title": "name"}
    payload["default_semester_id"] = "sem1"
    return json.dumps(payload, indent=2) + "\n"
