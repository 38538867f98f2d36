"""
Error kinds for the catalog import pipeline.

Fatal errors abort the whole run and are raised. Recoverable problems
(field errors, warnings, unknown resolution tags) are collected into the
batch report instead. ISSUE_DEFINITIONS keeps severity, category and
retryability in one place so the text and JSON renderers do not drift.
"""

from __future__ import annotations

from typing import Any


ISSUE_DEFINITIONS = {
    "file_access":                {"severity": "fatal",   "category": "file_access", "retryable": False},
    "empty_dataset":              {"severity": "fatal",   "category": "validation",  "retryable": False},
    "format":                     {"severity": "fatal",   "category": "format",      "retryable": False},
    "persistence":                {"severity": "fatal",   "category": "network",     "retryable": False},
    "cancelled":                  {"severity": "fatal",   "category": "system",      "retryable": True},
    "config":                     {"severity": "fatal",   "category": "system",      "retryable": False},
    "validation":                 {"severity": "error",   "category": "validation",  "retryable": False},
    "validation_warning":         {"severity": "warning", "category": "validation",  "retryable": False},
    "conflict_resolution_failure": {"severity": "warning", "category": "conflict",   "retryable": False},
}


def issue_definition(kind: str) -> dict[str, Any]:
    return dict(ISSUE_DEFINITIONS.get(kind, {"severity": "error", "category": "system", "retryable": False}))


class ImportPipelineError(Exception):
    """Base class for batch-wide failures."""

    kind = "system"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def severity(self) -> str:
        return issue_definition(self.kind)["severity"]

    @property
    def retryable(self) -> bool:
        return issue_definition(self.kind)["retryable"]

    def to_dict(self) -> dict[str, Any]:
        definition = issue_definition(self.kind)
        return {
            "kind": self.kind,
            "message": self.message,
            "severity": definition["severity"],
            "category": definition["category"],
            "retryable": self.retryable,
        }


class FileAccessError(ImportPipelineError):
    """Input is missing, empty, unreadable or over a size ceiling."""

    kind = "file_access"


class EmptyDatasetError(ImportPipelineError):
    kind = "empty_dataset"

    def __init__(self, message: str = "No data rows found in the file") -> None:
        super().__init__(message)


class FormatError(ImportPipelineError):
    """The format could not be detected, or the file is malformed for its format."""

    kind = "format"

    def __init__(self, message: str, file_format: str | None = None) -> None:
        super().__init__(message)
        self.file_format = file_format

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["format"] = self.file_format
        return payload


class PersistenceError(ImportPipelineError):
    """The catalog store could not be read or the replace-all write failed."""

    kind = "persistence"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        # 5xx and 429 may succeed on retry
        if self.status_code is None:
            return False
        return self.status_code >= 500 or self.status_code == 429


class ImportCancelled(ImportPipelineError):
    kind = "cancelled"


class ConfigError(ImportPipelineError):
    kind = "config"


class ValidationError(ImportPipelineError):
    """
    Raised by the strict single-record validator.

    Carries every field error found for the record; the message describes
    the first one.
    """

    kind = "validation"

    def __init__(self, errors: list[Any]) -> None:
        first = errors[0] if errors else None
        if first is None:
            message = "Record validation failed"
        else:
            message = f"Record validation failed: {first.field}: {first.message}"
        super().__init__(message)
        self.errors = list(errors)
