"""Catalog record types: loosely typed parsed cells and the validated record model."""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError


CellValue = str | int | float | bool | list[str] | None
RawRow = dict[str, CellValue]

CANONICAL_FIELDS = (
    "id",
    "name",
    "shortName",
    "code",
    "creditHours",
    "color",
    "departmentId",
    "semesterLevel",
    "semesterId",
    "isCore",
    "isMajor",
    "teachingDepartmentIds",
)
REQUIRED_TEXT_FIELDS = ("id", "name", "shortName", "code", "departmentId", "semesterId")

NAME_MAX_LENGTH = 200
SHORT_NAME_MAX_LENGTH = 50
CODE_MAX_LENGTH = 20
COLOR_PREFIXES = ("bg-", "#")
SEMESTER_ID_RE = re.compile(r"^sem[1-8]$")


def normalize_key(value: Any) -> str:
    """Comparison form of an identity or business key. Never stored."""
    if value is None:
        return ""
    return str(value).strip().lower()


class CatalogRecord(BaseModel):
    """A course/subject definition that passed schema validation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: Annotated[str, Field(max_length=NAME_MAX_LENGTH)]
    short_name: Annotated[str, Field(alias="shortName", max_length=SHORT_NAME_MAX_LENGTH)]
    code: Annotated[str, Field(max_length=CODE_MAX_LENGTH)]
    credit_hours: Annotated[int, Field(alias="creditHours", ge=1, le=10)]
    color: str
    department_id: Annotated[str, Field(alias="departmentId")]
    # declared before semester_id so the cross-field check can see it
    semester_level: Annotated[int, Field(alias="semesterLevel", ge=1, le=8)]
    semester_id: Annotated[str, Field(alias="semesterId")]
    is_core: Annotated[bool, Field(alias="isCore")] = False
    is_major: Annotated[bool, Field(alias="isMajor")] = True
    teaching_department_ids: Annotated[list[str], Field(alias="teachingDepartmentIds", default_factory=list)]

    @field_validator("id", "name", "short_name", "code", "department_id", "semester_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise PydanticCustomError("blank_string", "Value is required and cannot be empty")
        return value

    @field_validator("color")
    @classmethod
    def _color_prefix(cls, value: str) -> str:
        if not value.strip().startswith(COLOR_PREFIXES):
            raise PydanticCustomError(
                "color_prefix",
                "Color must be either a theme class (starting with 'bg-') or a hex color (starting with '#')",
            )
        return value

    @field_validator("semester_id")
    @classmethod
    def _semester_matches_level(cls, value: str, info: ValidationInfo) -> str:
        if not SEMESTER_ID_RE.match(value.strip()):
            raise PydanticCustomError(
                "semester_id_format",
                "Semester ID must be in format 'sem1', 'sem2', ..., 'sem8'",
            )
        level = info.data.get("semester_level")
        if level is not None and value.strip() != f"sem{level}":
            raise PydanticCustomError(
                "semester_mismatch",
                "Semester ID must match semester level (semesterLevel {level} requires semesterId 'sem{level}')",
                {"level": level},
            )
        return value

    @field_validator("teaching_department_ids")
    @classmethod
    def _dedupe_departments(cls, value: list[str]) -> list[str]:
        return dedupe_preserving_order(value)

    @property
    def supplied_fields(self) -> set[str]:
        """Canonical names of the fields the input row actually carried."""
        names = set()
        for attr in self.model_fields_set:
            alias = type(self).model_fields[attr].alias
            names.add(alias or attr)
        return names

    def to_store_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def dedupe_preserving_order(values: list[Any]) -> list[Any]:
    seen: set[Any] = set()
    result = []
    for value in values:
        if value in (None, "") or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
