"""
normalizer.py — Per-row cleanup between parsing and validation

Steps, in order, for every row:
  1. trim text cells (and stringify spreadsheet numbers in text fields)
  2. numeric coercion of creditHours / semesterLevel
  3. boolean coercion of isCore / isMajor
  4. semesterLevel / semesterId reconciliation (the level wins)
  5. default color from the palette
  6. fresh identity key when the row has none
  7. configured semester / department defaults

Nothing here rejects a row. Values that cannot be coerced are left as they
are so the validator can report them against the right field.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Iterable, Optional

from catalog_import.config import ImportConfig
from catalog_import.identifiers import ColorPalette, IdentifierGenerator
from catalog_import.records import SEMESTER_ID_RE, CellValue, RawRow, dedupe_preserving_order

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("id", "name", "shortName", "code", "color", "departmentId", "semesterId")
NUMERIC_FIELDS = ("creditHours", "semesterLevel")
BOOLEAN_FIELDS = ("isCore", "isMajor")

TRUE_STRINGS = {"true", "1", "yes"}
LIST_SPLIT_RE = re.compile(r"[;,]")
SEMESTER_LEVEL_RE = re.compile(r"sem(\d+)")


# ══════════════════════════════════════════════════════════════════════════════
# VALUE COERCION
# ══════════════════════════════════════════════════════════════════════════════

def coerce_number(value: CellValue) -> CellValue:
    """
    '3' -> 3, ' 2.0 ' -> 2, 4.0 -> 4, '3.5' -> 3.5.
    Anything unparsable (including booleans) comes back unchanged.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return value
        try:
            number = float(text)
        except ValueError:
            return value
        if not math.isfinite(number):
            return value
        return int(number) if number.is_integer() else number
    return value


def coerce_boolean(value: CellValue) -> bool:
    """'true'/'1'/'yes' (any case) and non-zero numbers are True; everything else is False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def _text(value: CellValue, trim: bool) -> CellValue:
    if isinstance(value, str):
        return value.strip() if trim else value
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return value


def split_department_ids(value: CellValue) -> list[str]:
    """'d1, d2;d3' -> ['d1', 'd2', 'd3']; lists are cleaned the same way."""
    if value is None:
        return []
    if isinstance(value, list):
        items = [str(item).strip() for item in value]
    elif isinstance(value, str):
        items = [part.strip() for part in LIST_SPLIT_RE.split(value)]
    else:
        items = [str(_text(value, True))]
    return dedupe_preserving_order(items)


def semester_level_from_id(semester_id: CellValue) -> Optional[int]:
    """'sem3' -> 3. Levels outside 1..8 are ignored."""
    if not isinstance(semester_id, str):
        return None
    match = SEMESTER_LEVEL_RE.search(semester_id)
    if not match:
        return None
    level = int(match.group(1))
    return level if 1 <= level <= 8 else None


# ══════════════════════════════════════════════════════════════════════════════
# NORMALIZER
# ══════════════════════════════════════════════════════════════════════════════

class Normalizer:
    """
    Row normalizer bound to one id generator and one color palette.

    Build one per import run; the palette cursor advances once for every
    row that arrives without a color.
    """

    def __init__(
        self,
        *,
        id_generator: Optional[IdentifierGenerator] = None,
        palette: Optional[ColorPalette] = None,
        default_semester_id: Optional[str] = None,
        assign_semester_to_all: bool = False,
        default_department_id: Optional[str] = None,
        trim_values: bool = True,
    ) -> None:
        self.id_generator = id_generator or IdentifierGenerator()
        self.palette = palette or ColorPalette()
        self.default_semester_id = default_semester_id
        self.assign_semester_to_all = assign_semester_to_all
        self.default_department_id = default_department_id
        self.trim_values = trim_values

    @classmethod
    def from_config(
        cls,
        config: ImportConfig,
        *,
        id_generator: Optional[IdentifierGenerator] = None,
        palette: Optional[ColorPalette] = None,
    ) -> "Normalizer":
        return cls(
            id_generator=id_generator or IdentifierGenerator(config.id_prefix),
            palette=palette,
            default_semester_id=config.default_semester_id,
            assign_semester_to_all=config.assign_semester_to_all,
            default_department_id=config.default_department_id,
            trim_values=config.trim_values,
        )

    def normalize_rows(self, rows: Iterable[RawRow]) -> list[RawRow]:
        normalized = [self.normalize(row) for row in rows]
        logger.info("Normalized %d rows", len(normalized))
        return normalized

    def normalize(self, row: RawRow) -> RawRow:
        out: RawRow = dict(row)

        # 1. text
        for name in TEXT_FIELDS:
            if name in out:
                out[name] = _text(out[name], self.trim_values)
        for name, value in list(out.items()):
            if name not in TEXT_FIELDS and isinstance(value, str) and self.trim_values:
                out[name] = value.strip()
        if "teachingDepartmentIds" in out:
            out["teachingDepartmentIds"] = split_department_ids(out["teachingDepartmentIds"])

        # 2. numbers
        for name in NUMERIC_FIELDS:
            if name in out:
                out[name] = coerce_number(out[name])

        # 3. booleans
        for name in BOOLEAN_FIELDS:
            if name in out:
                out[name] = coerce_boolean(out[name])

        # 4. semester reconciliation
        self._reconcile_semester(out)

        # 5. color
        out["color"] = self.palette.assign(out.get("color"))

        # 6. identity
        identity = out.get("id")
        if identity is None or (isinstance(identity, str) and not identity.strip()):
            out["id"] = self.id_generator.generate()
            logger.debug("Generated id %s for row without one", out["id"])

        # 7. configured defaults
        self._apply_defaults(out)
        return out

    @staticmethod
    def _reconcile_semester(out: RawRow) -> None:
        level = out.get("semesterLevel")
        semester_id = out.get("semesterId")

        if level is None and semester_id:
            inferred = semester_level_from_id(semester_id)
            if inferred is not None:
                out["semesterLevel"] = inferred
                level = inferred

        if isinstance(level, int) and not isinstance(level, bool) and semester_id:
            if semester_level_from_id(semester_id) != level:
                out["semesterId"] = f"sem{level}"

    def _apply_defaults(self, out: RawRow) -> None:
        selected = self.default_semester_id
        if selected and SEMESTER_ID_RE.match(selected):
            selected_level = semester_level_from_id(selected)
            if self.assign_semester_to_all:
                out["semesterId"] = selected
                out["semesterLevel"] = selected_level
            elif not out.get("semesterId"):
                out["semesterId"] = selected
                if out.get("semesterLevel") is None:
                    out["semesterLevel"] = selected_level

        department = out.get("departmentId")
        if self.default_department_id and (department is None or (isinstance(department, str) and not department.strip())):
            out["departmentId"] = self.default_department_id


def normalize_rows(rows: Iterable[RawRow], config: Optional[ImportConfig] = None) -> list[RawRow]:
    """One-shot helper: a fresh Normalizer (and palette) per call."""
    return Normalizer.from_config(config or ImportConfig()).normalize_rows(rows)
