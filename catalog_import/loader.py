"""
loader.py — File source reading, format detection and parsing

Supports: CSV (.csv, text/*), spreadsheets (.xlsx .xlsm .xls), JSON (.json)

Public API:
    source = FileSource.from_path("subjects.xlsx")
    result = parse_source(source, config)
    rows   = result.rows

Every parser returns a ParseResult whose rows already carry canonical
field names (see headers.py), so consumers see one shape regardless of
the source format.
"""

from __future__ import annotations

import csv
import io
import json as _json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Mapping, Optional

import chardet
import pandas as pd
from openpyxl import load_workbook

from catalog_import.config import ImportConfig
from catalog_import.context import RunContext, ensure_context
from catalog_import.errors import FileAccessError, FormatError
from catalog_import.headers import apply_header_mapping, build_header_mapping, find_header_collisions
from catalog_import.records import CellValue, RawRow

logger = logging.getLogger(__name__)

# ── Formats ────────────────────────────────────────────────────────────────────
FORMAT_CSV   = "csv"
FORMAT_EXCEL = "excel"
FORMAT_JSON  = "json"

CSV_EXTENSIONS   = {".csv"}
EXCEL_EXTENSIONS = {".xlsx", ".xlsm", ".xls"}
JSON_EXTENSIONS  = {".json"}

EXCEL_MEDIA_TYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

# ── Ceilings ───────────────────────────────────────────────────────────────────
MAX_FILE_BYTES       = 10 * 1024 * 1024
ROW_WARNING_COUNT    = 5_000
ROW_HARD_LIMIT_COUNT = 10_000

REQUIRED_COLUMNS = ("name", "shortName", "code", "creditHours", "departmentId")


# ══════════════════════════════════════════════════════════════════════════════
# SOURCE + RESULT TYPES
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class FileSource:
    """Raw bytes (or a path to read them from) plus the declared type and name."""

    filename: str
    media_type: Optional[str] = None
    data: Optional[bytes] = None
    path: Optional[Path] = None

    @classmethod
    def from_path(cls, path: "str | Path", media_type: Optional[str] = None) -> "FileSource":
        path = Path(path)
        return cls(filename=path.name, media_type=media_type, path=path)

    @classmethod
    def from_bytes(cls, data: bytes, filename: str, media_type: Optional[str] = None) -> "FileSource":
        return cls(filename=filename, media_type=media_type, data=data)


@dataclass
class ParseOptions:
    header_mapping: dict[str, str] = field(default_factory=dict)
    skip_blank_rows: bool = True
    trim_values: bool = True
    max_rows: int = 0
    row_warning_count: Optional[int] = None
    row_hard_limit: Optional[int] = None

    @classmethod
    def from_config(cls, config: ImportConfig) -> "ParseOptions":
        return cls(
            header_mapping=dict(config.header_mapping),
            skip_blank_rows=config.skip_blank_rows,
            trim_values=config.trim_values,
            max_rows=config.max_rows,
            row_warning_count=config.row_warning_count,
            row_hard_limit=config.row_hard_limit,
        )


@dataclass
class ParseResult:
    rows: list[RawRow]
    header_mapping: dict[str, str]
    format: str
    warnings: list[str] = field(default_factory=list)
    raw_headers: list[str] = field(default_factory=list)
    encoding: Optional[str] = None
    delimiter: Optional[str] = None
    sheet_name: Optional[str] = None
    exceeds_hard_limit: bool = False

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "total_rows": self.total_rows,
            "header_mapping": dict(self.header_mapping),
            "raw_headers": list(self.raw_headers),
            "encoding": self.encoding,
            "delimiter": self.delimiter,
            "sheet_name": self.sheet_name,
            "exceeds_hard_limit": self.exceeds_hard_limit,
            "warnings": list(self.warnings),
        }


# ══════════════════════════════════════════════════════════════════════════════
# SOURCE READING
# ══════════════════════════════════════════════════════════════════════════════

def read_source(
    source: FileSource,
    *,
    max_bytes: Optional[int] = None,
    context: Optional[RunContext] = None,
) -> bytes:
    """
    Return the source bytes, enforcing the byte ceiling before anything is parsed.

    Raises FileAccessError for missing, unreadable, empty or oversized input.
    """
    context = ensure_context(context)
    limit = max_bytes if max_bytes is not None else MAX_FILE_BYTES
    context.checkpoint("reading the source file")

    if source.data is not None:
        data = source.data
    elif source.path is not None:
        path = Path(source.path)
        if not path.exists():
            raise FileAccessError(f"File not found: {path}")
        try:
            size = path.stat().st_size
            if size > limit:
                raise FileAccessError(_oversize_message(size, limit))
            data = path.read_bytes()
        except OSError as exc:
            raise FileAccessError(f"File \"{source.filename}\" cannot be read: {exc}") from exc
    else:
        raise FileAccessError("File is required")

    if not data:
        raise FileAccessError(f"File \"{source.filename}\" is empty")
    if len(data) > limit:
        raise FileAccessError(_oversize_message(len(data), limit))
    return data


def _oversize_message(size: int, limit: int) -> str:
    return (
        f"File is too large to import ({size / (1024 * 1024):.1f} MB); "
        f"the limit is {limit / (1024 * 1024):.1f} MB"
    )


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def detect_format(media_type: Optional[str], filename: Optional[str]) -> str:
    """
    Classify input from declared media type first, then extension, then a
    generic text fallback. Raises FormatError when nothing matches.
    """
    mime = (media_type or "").strip().lower()
    name = (filename or "").strip().lower()

    if "csv" in mime:
        return FORMAT_CSV
    if "sheet" in mime or "excel" in mime or mime in EXCEL_MEDIA_TYPES:
        return FORMAT_EXCEL
    if "json" in mime:
        return FORMAT_JSON

    suffix = Path(name).suffix
    if suffix in CSV_EXTENSIONS:
        return FORMAT_CSV
    if suffix in EXCEL_EXTENSIONS:
        return FORMAT_EXCEL
    if suffix in JSON_EXTENSIONS:
        return FORMAT_JSON

    if mime.startswith("text/") or "text" in mime:
        return FORMAT_CSV

    raise FormatError(
        "Unable to detect file format. Supported formats: CSV, Excel (.xlsx/.xls), JSON"
    )


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING + DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw[:200_000])
    detected = result.get("encoding") or "utf-8"
    return detected


def _decode_text(raw: bytes) -> tuple[str, str]:
    """
    Decode raw bytes, tolerating mixed encodings line by line.

    Per line: UTF-8, then the detected encoding, then latin-1, then
    CP1252 with replacement. BOM and null bytes are stripped.
    """
    detected = _detect_encoding(raw)
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", detected, "latin-1"):
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    text = "\n".join(decoded_lines)
    return text.lstrip("\ufeff"), detected


def _detect_delimiter(text: str) -> str:
    """
    Infer the CSV delimiter from sample lines.

    csv.Sniffer first; otherwise score each candidate by column-count
    consistency and width.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in (",", ";", "\t", "|"):
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        widths = [len(row) for row in rows]
        mode_width, mode_count = Counter(widths).most_common(1)[0]
        score = (mode_width * 2.0) + (mode_count / len(widths)) * mode_width
        if len(rows[0]) == mode_width:
            score += 1.0
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# CELL HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def _cell(value: Any) -> CellValue:
    """Coerce a parser cell into the small set of types rows may hold."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, str)):
        if isinstance(value, float) and pd.isna(value):
            return None
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(value, "item"):
        # numpy scalars from pandas frames
        return _cell(value.item())
    return str(value)


def _rows_from_grid(
    grid: list[tuple[Any, ...]],
    options: ParseOptions,
    file_format: str,
) -> tuple[list[str], dict[str, str], list[RawRow]]:
    """Turn a header-first cell grid into canonical rows."""
    if not grid:
        raise FormatError("Excel file is empty", file_format)

    headers = ["" if cell is None else str(cell).strip() for cell in grid[0]]
    raw_headers = [h for h in headers if h]
    if not raw_headers:
        raise FormatError("No headers found in Excel file", file_format)

    header_mapping = build_header_mapping(raw_headers, options.header_mapping)
    rows: list[RawRow] = []
    for values in grid[1:]:
        raw: dict[str, CellValue] = {}
        for position, header in enumerate(headers):
            if not header or position >= len(values):
                continue
            value = _cell(values[position])
            if value is None or value == "":
                continue
            raw[header] = value
        if not raw and options.skip_blank_rows:
            continue
        rows.append(apply_header_mapping(raw, header_mapping, trim_values=options.trim_values))
    return raw_headers, header_mapping, rows


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT PARSERS
# ══════════════════════════════════════════════════════════════════════════════

def parse_csv(data: bytes, options: Optional[ParseOptions] = None) -> ParseResult:
    """Parse CSV bytes; the first row is the header."""
    options = options or ParseOptions()
    text, encoding = _decode_text(data)
    if not text.strip():
        raise FormatError("No headers found in CSV file", FORMAT_CSV)

    delimiter = _detect_delimiter(text)
    warnings: list[str] = []
    bad_lines: list[int] = []

    def _on_bad_line(fields: list[str]) -> None:
        bad_lines.append(len(fields))
        return None

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=options.skip_blank_rows,
            on_bad_lines=_on_bad_line,
            engine="python",
        )
    except pd.errors.EmptyDataError as exc:
        raise FormatError("No headers found in CSV file", FORMAT_CSV) from exc
    except (pd.errors.ParserError, csv.Error, ValueError) as exc:
        raise FormatError(f"CSV parsing failed: {exc}", FORMAT_CSV) from exc

    expected_width = len(df.columns)
    for width in bad_lines:
        warnings.append(
            f"Skipped malformed row with {width} fields (expected {expected_width})"
        )

    raw_headers: list[str] = []
    dropped_unnamed = False
    for column in df.columns:
        name = str(column).strip()
        if name.startswith("Unnamed: "):
            if df[column].fillna("").astype(str).str.strip().ne("").any():
                dropped_unnamed = True
            continue
        raw_headers.append(name)
    if dropped_unnamed:
        warnings.append("Values under blank header cells were ignored")
    if not raw_headers:
        raise FormatError("No headers found in CSV file", FORMAT_CSV)

    header_mapping = build_header_mapping(raw_headers, options.header_mapping)
    rows: list[RawRow] = []
    for record in df.to_dict(orient="records"):
        raw = {
            str(key).strip(): _cell(value)
            for key, value in record.items()
            if str(key).strip() in header_mapping
        }
        row = apply_header_mapping(raw, header_mapping, trim_values=options.trim_values)
        if not row and options.skip_blank_rows:
            continue
        rows.append(row)

    return ParseResult(
        rows=rows,
        header_mapping=header_mapping,
        format=FORMAT_CSV,
        warnings=warnings,
        raw_headers=raw_headers,
        encoding=encoding,
        delimiter=delimiter,
    )


def parse_excel(data: bytes, filename: str = "", options: Optional[ParseOptions] = None) -> ParseResult:
    """
    Parse the first worksheet of a workbook; the first row is the header.

    .xlsx/.xlsm are read with openpyxl. Legacy .xls goes through pandas
    and requires xlrd.
    """
    options = options or ParseOptions()
    warnings: list[str] = []

    if Path(filename.lower()).suffix == ".xls":
        grid, sheet_name, all_sheets = _read_xls_grid(data)
    else:
        grid, sheet_name, all_sheets = _read_xlsx_grid(data)

    if len(all_sheets) > 1:
        others = [name for name in all_sheets if name != sheet_name]
        warnings.append(
            f"Multiple sheets found ({len(all_sheets)} total); used '{sheet_name}'. Ignored: {others}"
        )

    raw_headers, header_mapping, rows = _rows_from_grid(grid, options, FORMAT_EXCEL)
    return ParseResult(
        rows=rows,
        header_mapping=header_mapping,
        format=FORMAT_EXCEL,
        warnings=warnings,
        raw_headers=raw_headers,
        sheet_name=sheet_name,
    )


def _read_xlsx_grid(data: bytes) -> tuple[list[tuple[Any, ...]], str, list[str]]:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise FormatError(f"Excel parsing error: could not open workbook: {exc}", FORMAT_EXCEL) from exc

    try:
        if not workbook.worksheets:
            raise FormatError("No worksheets found in Excel file", FORMAT_EXCEL)
        sheet = workbook.worksheets[0]
        grid = list(sheet.iter_rows(values_only=True))
        return grid, sheet.title, list(workbook.sheetnames)
    finally:
        workbook.close()


def _read_xls_grid(data: bytes) -> tuple[list[tuple[Any, ...]], str, list[str]]:
    try:
        import xlrd  # noqa: F401
    except ImportError:
        raise ImportError(".xls files require xlrd — run: pip install xlrd")

    try:
        with pd.ExcelFile(io.BytesIO(data), engine="xlrd") as workbook:
            all_sheets = [str(name) for name in workbook.sheet_names]
            if not all_sheets:
                raise FormatError("No worksheets found in Excel file", FORMAT_EXCEL)
            frame = workbook.parse(workbook.sheet_names[0], header=None, dtype=object)
    except FormatError:
        raise
    except Exception as exc:
        raise FormatError(f"Excel parsing error: could not open workbook: {exc}", FORMAT_EXCEL) from exc

    grid = [tuple(_cell(value) for value in row) for row in frame.itertuples(index=False, name=None)]
    return grid, all_sheets[0], all_sheets


def parse_json(data: bytes, options: Optional[ParseOptions] = None) -> ParseResult:
    """
    Parse a JSON array of flat objects.

    Objects need not share keys: the header set is the union of every
    object's keys in first-seen order. An empty array yields zero rows
    and a warning.
    """
    options = options or ParseOptions()
    text, encoding = _decode_text(data)

    try:
        payload = _json.loads(text)
    except _json.JSONDecodeError as exc:
        raise FormatError(f"Invalid JSON format: {exc}", FORMAT_JSON) from exc

    if not isinstance(payload, list):
        raise FormatError("JSON file must contain an array of objects", FORMAT_JSON)

    if not payload:
        return ParseResult(
            rows=[],
            header_mapping={},
            format=FORMAT_JSON,
            warnings=["JSON file is empty"],
            encoding=encoding,
        )

    if not isinstance(payload[0], dict):
        raise FormatError("JSON array must contain objects", FORMAT_JSON)

    warnings: list[str] = []
    raw_headers: list[str] = []
    seen: set[str] = set()
    for item in payload:
        if isinstance(item, dict):
            for key in item:
                if key not in seen:
                    seen.add(key)
                    raw_headers.append(key)

    header_mapping = build_header_mapping(raw_headers, options.header_mapping)
    nested_fields: set[str] = set()
    rows: list[RawRow] = []
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            warnings.append(f"Row {index}: Expected object, got {type(item).__name__}")
            continue
        raw: dict[str, CellValue] = {}
        for key, value in item.items():
            if isinstance(value, dict):
                nested_fields.add(key)
                value = _json.dumps(value, sort_keys=True)
            raw[key] = _cell(value)
        row = apply_header_mapping(raw, header_mapping, trim_values=options.trim_values)
        if not row and options.skip_blank_rows:
            continue
        rows.append(row)

    if nested_fields:
        warnings.append(
            f"Nested objects are not supported and were kept as text: {sorted(nested_fields)}"
        )

    return ParseResult(
        rows=rows,
        header_mapping=header_mapping,
        format=FORMAT_JSON,
        warnings=warnings,
        raw_headers=raw_headers,
        encoding=encoding,
    )


# ══════════════════════════════════════════════════════════════════════════════
# ROW LIMITS
# ══════════════════════════════════════════════════════════════════════════════

def _apply_row_limits(result: ParseResult, options: ParseOptions) -> ParseResult:
    if options.max_rows and len(result.rows) > options.max_rows:
        result.warnings.append(
            f"Only the first {options.max_rows} of {len(result.rows)} rows were kept (max_rows)"
        )
        result.rows = result.rows[: options.max_rows]

    soft = options.row_warning_count if options.row_warning_count is not None else ROW_WARNING_COUNT
    hard = options.row_hard_limit if options.row_hard_limit is not None else ROW_HARD_LIMIT_COUNT
    count = len(result.rows)

    if count > soft:
        result.warnings.append(
            f"Large file detected: {count} rows exceed the recommended limit of {soft} rows. "
            "Consider splitting the file into smaller chunks."
        )
    if count > hard:
        result.exceeds_hard_limit = True
        result.warnings.append(
            f"File too large: {count} rows exceed the maximum limit of {hard} rows. "
            "Split the file into smaller chunks before importing."
        )
    return result


def _missing_column_warning(result: ParseResult) -> None:
    if not result.header_mapping:
        return
    present = set(result.header_mapping.values())
    missing = [name for name in REQUIRED_COLUMNS if name not in present]
    if "semesterId" not in present and "semesterLevel" not in present:
        missing.append("semesterId")
    if missing:
        result.warnings.append(f"Missing expected columns: {', '.join(missing)}")


def _header_collision_warnings(result: ParseResult) -> None:
    for canonical, raws in find_header_collisions(result.header_mapping).items():
        quoted = ", ".join(f"'{raw}'" for raw in raws)
        result.warnings.append(
            f"Columns {quoted} all map to '{canonical}'; the last non-empty value in each row is used"
        )


def enforce_row_limits(result: ParseResult, policy: str = "reject") -> None:
    """Reject a result over the hard row ceiling unless the policy is 'warn'."""
    if result.exceeds_hard_limit and policy == "reject":
        raise FileAccessError(
            f"File has {result.total_rows} rows, above the hard row limit; split it before importing"
        )


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def parse_bytes(
    data: bytes,
    *,
    filename: str = "",
    media_type: Optional[str] = None,
    options: Optional[ParseOptions] = None,
) -> ParseResult:
    """Detect the format of already-read bytes and parse them."""
    options = options or ParseOptions()
    file_format = detect_format(media_type, filename)

    if file_format == FORMAT_CSV:
        result = parse_csv(data, options)
    elif file_format == FORMAT_EXCEL:
        result = parse_excel(data, filename, options)
    else:
        result = parse_json(data, options)

    _header_collision_warnings(result)
    _missing_column_warning(result)
    result = _apply_row_limits(result, options)
    logger.info(
        "Parsed %s as %s: %d rows, %d warnings",
        filename or "<bytes>",
        result.format,
        result.total_rows,
        len(result.warnings),
    )
    return result


def parse_source(
    source: FileSource,
    config: Optional[ImportConfig] = None,
    *,
    context: Optional[RunContext] = None,
) -> ParseResult:
    """Read a FileSource under the byte ceiling and parse it."""
    config = config or ImportConfig(max_file_bytes=MAX_FILE_BYTES)
    data = read_source(source, max_bytes=config.max_file_bytes, context=context)
    return parse_bytes(
        data,
        filename=source.filename,
        media_type=source.media_type,
        options=ParseOptions.from_config(config),
    )


def load_file(path: "str | Path", config: Optional[ImportConfig] = None, media_type: Optional[str] = None) -> ParseResult:
    return parse_source(FileSource.from_path(path, media_type), config)


def header_overrides(pairs: Mapping[str, str] | None) -> dict[str, str]:
    return {str(k).strip(): str(v).strip() for k, v in (pairs or {}).items() if str(k).strip()}
