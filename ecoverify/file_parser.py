# -*- coding: utf-8 -*-
"""
Evidence File Parser

Parses structured evidence content (JSON, CSV, Excel, plain text) into a
``ParsedData`` view and extracts water measurement fields from tabular data
for use by methodology calculations.

Format detection checks the MIME type first and falls back to the file
extension. Content whose format cannot be determined is returned as
``ParsedFormat.UNKNOWN`` rather than rejected; malformed content in a known
format raises ``FileParseError``.

Supports:
    - JSON documents and arrays of records
    - CSV with a header row via the csv module
    - .xlsx workbooks via openpyxl (first sheet by default)
    - Plain text and log files split into lines
    - Row limits to bound memory on large uploads

Example:
    >>> from ecoverify.file_parser import FileParser, extract_measurement_fields
    >>> parser = FileParser()
    >>> parsed = parser.parse(b"date,water_volume\\n2024-01-01,1200\\n", "flow.csv", "text/csv")
    >>> parsed.format.value, parsed.row_count, parsed.columns
    ('csv', 1, ['date', 'water_volume'])
    >>> extract_measurement_fields(parsed)["water_volume"]
    '1200'
"""

from __future__ import annotations

import csv
import io
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import openpyxl

from ecoverify.exceptions import FileParseError
from ecoverify.models import ParsedData, ParsedFormat

logger = logging.getLogger(__name__)

_UTF8_BOM = b"\xef\xbb\xbf"

_EXTENSION_MAP: Dict[str, ParsedFormat] = {
    "json": ParsedFormat.JSON,
    "csv": ParsedFormat.CSV,
    "xlsx": ParsedFormat.EXCEL,
    "xlsm": ParsedFormat.EXCEL,
    "xls": ParsedFormat.EXCEL,
    "txt": ParsedFormat.TEXT,
    "log": ParsedFormat.TEXT,
}

# Fields copied from the first record of tabular data.
MEASUREMENT_FIELDS = (
    "water_volume", "volume",
    "baseline_water_volume", "baseline_volume", "baseline",
    "project_water_volume", "project_volume",
    "measurement_period", "period",
    "latitude", "longitude",
    "accuracy", "uncertainty",
    "date", "timestamp", "measurement_date",
)

# Fields aggregated across all rows when more than one row is present.
AGGREGATED_FIELDS = (
    "water_volume", "volume",
    "baseline_water_volume", "baseline_volume",
    "project_water_volume",
)


@dataclass(frozen=True)
class ParseOptions:
    """Options controlling a single parse.

    Attributes:
        max_rows: Maximum records kept in ``ParsedData.data``.
        encoding: Text encoding for JSON, CSV and text content.
        csv_delimiter: CSV field separator.
        skip_empty_lines: Drop blank CSV and spreadsheet rows.
        sheet_index: Worksheet index used when ``sheet_name`` is not given.
        sheet_name: Worksheet name to read.
    """

    max_rows: int = 10000
    encoding: str = "utf-8"
    csv_delimiter: str = ","
    skip_empty_lines: bool = True
    sheet_index: int = 0
    sheet_name: Optional[str] = None


def _normalise_key(key: Any) -> str:
    return str(key).strip().lower().replace(" ", "_").replace("-", "_")


def _decode(content: bytes, encoding: str) -> str:
    if content.startswith(_UTF8_BOM):
        return content[len(_UTF8_BOM):].decode("utf-8")
    return content.decode(encoding)


class FileParser:
    """Parses evidence bytes into structured data.

    Stateless apart from default options; safe to share across threads.

    Example:
        >>> parser = FileParser(ParseOptions(max_rows=500))
        >>> parsed = parser.parse(b"[]", "readings.json", "application/json")
        >>> parsed.row_count
        0
    """

    def __init__(self, options: Optional[ParseOptions] = None) -> None:
        self._options = options or ParseOptions()

    def detect_format(self, file_name: str, mime_type: Optional[str]) -> ParsedFormat:
        """Detect a file's format from its MIME type, then its extension."""
        mime = (mime_type or "").lower()
        if "json" in mime:
            return ParsedFormat.JSON
        if "csv" in mime:
            return ParsedFormat.CSV
        if "sheet" in mime or "excel" in mime:
            return ParsedFormat.EXCEL
        if "text" in mime:
            return ParsedFormat.TEXT

        extension = file_name.lower().rsplit(".", 1)[-1] if "." in file_name else ""
        return _EXTENSION_MAP.get(extension, ParsedFormat.UNKNOWN)

    def parse(
        self,
        content: bytes,
        file_name: str,
        mime_type: Optional[str],
        options: Optional[ParseOptions] = None,
    ) -> ParsedData:
        """Parse file content.

        Args:
            content: Raw file bytes.
            file_name: Original file name, used for extension detection.
            mime_type: Declared MIME type.
            options: Per-call options overriding the parser defaults.

        Returns:
            ParsedData for the detected format.

        Raises:
            FileParseError: If the content is malformed for its format.
        """
        opts = options or self._options
        fmt = self.detect_format(file_name, mime_type)
        logger.debug(
            "Parsing %s (%s, %d bytes) as %s",
            file_name, mime_type, len(content), fmt.value,
        )

        if fmt == ParsedFormat.UNKNOWN:
            return ParsedData(
                format=ParsedFormat.UNKNOWN,
                data=None,
                metadata={"original_size": len(content), "mime_type": mime_type},
            )

        try:
            if fmt == ParsedFormat.JSON:
                parsed = self._parse_json(content, opts)
            elif fmt == ParsedFormat.CSV:
                parsed = self._parse_csv(content, opts)
            elif fmt == ParsedFormat.EXCEL:
                parsed = self._parse_excel(content, opts)
            else:
                parsed = self._parse_text(content, opts)
        except FileParseError:
            raise
        except Exception as exc:
            logger.error("Failed to parse %s as %s: %s", file_name, fmt.value, exc)
            raise FileParseError(
                message=f"File parsing failed: {exc}",
                file_name=file_name,
                detected_format=fmt.value,
                cause=exc,
            ) from exc

        logger.info(
            "Parsed %s: format=%s, rows=%s, columns=%d",
            file_name, parsed.format.value, parsed.row_count, len(parsed.columns),
        )
        return parsed

    # ------------------------------------------------------------------
    # Format parsers
    # ------------------------------------------------------------------

    def _parse_json(self, content: bytes, opts: ParseOptions) -> ParsedData:
        data = json.loads(_decode(content, opts.encoding))
        row_count: Optional[int] = None
        columns: List[str] = []

        if isinstance(data, list):
            row_count = len(data)
            if data and isinstance(data[0], dict):
                columns = [str(k) for k in data[0]]
            data = data[:opts.max_rows]

        return ParsedData(
            format=ParsedFormat.JSON,
            data=data,
            row_count=row_count,
            columns=columns,
            metadata={"original_size": len(content), "encoding": opts.encoding},
        )

    def _parse_csv(self, content: bytes, opts: ParseOptions) -> ParsedData:
        text = _decode(content, opts.encoding)
        reader = csv.DictReader(io.StringIO(text), delimiter=opts.csv_delimiter)
        rows: List[Dict[str, Any]] = []
        for record in reader:
            if opts.skip_empty_lines and all(
                v is None or str(v).strip() == "" for v in record.values()
            ):
                continue
            if len(rows) >= opts.max_rows:
                break
            rows.append(record)

        return ParsedData(
            format=ParsedFormat.CSV,
            data=rows,
            row_count=len(rows),
            columns=list(reader.fieldnames or []),
            metadata={
                "original_size": len(content),
                "separator": opts.csv_delimiter,
                "has_headers": True,
                "encoding": opts.encoding,
            },
        )

    def _parse_excel(self, content: bytes, opts: ParseOptions) -> ParsedData:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        try:
            sheet_names = list(wb.sheetnames)
            if opts.sheet_name is not None:
                if opts.sheet_name not in sheet_names:
                    raise FileParseError(
                        message=f"Sheet not found: {opts.sheet_name}",
                        detected_format=ParsedFormat.EXCEL.value,
                    )
                sheet_name = opts.sheet_name
            elif 0 <= opts.sheet_index < len(sheet_names):
                sheet_name = sheet_names[opts.sheet_index]
            elif sheet_names:
                sheet_name = sheet_names[0]
            else:
                raise FileParseError(
                    message="Workbook contains no sheets",
                    detected_format=ParsedFormat.EXCEL.value,
                )

            raw_rows = [list(r) for r in wb[sheet_name].iter_rows(values_only=True)]
        finally:
            wb.close()

        if opts.skip_empty_lines:
            raw_rows = [r for r in raw_rows if any(v is not None and v != "" for v in r)]

        metadata = {
            "original_size": len(content),
            "sheet_name": sheet_name,
            "available_sheets": sheet_names,
            "total_sheets": len(sheet_names),
        }
        if not raw_rows:
            return ParsedData(
                format=ParsedFormat.EXCEL, data=[], row_count=0, metadata=metadata,
            )

        header_cells = [
            (i, str(h).strip()) for i, h in enumerate(raw_rows[0]) if h is not None
        ]
        headers = [h for _, h in header_cells]
        data_rows = raw_rows[1:]
        records = [
            {header: (row[i] if i < len(row) else None) for i, header in header_cells}
            for row in data_rows[:opts.max_rows]
        ]
        return ParsedData(
            format=ParsedFormat.EXCEL,
            data=records,
            row_count=len(data_rows),
            columns=headers,
            metadata=metadata,
        )

    def _parse_text(self, content: bytes, opts: ParseOptions) -> ParsedData:
        text = _decode(content, opts.encoding)
        lines = text.splitlines()
        return ParsedData(
            format=ParsedFormat.TEXT,
            data={"full_text": text, "lines": lines[:opts.max_rows]},
            row_count=len(lines),
            metadata={
                "original_size": len(content),
                "line_count": len(lines),
                "encoding": opts.encoding,
                "truncated": len(lines) > opts.max_rows,
            },
        )


# ---------------------------------------------------------------------------
# Measurement field extraction
# ---------------------------------------------------------------------------


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def extract_measurement_fields(parsed: ParsedData) -> Dict[str, Any]:
    """Pull water measurement fields out of tabular parsed data.

    Copies recognised fields from the first record and, for multi-row data,
    adds ``_sum``/``_avg``/``_min``/``_max``/``_count`` aggregates of the
    volume fields. Column names are matched case-insensitively with spaces
    and hyphens treated as underscores.

    Args:
        parsed: Output of ``FileParser.parse``.

    Returns:
        Dictionary of extracted fields; empty for non-tabular formats.
    """
    if parsed.format not in (ParsedFormat.JSON, ParsedFormat.CSV, ParsedFormat.EXCEL):
        return {}

    rows = parsed.data if isinstance(parsed.data, list) else [parsed.data]
    records: List[Mapping[str, Any]] = [
        {_normalise_key(k): v for k, v in row.items()}
        for row in rows if isinstance(row, Mapping)
    ]
    fields: Dict[str, Any] = {}

    if records:
        first = records[0]
        for name in MEASUREMENT_FIELDS:
            if name in first:
                fields[name] = first[name]

        if len(records) > 1:
            for name in AGGREGATED_FIELDS:
                if name not in first:
                    continue
                values = [
                    n for n in (_as_number(r.get(name)) for r in records)
                    if n is not None
                ]
                if values:
                    fields[f"{name}_sum"] = sum(values)
                    fields[f"{name}_avg"] = sum(values) / len(values)
                    fields[f"{name}_min"] = min(values)
                    fields[f"{name}_max"] = max(values)
                    fields[f"{name}_count"] = len(values)

    fields["data_row_count"] = len(rows)
    fields["data_columns"] = list(parsed.columns)
    fields["data_format"] = parsed.format.value
    return fields


__all__ = [
    "FileParser",
    "ParseOptions",
    "extract_measurement_fields",
    "MEASUREMENT_FIELDS",
]
