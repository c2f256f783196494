# app/services/column_mapper.py
import csv
import io
import logging
import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from openpyxl import load_workbook

from app.core.errors import InvalidValue, MissingRequiredField
from app.schemas.imports import NumberFormat, ParsedRow
from app.services.normalizer import parse_number

logger = logging.getLogger(__name__)

DATE_KEYWORDS = re.compile(r"datum|date|zeit|time|tag|monat", re.IGNORECASE)
VALUE_KEYWORDS = re.compile(r"stand|wert|value|reading|verbrauch|kwh|m³|cbm|zähler", re.IGNORECASE)

# (pattern, group order as (year, month, day)); tried in order, first prefix match wins
DATE_PATTERNS: List[Tuple[re.Pattern, Tuple[int, int, int]]] = [
    (re.compile(r"^(\d{4})-(\d{2})-(\d{2})"), (1, 2, 3)),   # ISO
    (re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})"), (3, 2, 1)),  # DD.MM.YYYY
    (re.compile(r"^(\d{2})/(\d{2})/(\d{4})"), (3, 2, 1)),    # DD/MM/YYYY
    (re.compile(r"^(\d{2})-(\d{2})-(\d{4})"), (3, 2, 1)),    # DD-MM-YYYY
]

CSV_DELIMITERS = ";,\t"


def suggest_columns(columns: Iterable[str]) -> Tuple[Optional[str], Optional[str]]:
    """First header that looks like a date, first that looks like a meter value."""
    date_column = value_column = None
    for col in columns:
        if date_column is None and DATE_KEYWORDS.search(col):
            date_column = col
        if value_column is None and VALUE_KEYWORDS.search(col):
            value_column = col
    return date_column, value_column


def parse_date(cell) -> Optional[date]:
    if cell is None:
        return None
    if isinstance(cell, datetime):
        return cell.date()
    if isinstance(cell, date):
        return cell
    text = str(cell).strip()
    for pattern, (y, m, d) in DATE_PATTERNS:
        match = pattern.match(text)
        if match:
            try:
                return date(int(match.group(y)), int(match.group(m)), int(match.group(d)))
            except ValueError:
                # 31.02.2024 and friends
                return None
    return None


def parse_value(cell, number_format: NumberFormat = "auto") -> Optional[float]:
    if cell is None or (isinstance(cell, str) and not cell.strip()):
        return None
    try:
        return parse_number(cell, number_format)
    except InvalidValue:
        return None


def map_rows(
    rows: List[Dict[str, str]],
    date_column: Optional[str],
    value_column: Optional[str],
    number_format: NumberFormat = "auto",
) -> Tuple[List[ParsedRow], int]:
    """
    Apply a confirmed column mapping.

    Returns the parsed rows sorted by date and the number of rows dropped
    because their date or value could not be read.
    """
    if not date_column:
        raise MissingRequiredField("date_column", "Choose the column holding the reading date")
    if not value_column:
        raise MissingRequiredField("value_column", "Choose the column holding the meter value")

    parsed: List[ParsedRow] = []
    dropped = 0
    for row in rows:
        reading_date = parse_date(row.get(date_column))
        value = parse_value(row.get(value_column), number_format)
        if reading_date is None or value is None:
            dropped += 1
            continue
        parsed.append(ParsedRow(date=reading_date.isoformat(), value=value))

    # ISO strings sort chronologically
    parsed.sort(key=lambda r: r.date)
    return parsed, dropped


def count_duplicates(rows: Iterable[ParsedRow], existing_dates: Iterable[str]) -> int:
    existing = set(existing_dates)
    return sum(1 for r in rows if r.date in existing)


def _strip_cell(value) -> str:
    if value is None:
        return ""
    return str(value).strip().strip('"').strip()


def parse_csv(text: str) -> Tuple[List[str], List[Dict[str, str]]]:
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise MissingRequiredField("data", "The file contains no data rows")

    try:
        dialect = csv.Sniffer().sniff("\n".join(lines[:10]), delimiters=CSV_DELIMITERS)
        delimiter = dialect.delimiter
    except csv.Error:
        # Header with a single column or ambiguous quoting: count candidates
        delimiter = max(CSV_DELIMITERS, key=lines[0].count)

    reader = csv.reader(io.StringIO("\n".join(lines)), delimiter=delimiter)
    table = list(reader)
    headers = [_strip_cell(h) for h in table[0]]

    data: List[Dict[str, str]] = []
    for values in table[1:]:
        row = {h: _strip_cell(values[i]) if i < len(values) else "" for i, h in enumerate(headers)}
        if any(row.values()):
            data.append(row)

    logger.info(f"CSV parsed: {len(headers)} columns, {len(data)} rows, delimiter {delimiter!r}")
    return headers, data


def _xlsx_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def parse_xlsx(content: bytes) -> Tuple[List[str], List[Dict[str, str]]]:
    """First row is the header row; empty rows are skipped."""
    wb = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    sheet = wb.active

    rows = sheet.iter_rows(values_only=True)
    try:
        header_row = next(rows)
    except StopIteration:
        raise MissingRequiredField("data", "The workbook is empty")

    headers = [_xlsx_cell(h) or f"Spalte {i + 1}" for i, h in enumerate(header_row)]
    data: List[Dict[str, str]] = []
    for values in rows:
        row = {h: _xlsx_cell(values[i]) if i < len(values) else "" for i, h in enumerate(headers)}
        if any(row.values()):
            data.append(row)

    wb.close()
    if not data:
        raise MissingRequiredField("data", "The file contains no data rows")
    logger.info(f"XLSX parsed: {len(headers)} columns, {len(data)} rows")
    return headers, data
