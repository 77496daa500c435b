"""Spreadsheet reading/writing shared by the import wizards and exports."""

from __future__ import annotations

import csv
import io
import re
import zipfile
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from brokerdesk.errors import ValidationError

EXCEL_EPOCH = date(1899, 12, 30)
HEADER_FILL = PatternFill(start_color="1E3A5F", end_color="1E3A5F", fill_type="solid")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DMY_SLASH = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_DMY_DASH = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")


def _cell_text(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _read_csv(content: bytes) -> tuple[list[str], list[dict[str, Any]]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Spanish Excel saves "CSV" as Windows-1252.
        text = content.decode("cp1252", errors="replace")
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    reader = csv.DictReader(io.StringIO(text), dialect=dialect)
    headers = [h.strip() for h in (reader.fieldnames or []) if h and h.strip()]
    rows = []
    for raw in reader:
        row = {(k or "").strip(): _cell_text(v) for k, v in raw.items() if k}
        if any(v is not None for v in row.values()):
            rows.append(row)
    return headers, rows


def _read_xlsx(content: bytes) -> tuple[list[str], list[dict[str, Any]]]:
    try:
        wb = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError) as exc:
        raise ValidationError.field("file", "El archivo Excel está dañado o no es un .xlsx válido") from exc
    ws = wb.worksheets[0]
    rows_iter = ws.iter_rows(values_only=True)
    header_row = next(rows_iter, None)
    if header_row is None:
        wb.close()
        return [], []
    headers = [str(h).strip() if h is not None else "" for h in header_row]
    rows = []
    for values in rows_iter:
        row = {
            header: _cell_text(value)
            for header, value in zip(headers, values)
            if header
        }
        if any(v is not None for v in row.values()):
            rows.append(row)
    wb.close()
    return [h for h in headers if h], rows


def read_table(filename: str, content: bytes) -> tuple[list[str], list[dict[str, Any]]]:
    """Parse an uploaded .csv or .xlsx into (headers, rows keyed by header)."""
    suffix = Path(filename or "").suffix.lower()
    if suffix == ".csv":
        headers, rows = _read_csv(content)
    elif suffix in {".xlsx", ".xlsm"}:
        headers, rows = _read_xlsx(content)
    else:
        raise ValidationError.field("file", "Formato no soportado. Usa un archivo .xlsx o .csv")
    if not rows:
        raise ValidationError.field("file", "El archivo no contiene datos")
    return headers, rows


def parse_date(value: Any) -> str | None:
    """Normalize a spreadsheet date cell to YYYY-MM-DD, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value <= 0:
            return None
        return (EXCEL_EPOCH + timedelta(days=int(value))).isoformat()

    text = str(value).strip()
    try:
        if _ISO_DATE.match(text):
            return date.fromisoformat(text[:10]).isoformat()
        m = _DMY_SLASH.match(text) or _DMY_DASH.match(text)
        if m:
            day, month, year = (int(part) for part in m.groups())
            return date(year, month, day).isoformat()
    except ValueError:
        return None
    try:
        serial = float(text)
    except ValueError:
        return None
    return parse_date(serial)


def parse_amount(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    cleaned = re.sub(r"[^0-9.\-]", "", str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def cell_str(row: dict[str, Any], column: str | None) -> str | None:
    if not column:
        return None
    value = row.get(column)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def build_workbook(sheets: list[tuple[str, list[str], list[list[Any]]]]) -> bytes:
    """Write sheets given as (title, headers, rows) and return the xlsx bytes."""
    wb = Workbook()
    wb.remove(wb.active)
    for title, headers, rows in sheets:
        ws = wb.create_sheet(title=title[:31])
        ws.append(headers)
        for cell in ws[1]:
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = HEADER_FILL
            cell.alignment = Alignment(horizontal="center", vertical="center")
        for row in rows:
            ws.append(list(row))
        for idx, header in enumerate(headers, start=1):
            longest = max([len(str(header))] + [len(str(r[idx - 1] or "")) for r in rows if len(r) >= idx])
            ws.column_dimensions[get_column_letter(idx)].width = min(max(longest + 2, 10), 45)
        ws.freeze_panes = "A2"
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
