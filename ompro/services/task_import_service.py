"""
Task Import Service — spreadsheet → Pending tasks.

Pipeline:
  1. read_spreadsheet   first worksheet (.xlsx/.xlsm) or .csv → headers + raw rows
  2. resolve columns    explicit mapping from the preview step, else automatic
  3. build_task_rows    coerce cells, fill defaults, stamp the importing user
  4. write              chunks of IMPORT_BATCH_SIZE, one commit per chunk

A failing chunk is rolled back; chunks committed before it stay in place and
the error reports how many rows made it. Each committed chunk is announced on
the change feed as ``added`` events.
"""

import csv
import io
import logging
import numbers
import os
import zipfile
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from flask import current_app
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import SQLAlchemyError

from ompro.core.exceptions import NotFoundError, ValidationError
from ompro.models import db
from ompro.models.maintenance import STATUS_PENDING, Group, Task
from ompro.services.change_feed import ADDED, publish_task_event
from ompro.services.column_resolver import (
    TASK_COLUMNS,
    apply_explicit_mapping,
    resolve_columns,
    suggest_mapping,
)
from ompro.services.permission import TASKS_IMPORT, check_capability
from ompro.utils.helpers import format_dmy_date

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm", ".csv")
EMPTY_HEADER = "__EMPTY"

# Spreadsheet serial dates count days from 1899-12-30; numbers in this range
# are treated as dates rather than quantities.
SERIAL_DATE_MIN = 30000
SERIAL_DATE_MAX = 60000
SERIAL_EPOCH = date(1899, 12, 30)

PREVIEW_ROWS = 5

# Column widths in the tasks table
_FIELD_MAX_LENGTH = {
    "om_number": 255,
    "work_center": 255,
    "circuit": 255,
    "min_date": 40,
    "max_date": 40,
}


class TaskImportError(Exception):
    """Import failure with the number of rows already committed."""

    def __init__(self, message, status_code=500, committed=0, total=0):
        self.message = message
        self.status_code = status_code
        self.committed = committed
        self.total = total
        super().__init__(message)


class EmptySpreadsheetError(TaskImportError):
    def __init__(self):
        super().__init__("Spreadsheet has no data rows", status_code=400)


# ═══════════════════════════════════════════════════════════════
# Reading
# ═══════════════════════════════════════════════════════════════

def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _read_xlsx_rows(content: bytes) -> list:
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ValidationError("Could not read the workbook", details={"file": str(exc)}) from exc
    try:
        if not wb.worksheets:
            return []
        return [list(row) for row in wb.worksheets[0].iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_csv_rows(content: bytes) -> list:
    try:
        text = content.decode("utf-8-sig")  # Handle BOM
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    return [list(row) for row in csv.reader(io.StringIO(text), dialect)]


def _used_width(row) -> int:
    """Index after the last non-blank cell (0 for a blank row)."""
    for i in range(len(row) - 1, -1, -1):
        if not _is_blank(row[i]):
            return i + 1
    return 0


def _name_headers(raw_headers) -> list:
    """Stringify header cells; blank → __EMPTY, __EMPTY_1...; duplicates → NAME_1, NAME_2."""
    names = []
    used = set()
    counts = {}
    for cell in raw_headers:
        base = EMPTY_HEADER if _is_blank(cell) else format_cell_value(cell)
        name = base
        while name in used:
            counts[base] = counts.get(base, 0) + 1
            name = f"{base}_{counts[base]}"
        used.add(name)
        names.append(name)
    return names


def read_spreadsheet(filename: str, content: bytes):
    """Return ``(headers, rows)`` for the first sheet of an uploaded file.

    The header row is the first row with at least two non-empty cells; rows
    above it (titles, export banners) are ignored. Fully blank rows are skipped.
    Trailing columns are kept while any row below the header has data in them.
    """
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValidationError(
            f"Unsupported file type '{ext or filename}'. "
            f"Supported formats: {', '.join(SUPPORTED_EXTENSIONS)}",
            details={"file": "unsupported format"},
        )

    raw_rows = _read_csv_rows(content) if ext == ".csv" else _read_xlsx_rows(content)

    header_idx = next(
        (i for i, row in enumerate(raw_rows)
         if sum(1 for cell in row if not _is_blank(cell)) >= 2),
        None,
    )
    if header_idx is None:
        return [], []

    # Columns with data but no header are kept as __EMPTY_n
    data_rows = raw_rows[header_idx + 1:]
    width = max([_used_width(raw_rows[header_idx])] + [_used_width(r) for r in data_rows])
    raw_headers = list(raw_rows[header_idx][:width])
    raw_headers += [None] * (width - len(raw_headers))
    headers = _name_headers(raw_headers)

    rows = []
    for raw in data_rows:
        cells = list(raw[:len(headers)])
        if all(_is_blank(c) for c in cells):
            continue
        cells += [None] * (len(headers) - len(cells))
        rows.append(dict(zip(headers, cells)))

    return headers, rows


# ═══════════════════════════════════════════════════════════════
# Cell coercion
# ═══════════════════════════════════════════════════════════════

def _format_number(value) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    text = f"{number:.3f}".rstrip("0").rstrip(".")
    return text.replace(".", ",")


def format_cell_value(value) -> str:
    """Render one raw cell the way planners read it (DD/MM/YYYY, decimal comma)."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return format_dmy_date(value)
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, numbers.Number):
        if SERIAL_DATE_MIN <= value < SERIAL_DATE_MAX:
            return format_dmy_date(SERIAL_EPOCH + timedelta(days=int(value)))
        return _format_number(value)
    return str(value).strip()


def _json_safe(value):
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


# ═══════════════════════════════════════════════════════════════
# Building
# ═══════════════════════════════════════════════════════════════

def build_task_rows(group_id: int, rows: list, mapping: dict, actor) -> list:
    """Turn raw rows into Task column dicts (always Pending)."""
    now = datetime.now(timezone.utc)
    records = []
    for row in rows:
        record = {
            "group_id": group_id,
            "status": STATUS_PENDING,
            "shift": None,
            "reason": None,
            "updated_at": now,
            "updated_by": actor.id,
            "updated_by_email": actor.email,
            "excel_data": {k: _json_safe(v) for k, v in row.items()},
        }
        for spec in TASK_COLUMNS:
            header = mapping.get(spec.field)
            value = format_cell_value(row.get(header)) if header else spec.default
            limit = _FIELD_MAX_LENGTH.get(spec.field)
            record[spec.field] = value[:limit] if limit else value
        records.append(record)
    return records


# ═══════════════════════════════════════════════════════════════
# Import execution
# ═══════════════════════════════════════════════════════════════

def _resolve(headers, mapping):
    if mapping:
        return apply_explicit_mapping(headers, mapping)
    return resolve_columns(headers)


def import_tasks(group_id: int, filename: str, content: bytes, actor, mapping=None) -> dict:
    """Import every data row of the file into ``group_id``.

    Returns {"imported": n, "total": n, "mapping": {...}, "unmapped": [...]}.

    Raises:
        PermissionDeniedError: ``actor`` may not import.
        NotFoundError: unknown group.
        EmptySpreadsheetError: header row only, nothing written.
        TaskImportError: a chunk failed; earlier chunks stay committed.
    """
    check_capability(actor.role, TASKS_IMPORT)

    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError(resource="Group", resource_id=group_id)

    headers, rows = read_spreadsheet(filename, content)
    if not rows:
        raise EmptySpreadsheetError()

    resolved = _resolve(headers, mapping)
    records = build_task_rows(group_id, rows, resolved, actor)
    batch_size = max(int(current_app.config.get("IMPORT_BATCH_SIZE", 400)), 1)

    committed = 0
    for start in range(0, len(records), batch_size):
        tasks = [Task(**record) for record in records[start:start + batch_size]]
        try:
            db.session.add_all(tasks)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception(
                "Task import into group %s failed after %d/%d rows",
                group_id, committed, len(records),
            )
            raise TaskImportError(
                f"Import stopped after {committed} of {len(records)} rows",
                committed=committed,
                total=len(records),
            ) from exc
        committed += len(tasks)
        for task in tasks:
            publish_task_event(ADDED, task.to_dict())

    logger.info(
        "Imported %d tasks into group %s from %s by %s",
        committed, group_id, filename, actor.email,
    )
    return {
        "imported": committed,
        "total": len(records),
        "mapping": resolved,
        "unmapped": [field for field, header in resolved.items() if header is None],
    }


def preview_import(filename: str, content: bytes) -> dict:
    """Headers, row count, suggested mapping and a few formatted sample rows."""
    headers, rows = read_spreadsheet(filename, content)
    if not rows:
        raise EmptySpreadsheetError()

    suggestion = suggest_mapping(headers)
    return {
        "headers": headers,
        "row_count": len(rows),
        "mapping": suggestion["mapping"],
        "unmapped": suggestion["unmapped"],
        "fields": suggestion["fields"],
        "sample": [
            {h: format_cell_value(v) for h, v in row.items()}
            for row in rows[:PREVIEW_ROWS]
        ],
    }
