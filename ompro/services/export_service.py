"""Task report exports — Excel, CSV and PDF.

All three formats share the same column set, built by ``task_export_rows``
from the already filtered and sorted task dicts of the reports endpoint.
"""
import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
STATUS_FILLS = {
    "Done": PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
    "In Progress": PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid"),
    "Not Done": PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
}

EXPORT_COLUMNS = [
    "OM No.", "Description", "Work Center", "Status", "Shift",
    "Reason", "Min Date", "Max Date", "Updated By", "Updated At",
]

# PDF column widths in mm (landscape A4 leaves ~277mm between margins)
_PDF_WIDTHS = [24, 60, 26, 22, 12, 38, 20, 20, 34, 0]


def _format_timestamp(value) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.strftime("%d/%m/%Y %H:%M")


def task_export_rows(tasks: list[dict]) -> list[list]:
    """One list of cell values per task, in EXPORT_COLUMNS order."""
    return [
        [
            t.get("om_number", ""),
            t.get("description", ""),
            t.get("work_center", ""),
            t.get("status", ""),
            t.get("shift") or "N/A",
            t.get("reason") or "",
            t.get("min_date", ""),
            t.get("max_date", ""),
            t.get("updated_by_email") or "",
            _format_timestamp(t.get("updated_at")),
        ]
        for t in tasks
    ]


def _apply_header_style(ws, row: int, col_count: int) -> None:
    """Apply dark-header styling to an Excel row (1-indexed)."""
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def generate_tasks_excel(tasks: list[dict]) -> bytes:
    """Styled single-sheet workbook; returns the .xlsx bytes."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Tasks"

    ws.append(EXPORT_COLUMNS)
    _apply_header_style(ws, 1, len(EXPORT_COLUMNS))

    status_col = EXPORT_COLUMNS.index("Status") + 1
    for row_idx, values in enumerate(task_export_rows(tasks), start=2):
        ws.append(values)
        for col in range(1, len(EXPORT_COLUMNS) + 1):
            ws.cell(row=row_idx, column=col).border = THIN_BORDER
        fill = STATUS_FILLS.get(values[status_col - 1])
        if fill:
            ws.cell(row=row_idx, column=status_col).fill = fill

    ws.freeze_panes = "A2"
    if tasks:
        ws.auto_filter.ref = ws.dimensions
    _auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()


def generate_tasks_csv(tasks: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for values in task_export_rows(tasks):
        writer.writerow([str(v).replace("\n", " ") for v in values])
    return buf.getvalue()


def _page_footer(canvas, doc):
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.drawRightString(
        doc.pagesize[0] - doc.rightMargin, 8 * mm, f"Page {doc.page}",
    )
    canvas.drawString(
        doc.leftMargin, 8 * mm,
        datetime.now(timezone.utc).strftime("Generated %d/%m/%Y %H:%M UTC"),
    )
    canvas.restoreState()


def generate_tasks_pdf(tasks: list[dict], title: str = "Maintenance tasks") -> bytes:
    """Landscape A4 table, header row repeated on every page, numbered pages."""
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=landscape(A4),
        leftMargin=10 * mm, rightMargin=10 * mm,
        topMargin=12 * mm, bottomMargin=15 * mm,
        title=title,
    )
    styles = getSampleStyleSheet()
    cell_style = styles["BodyText"].clone("TaskCell", fontSize=7, leading=8.5)
    head_style = cell_style.clone("TaskHead", textColor=colors.white, fontName="Helvetica-Bold")

    data = [[Paragraph(h, head_style) for h in EXPORT_COLUMNS]]
    for values in task_export_rows(tasks):
        data.append([Paragraph(_escape(v), cell_style) for v in values])

    usable = doc.width
    fixed = sum(w * mm for w in _PDF_WIDTHS if w)
    widths = [w * mm if w else max(usable - fixed, 20 * mm) for w in _PDF_WIDTHS]

    table = Table(data, colWidths=widths, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#354A5F")),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F2F4F7")]),
    ]))

    story = [
        Paragraph(_escape(title), styles["Title"]),
        Paragraph(f"{len(tasks)} task(s)", styles["Normal"]),
        Spacer(1, 4 * mm),
        table,
    ]
    doc.build(story, onFirstPage=_page_footer, onLaterPages=_page_footer)
    logger.debug("Rendered PDF report with %d tasks", len(tasks))
    return buf.getvalue()


def _escape(value) -> str:
    """Paragraph text is mini-markup; escape the characters it interprets."""
    return (
        str(value)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )
