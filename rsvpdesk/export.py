"""PDF and spreadsheet renderings of the RSVP list."""

from __future__ import annotations

from collections.abc import Sequence
from html import escape
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .config import settings
from .queries import sort_by_submission, total_guests
from .records import RSVPRecord

EXPORT_HEADER = ["No.", "Name", "Affiliation", "Guests", "Submitted At"]
EXPORT_KINDS = {
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def export_rows(records: Sequence[RSVPRecord]) -> list[list[object]]:
    """Header plus one row per record, oldest submission first."""
    rows: list[list[object]] = [list(EXPORT_HEADER)]
    for index, record in enumerate(sort_by_submission(records), start=1):
        submitted = (
            record.submitted_at.strftime("%Y-%m-%d %H:%M")
            if record.submitted_at
            else ""
        )
        rows.append([index, record.name, record.affiliation, record.guests, submitted])
    return rows


def export_filename(kind: str, basename: str | None = None) -> str:
    if kind not in EXPORT_KINDS:
        raise ValueError(f"Unknown export format: {kind!r}")
    return f"{basename or settings.export_basename}.{kind}"


def pdf_table_rows(records: Sequence[RSVPRecord], cell_style) -> list[list[object]]:
    """Export rows with name and affiliation as wrapping paragraphs."""
    rows: list[list[object]] = []
    for index, row in enumerate(export_rows(records)):
        cells: list[object] = [str(cell) for cell in row]
        if index:
            cells[1] = Paragraph(escape(cells[1]), cell_style)
            cells[2] = Paragraph(escape(cells[2]), cell_style)
        rows.append(cells)
    return rows


def render_pdf(records: Sequence[RSVPRecord], title: str = "RSVP List") -> bytes:
    buffer = BytesIO()
    document = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        leftMargin=15 * mm,
        rightMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=title,
    )
    styles = getSampleStyleSheet()
    rows = pdf_table_rows(records, styles["BodyText"])
    table = Table(rows, repeatRows=1, colWidths=[15 * mm, 80 * mm, 100 * mm, 20 * mm, 40 * mm])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#3730a3")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
                ("ALIGN", (0, 0), (0, -1), "RIGHT"),
                ("ALIGN", (3, 0), (3, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]
        )
    )
    story = [
        Paragraph(escape(title), styles["Title"]),
        Spacer(1, 4 * mm),
        table,
        Spacer(1, 4 * mm),
        Paragraph(
            f"{len(records)} RSVPs, {total_guests(records)} guests in total.",
            styles["Normal"],
        ),
    ]
    document.build(story)
    return buffer.getvalue()


def render_xlsx(records: Sequence[RSVPRecord], title: str = "RSVP List") -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "RSVPs"
    for row in export_rows(records):
        sheet.append(row)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    sheet.freeze_panes = "A2"
    for index, width in enumerate([6, 32, 40, 8, 18], start=1):
        sheet.column_dimensions[get_column_letter(index)].width = width
    workbook.properties.title = title

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render_export(kind: str, records: Sequence[RSVPRecord], title: str) -> bytes:
    if kind == "pdf":
        return render_pdf(records, title)
    if kind == "xlsx":
        return render_xlsx(records, title)
    raise ValueError(f"Unknown export format: {kind!r}")
