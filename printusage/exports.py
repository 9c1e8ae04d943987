from __future__ import annotations

import csv
import io
import re
from collections.abc import Collection
from dataclasses import dataclass
from datetime import date

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from .aggregation import sum_user_totals
from .models import DateRange, UserData
from .parsing import format_short_date

REPORT_TITLE = "IRH Paper Consumption Report"

PAGE_WIDTH, PAGE_HEIGHT = letter
PAGE_MARGIN = 40
ROW_HEIGHT = 14
TABLE_FONT_SIZE = 8
BODY_FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"
HEADER_FILL = colors.Color(66 / 255, 139 / 255, 202 / 255)
ALTERNATE_FILL = colors.Color(245 / 255, 247 / 255, 250 / 255)
GRID_STROKE = colors.Color(210 / 255, 210 / 255, 210 / 255)
USER_COLUMN_WIDTH = 150
PRINTERS_COLUMN_WIDTH = 84


@dataclass(frozen=True)
class ColumnConfig:
    key: str
    label: str
    short_label: str


AVAILABLE_COLUMNS: list[ColumnConfig] = [
    ColumnConfig("mono", "Mono", "Mono"),
    ColumnConfig("color", "Color", "Color"),
    ColumnConfig("adobePdf", "Adobe PDF", "PDF"),
    ColumnConfig("msExcel", "MS Excel", "Excel"),
    ColumnConfig("msPowerPoint", "MS PowerPoint", "PowerPoint"),
    ColumnConfig("msWord", "MS Word", "Word"),
    ColumnConfig("otherApplication", "Other Apps", "Other Apps"),
    ColumnConfig("total", "Total", "Total"),
]

COLUMN_KEYS: list[str] = [column.key for column in AVAILABLE_COLUMNS]

_PRINTER_NAME_PATTERNS: list[tuple[str, str]] = [
    (r"(\d+)([A-Z])$", "{0}{1}"),
    (r"(\d+)_([A-Z])$", "{0}{1}"),
    (r".*?(\d+).*_([A-Z])$", "{0}{1}"),
    (r"(\d+)TH_FLOOR_PRINTER$", "{0}A"),
    (r"(\d+)_FLOOR_PRINTER$", "{0}A"),
    (r"FLOOR_(\d+)_PRINTER$", "{0}A"),
]


def format_printer_name(printer_name: str) -> str:
    """Shorten a printer display name to its floor code, e.g. ``10A``."""
    for pattern, template in _PRINTER_NAME_PATTERNS:
        match = re.search(pattern, printer_name, flags=re.IGNORECASE)
        if match:
            return template.format(*(group.upper() for group in match.groups()))
    if len(printer_name) <= 4:
        return printer_name.upper()
    return printer_name[:4].upper()


def visible_columns(
    hidden: Collection[str] = (),
    zero_columns: Collection[str] = (),
) -> list[ColumnConfig]:
    return [column for column in AVAILABLE_COLUMNS if column.key not in hidden and column.key not in zero_columns]


def rows_for_export(
    rows: list[tuple[str, UserData]],
    selected_users: Collection[str] | None = None,
) -> list[tuple[str, UserData]]:
    if not selected_users:
        return list(rows)
    return [(user, data) for user, data in rows if user in selected_users]


def export_file_name(extension: str, today: date | None = None) -> str:
    stamp = (today or date.today()).isoformat()
    return f"{REPORT_TITLE} - {stamp}.{extension}"


def users_to_csv(
    rows: list[tuple[str, UserData]],
    columns: list[ColumnConfig],
    display_names: dict[str, str] | None = None,
) -> str:
    names = display_names or {}
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["User", "Printers", *[column.label for column in columns]])
    for user, data in rows:
        printers = "; ".join(format_printer_name(usage.device_name) for usage in data.printer_usage)
        writer.writerow(
            [
                names.get(user) or user,
                printers,
                *[data.totals.get(column.key) for column in columns],
            ]
        )
    return buffer.getvalue()


def _fit(text: str, width: float, font: str, size: float) -> str:
    limit = width - 6
    if stringWidth(text, font, size) <= limit:
        return text
    while text and stringWidth(text + "…", font, size) > limit:
        text = text[:-1]
    return text + "…"


def _table_layout(columns: list[ColumnConfig]) -> list[float]:
    remaining = PAGE_WIDTH - 2 * PAGE_MARGIN - USER_COLUMN_WIDTH - PRINTERS_COLUMN_WIDTH
    counter_width = remaining / len(columns) if columns else 0
    return [USER_COLUMN_WIDTH, PRINTERS_COLUMN_WIDTH, *[counter_width for _ in columns]]


def _draw_table_row(
    c: canvas.Canvas,
    y: float,
    widths: list[float],
    values: list[str],
    *,
    header: bool = False,
    shaded: bool = False,
) -> None:
    x = PAGE_MARGIN
    if header or shaded:
        c.setFillColor(HEADER_FILL if header else ALTERNATE_FILL)
        c.rect(x, y, sum(widths), ROW_HEIGHT, stroke=0, fill=1)

    c.setStrokeColor(GRID_STROKE)
    c.setLineWidth(0.1)
    text_y = y + 4
    for index, (width, value) in enumerate(zip(widths, values)):
        c.rect(x, y, width, ROW_HEIGHT, stroke=1, fill=0)
        font = BOLD_FONT if header or index == 0 else BODY_FONT
        label = _fit(value, width, font, TABLE_FONT_SIZE)
        c.setFont(font, TABLE_FONT_SIZE)
        c.setFillColor(colors.white if header else colors.black)
        if header:
            c.drawCentredString(x + width / 2, text_y, label)
        elif index >= 2:
            c.drawRightString(x + width - 3, text_y, label)
        else:
            c.drawString(x + 3, text_y, label)
        x += width


def users_to_pdf(
    rows: list[tuple[str, UserData]],
    columns: list[ColumnConfig],
    display_names: dict[str, str] | None = None,
    overall_range: DateRange | None = None,
) -> bytes:
    names = display_names or {}
    grand = sum_user_totals(rows)
    ordered = sorted(rows, key=lambda item: item[1].totals.total, reverse=True)

    out = io.BytesIO()
    c = canvas.Canvas(out, pagesize=letter)
    c.setTitle(REPORT_TITLE)

    c.setFont(BOLD_FONT, 20)
    c.drawString(PAGE_MARGIN, PAGE_HEIGHT - 50, REPORT_TITLE)
    if overall_range is not None:
        c.setFont(BODY_FONT, 10)
        c.drawRightString(
            PAGE_WIDTH - PAGE_MARGIN,
            PAGE_HEIGHT - 48,
            f"[{format_short_date(overall_range.start)} - {format_short_date(overall_range.end)}]",
        )
    y = PAGE_HEIGHT - 80
    c.setFont(BOLD_FONT, 14)
    c.drawString(PAGE_MARGIN, y, "Print Totals Summary")
    y -= 18
    c.setFont(BODY_FONT, 10)
    c.drawString(PAGE_MARGIN, y, f"Users: {len(rows)}")
    c.drawString(PAGE_MARGIN + 90, y, f"Mono: {grand.mono}")
    c.drawString(PAGE_MARGIN + 180, y, f"Color: {grand.color}")
    c.drawString(PAGE_MARGIN + 270, y, f"Total Pages: {grand.total}")
    y -= 28

    widths = _table_layout(columns)
    header_values = ["User", "Printers", *[column.short_label for column in columns]]
    _draw_table_row(c, y, widths, header_values, header=True)

    for index, (user, data) in enumerate(ordered):
        y -= ROW_HEIGHT
        if y < PAGE_MARGIN:
            c.showPage()
            y = PAGE_HEIGHT - PAGE_MARGIN - ROW_HEIGHT
            _draw_table_row(c, y, widths, header_values, header=True)
            y -= ROW_HEIGHT
        values = [
            names.get(user) or user,
            ", ".join(format_printer_name(usage.device_name) for usage in data.printer_usage),
            *[str(data.totals.get(column.key)) for column in columns],
        ]
        _draw_table_row(c, y, widths, values, shaded=index % 2 == 1)

    c.save()
    return out.getvalue()
