from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from html.parser import HTMLParser

from .models import PrinterUsage, ReportPeriod, Totals, UserData, sum_totals

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"
UNKNOWN_DEVICE = "Unknown Device"
UNKNOWN_PRINTER = "Unknown Printer"
UNKNOWN_IP = "Unknown IP"
UNKNOWN_PERIOD = "Unknown Period"

GROUP_HEADER_CLASS = "group_hdr"
COLUMN_HEADER_CLASS = "column_hdr"
TOTALS_ROW_CLASS = "totals"
HEADER_TABLE_ID = "header"

# Usage rows need more than this many data cells.
MIN_USAGE_ROW_CELLS = 10

# Fixed 0-based cell positions in the vendor's usage table. The export has no
# stable header names, so every decoder reads through this one table.
COLUMN_INDEXES: dict[str, int] = {
    "device_model": 0,
    "device_name": 1,
    "ip_address": 2,
    "mono": 7,
    "color": 8,
    "blank": 9,
    "total": 10,
    "adobe_pdf": 13,
    "copy": 14,
    "ms_excel": 19,
    "ms_powerpoint": 20,
    "ms_word": 21,
    "other_application": 22,
    "print": 24,
    "simplex": 27,
    "duplex": 28,
}

COUNTER_COLUMNS: list[str] = [
    "mono",
    "color",
    "blank",
    "total",
    "adobe_pdf",
    "copy",
    "ms_excel",
    "ms_powerpoint",
    "ms_word",
    "other_application",
    "print",
    "simplex",
    "duplex",
]

DATE_PATTERN = r"\d{1,2}/\d{1,2}/\d{4}"
MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class ReportParseError(ValueError):
    pass


@dataclass
class ReportParseResult:
    filename: str
    period: ReportPeriod
    rows_ingested: int
    rows_skipped: int
    warnings: list[str]


@dataclass
class _Row:
    classes: set[str]
    section: int
    position: int
    cells: list[str] = field(default_factory=list)
    header_cells: list[str] = field(default_factory=list)
    text_parts: list[str] = field(default_factory=list)
    has_rule: bool = False

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


@dataclass
class _Table:
    table_id: str | None
    rows: list[_Row] = field(default_factory=list)


@dataclass
class _OpenTable:
    table: _Table
    section: int
    section_rows: int = 0
    row: _Row | None = None
    cell: list[str] | None = None
    cell_tag: str | None = None


class _ReportDocument(HTMLParser):
    """Flatten every table row of a report into document order."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.tables: list[_Table] = []
        self.rows: list[_Row] = []
        self._open: list[_OpenTable] = []
        self._section_counter = 0

    def _next_section(self) -> int:
        self._section_counter += 1
        return self._section_counter

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == "table":
            table = _Table(table_id=dict(attrs).get("id"))
            self.tables.append(table)
            self._open.append(_OpenTable(table=table, section=self._next_section()))
            return
        if not self._open:
            return

        current = self._open[-1]
        if tag in {"thead", "tbody", "tfoot"}:
            self._close_row(current)
            current.section = self._next_section()
            current.section_rows = 0
        elif tag == "tr":
            self._close_row(current)
            self._start_row(current, dict(attrs).get("class"))
        elif tag in {"td", "th"}:
            self._close_cell(current)
            if current.row is None:
                self._start_row(current, None)
            current.cell = []
            current.cell_tag = tag
        elif tag == "hr":
            for state in self._open:
                if state.row is not None:
                    state.row.has_rule = True

    def handle_endtag(self, tag: str) -> None:
        if not self._open:
            return
        current = self._open[-1]
        if tag == "table":
            self._close_row(current)
            self._open.pop()
        elif tag in {"td", "th"}:
            self._close_cell(current)
        elif tag == "tr":
            self._close_row(current)
        elif tag in {"thead", "tbody", "tfoot"}:
            self._close_row(current)
            current.section = self._next_section()
            current.section_rows = 0

    def handle_data(self, data: str) -> None:
        for state in self._open:
            if state.cell is not None:
                state.cell.append(data)
            if state.row is not None:
                state.row.text_parts.append(data)

    def close(self) -> None:
        super().close()
        while self._open:
            self._close_row(self._open.pop())

    def _start_row(self, state: _OpenTable, class_attr: str | None) -> None:
        state.section_rows += 1
        row = _Row(
            classes=set((class_attr or "").split()),
            section=state.section,
            position=state.section_rows,
        )
        state.row = row
        state.table.rows.append(row)
        self.rows.append(row)

    def _close_cell(self, state: _OpenTable) -> None:
        if state.cell is None or state.row is None:
            state.cell = None
            return
        text = "".join(state.cell).strip()
        if state.cell_tag == "th":
            state.row.header_cells.append(text)
        else:
            state.row.cells.append(text)
        state.cell = None
        state.cell_tag = None

    def _close_row(self, state: _OpenTable) -> None:
        self._close_cell(state)
        state.row = None


def parse_int_safe(value: str | None) -> int:
    if value is None:
        return 0
    cleaned = re.sub(r"[^\d-]", "", value)
    match = re.match(r"-?\d+", cleaned)
    return int(match.group(0)) if match else 0


def parse_date_strict(value: str | None) -> date | None:
    if not value:
        return None
    match = re.search(r"(\d{1,2})/(\d{1,2})/(\d{4})", value)
    if not match:
        return None
    month, day, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_short_date(value: date, *, with_year: bool = True) -> str:
    label = f"{MONTH_NAMES[value.month - 1]} {value.day}"
    return f"{label}, {value.year}" if with_year else label


def derive_period_label(
    range_start: date | None,
    range_end: date | None,
    fallback: str | None = None,
) -> str:
    if range_start is not None and range_end is not None:
        same_year = range_start.year == range_end.year
        start_label = format_short_date(range_start, with_year=not same_year)
        return f"{start_label} → {format_short_date(range_end)}"
    return fallback or UNKNOWN_PERIOD


def build_period_id(file_name: str, range_start: date | None, range_end: date | None) -> str:
    start = range_start.isoformat() if range_start else "unknown"
    end = range_end.isoformat() if range_end else "unknown"
    return f"{file_name}::{start}::{end}"


def _normalize_label(value: str) -> str:
    return " ".join(value.split()).lower()


def _read_header_dates(document: _ReportDocument) -> tuple[date | None, date | None, date | None]:
    header_table = next((table for table in document.tables if table.table_id == HEADER_TABLE_ID), None)
    if header_table is None and document.tables:
        header_table = document.tables[0]
    if header_table is None:
        return None, None, None

    date_created: date | None = None
    range_start: date | None = None
    range_end: date | None = None
    for row in header_table.rows:
        if not row.header_cells or not row.cells:
            continue
        label = _normalize_label(row.header_cells[0])
        value = row.cells[0]
        if not label or not value:
            continue
        if label == "date created":
            match = re.search(f"({DATE_PATTERN})", value)
            date_created = parse_date_strict(match.group(1) if match else None)
        elif label == "date range":
            match = re.search(f"({DATE_PATTERN})\\s*-\\s*({DATE_PATTERN})", value)
            range_start = parse_date_strict(match.group(1) if match else None)
            range_end = parse_date_strict(match.group(2) if match else None)
    return date_created, range_start, range_end


def _cell(cells: list[str], column: str) -> str | None:
    index = COLUMN_INDEXES[column]
    return cells[index] if index < len(cells) else None


def decode_counters(cells: list[str]) -> Totals:
    values = {column: parse_int_safe(_cell(cells, column)) for column in COUNTER_COLUMNS}
    raw_total = _cell(cells, "total")
    if raw_total is None or not raw_total.strip():
        values["total"] = values["mono"] + values["color"] + values["blank"]
    return Totals(**values)


def _user_identity(rows_by_position: dict[tuple[int, int], _Row], group_header: _Row) -> str:
    # The identity sits in the row right after the group header, within its row section.
    row = rows_by_position.get((group_header.section, group_header.position + 1))
    if row is not None and row.cells and row.cells[0]:
        return row.cells[0]
    return UNKNOWN_USER


def _is_subtotal_row(row: _Row) -> bool:
    if TOTALS_ROW_CLASS in row.classes:
        return True
    return bool(row.cells) and "total" in row.cells[0].lower()


@dataclass
class _ScanStats:
    sections: int = 0
    rows_ingested: int = 0
    rows_skipped: int = 0


def _scan_usage_rows(document: _ReportDocument, file_name: str) -> tuple[dict[str, UserData], _ScanStats]:
    users: dict[str, UserData] = {}
    stats = _ScanStats()
    current: UserData | None = None
    found_column_header = False
    rows_by_position = {(row.section, row.position): row for row in document.rows}

    for row in document.rows:
        if GROUP_HEADER_CLASS in row.classes:
            found_column_header = False
            if "user" not in row.text.lower():
                current = None
                continue
            username = _user_identity(rows_by_position, row)
            current = users.setdefault(username, UserData())
            stats.sections += 1
            continue

        if current is None:
            continue
        if COLUMN_HEADER_CLASS in row.classes:
            found_column_header = True
            continue
        if row.has_rule or not found_column_header:
            continue
        if len(row.cells) <= MIN_USAGE_ROW_CELLS or _is_subtotal_row(row):
            continue

        counters = decode_counters(row.cells)
        if not counters.is_valid():
            stats.rows_skipped += 1
            logger.debug("%s: dropped usage row with invalid counters: %s", file_name, row.cells[:3])
            continue

        usage = PrinterUsage(
            device_model=_cell(row.cells, "device_model") or UNKNOWN_DEVICE,
            device_name=_cell(row.cells, "device_name") or UNKNOWN_PRINTER,
            ip_address=_cell(row.cells, "ip_address") or UNKNOWN_IP,
            totals=counters,
        )
        current.merge_usage(usage)
        stats.rows_ingested += 1

    return users, stats


def _read_grand_totals(document: _ReportDocument, users: dict[str, UserData]) -> Totals:
    grand_row = next((row for row in document.rows if TOTALS_ROW_CLASS in row.classes), None)
    if grand_row is not None:
        return decode_counters(grand_row.cells)
    return sum_totals([data.totals for data in users.values()])


def _load_document(html: str, file_name: str) -> _ReportDocument:
    document = _ReportDocument()
    try:
        document.feed(html)
        document.close()
    except Exception as exc:
        raise ReportParseError(f"Failed to parse {file_name}: {exc}") from exc
    return document


def _scan_report(html: str, file_name: str) -> tuple[ReportPeriod, _ScanStats]:
    document = _load_document(html, file_name)
    date_created, range_start, range_end = _read_header_dates(document)
    users, stats = _scan_usage_rows(document, file_name)
    period = ReportPeriod(
        id=build_period_id(file_name, range_start, range_end),
        file_name=file_name,
        period_label=derive_period_label(range_start, range_end, file_name),
        users=users,
        grand_totals=_read_grand_totals(document, users),
        date_created=date_created,
        range_start=range_start,
        range_end=range_end,
    )
    logger.info(
        "%s: parsed %d user section(s), %d usage row(s), %d dropped",
        file_name,
        stats.sections,
        stats.rows_ingested,
        stats.rows_skipped,
    )
    return period, stats


def parse_report_html(html: str, file_name: str) -> ReportPeriod:
    period, _stats = _scan_report(html, file_name)
    return period


def _decode_bytes(raw: bytes) -> str:
    for encoding in ("utf-8-sig", "utf-8", "cp1252", "latin-1"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="replace")


def parse_report_upload(filename: str, raw: bytes) -> ReportParseResult:
    if not raw:
        raise ReportParseError(f"Failed to parse {filename}: file is empty")

    period, stats = _scan_report(_decode_bytes(raw), filename)

    warnings: list[str] = []
    if stats.sections == 0:
        warnings.append(f"{filename}: no user sections were found in the report.")
    if stats.rows_skipped:
        warnings.append(f"{filename}: {stats.rows_skipped} usage row(s) skipped (negative or invalid counters).")
    if period.range_start is None or period.range_end is None:
        warnings.append(f"{filename}: date range not found; period is labelled by file name.")

    return ReportParseResult(
        filename=filename,
        period=period,
        rows_ingested=stats.rows_ingested,
        rows_skipped=stats.rows_skipped,
        warnings=warnings,
    )
