"""Excel export — a printable workbook of one table."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from sheetvault.models import CellValue, ErrorMarker
from sheetvault.utils import utcnow_display

# ── Style constants ──────────────────────────────────────────────

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center", wrap_text=True)

TITLE_FONT = Font(name="Calibri", bold=True, size=14, color="2F5496")
SUBTITLE_FONT = Font(name="Calibri", bold=False, size=10, color="808080")
VALUE_FONT = Font(name="Calibri", size=11)
ERROR_FONT = Font(name="Calibri", italic=True, size=11, color="C00000")

TITLE_ROW = 1
SUBTITLE_ROW = 2
HEADER_ROW = 4
FIRST_DATA_ROW = HEADER_ROW + 1

FOOTER_TEXT = "Page &P of &N"

_AUTO_WIDTH_SAMPLE_ROWS = 300
_EXCEL_FORMULA_PREFIXES = ("=", "+", "-", "@")
_SHEET_TITLE_BAD_CHARS = re.compile(r"[\[\]:*?/\\]")


# ── Helpers ──────────────────────────────────────────────────────


def _sheet_title(name: str) -> str:
    cleaned = _SHEET_TITLE_BAD_CHARS.sub("_", name).strip("'")
    return cleaned[:31] or "Data"


def _style_header(ws: Worksheet, ncols: int) -> None:
    for c in range(1, ncols + 1):
        cell = ws.cell(row=HEADER_ROW, column=c)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN


def _auto_width(ws: Worksheet, ncols: int) -> None:
    max_row = min(ws.max_row, HEADER_ROW + _AUTO_WIDTH_SAMPLE_ROWS)
    for c_idx in range(1, ncols + 1):
        letter = get_column_letter(c_idx)
        width = 0
        for row in ws.iter_rows(min_row=HEADER_ROW, max_row=max_row, min_col=c_idx, max_col=c_idx):
            cell = row[0]
            width = max(width, len(str(cell.value or "")))
        width += 4
        ws.column_dimensions[letter].width = min(width, 30)


def _excel_value(val: CellValue) -> Any:
    if isinstance(val, ErrorMarker):
        return str(val)
    if isinstance(val, str):
        if val.startswith("'"):
            return val
        stripped = val.lstrip()
        if stripped and stripped[0] in _EXCEL_FORMULA_PREFIXES:
            return f"'{val}"
    return val


def _setup_print(ws: Worksheet, ncols: int) -> None:
    ws.print_title_rows = f"{HEADER_ROW}:{HEADER_ROW}"
    ws.oddFooter.center.text = FOOTER_TEXT
    ws.evenFooter.center.text = FOOTER_TEXT
    ws.page_setup.orientation = "landscape" if ncols > 6 else "portrait"
    ws.page_setup.fitToWidth = 1
    ws.page_setup.fitToHeight = 0
    ws.sheet_properties.pageSetUpPr.fitToPage = True


# ── Public API ───────────────────────────────────────────────────


def write_export(
    path: Path,
    headers: Sequence[str],
    rows: Sequence[Sequence[CellValue]],
    *,
    title: str = "Table",
) -> Path:
    """Write *headers* + *rows* to an ``.xlsx`` at *path* and return the path.

    The sheet opens with a title band, repeats the header row on every
    printed page and numbers pages in the footer.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ncols = len(headers)

    wb = Workbook()
    ws = wb.worksheets[0]
    ws.title = _sheet_title(title)

    last_col = get_column_letter(max(ncols, 1))
    ws.cell(row=TITLE_ROW, column=1, value=title).font = TITLE_FONT
    ws.cell(
        row=SUBTITLE_ROW,
        column=1,
        value=f"Generated {utcnow_display()} · {len(rows)} rows",
    ).font = SUBTITLE_FONT
    if ncols > 1:
        ws.merge_cells(f"A{TITLE_ROW}:{last_col}{TITLE_ROW}")
        ws.merge_cells(f"A{SUBTITLE_ROW}:{last_col}{SUBTITLE_ROW}")

    if not ncols:
        ws.cell(row=HEADER_ROW, column=1, value="No data").font = VALUE_FONT
    else:
        for c_idx, name in enumerate(headers, 1):
            ws.cell(row=HEADER_ROW, column=c_idx, value=name)
        for r_idx, row in enumerate(rows, FIRST_DATA_ROW):
            for c_idx in range(1, ncols + 1):
                val = row[c_idx - 1] if c_idx - 1 < len(row) else None
                cell = ws.cell(row=r_idx, column=c_idx, value=_excel_value(val))
                if isinstance(val, ErrorMarker):
                    cell.font = ERROR_FONT
        _style_header(ws, ncols)
        ws.freeze_panes = f"A{FIRST_DATA_ROW}"
        _auto_width(ws, ncols)
        _setup_print(ws, ncols)

    tmp_path = path.with_name(path.stem + ".tmp" + path.suffix)
    wb.save(tmp_path)
    tmp_path.replace(path)
    return path
