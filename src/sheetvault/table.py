"""Tabular data model — pure functions over :class:`~sheetvault.models.Table`.

No function here mutates its input; each returns a new ``Table`` (or a
new list of rows). Custom columns are never stored as cells, they are
computed by :func:`materialize`.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import replace
from typing import TypeVar

from sheetvault.errors import (
    EmptyInputError,
    HeaderStateError,
    IncompleteHeaderError,
    IndexOutOfRangeError,
    InsufficientRowsError,
)
from sheetvault.formula import evaluate, format_number
from sheetvault.models import (
    CellValue,
    CustomColumn,
    HeaderMode,
    Row,
    Scalar,
    Table,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Import + header resolution ──────────────────────────────────


def import_raw(rows: Sequence[Sequence[Scalar]]) -> Table:
    """Wrap freshly decoded rows in an unresolved ``Table``.

    Raises
    ------
    EmptyInputError
        If *rows* is empty.
    """
    if not rows:
        raise EmptyInputError("The uploaded file is empty")
    return Table(rows=tuple(tuple(row) for row in rows))


def _require_unresolved(table: Table) -> None:
    if table.header_mode.resolved:
        raise HeaderStateError(
            f"Headers are already resolved ({table.header_mode.value})"
        )


def _header_text(cell: Scalar) -> str:
    if cell is None:
        return ""
    if isinstance(cell, (int, float)):
        return format_number(cell)
    return cell


def first_row_width(table: Table) -> int:
    """Number of columns a synthetic header set must name."""
    return len(table.rows[0]) if table.rows else 0


def resolve_explicit(table: Table) -> Table:
    """Promote the first row to headers; the remaining rows become data."""
    _require_unresolved(table)
    if len(table.rows) < 1:
        raise InsufficientRowsError("Need at least one row to read headers from")
    headers = tuple(_header_text(cell) for cell in table.rows[0])
    return replace(
        table,
        headers=headers,
        rows=table.rows[1:],
        header_mode=HeaderMode.EXPLICIT,
    )


def resolve_synthetic(table: Table, names: Sequence[str]) -> Table:
    """Name every column explicitly; the first row stays as data."""
    _require_unresolved(table)
    if not table.rows:
        raise InsufficientRowsError("Need at least one row to count columns")
    expected = first_row_width(table)
    names = list(names)
    if len(names) != expected:
        raise IncompleteHeaderError(
            f"Expected {expected} column names, got {len(names)}"
        )
    if any(not isinstance(name, str) or not name for name in names):
        raise IncompleteHeaderError("Please provide names for all columns")
    return replace(table, headers=tuple(names), header_mode=HeaderMode.SYNTHETIC)


# ── Row shape ────────────────────────────────────────────────────


def _fit(row: Row, width: int) -> Row:
    if len(row) < width:
        return row + ("",) * (width - len(row))
    return row[:width]


def normalize_rows(table: Table) -> Table:
    """Pad (or cut) every row to exactly ``len(headers)`` cells."""
    width = table.width
    overflow = sum(1 for row in table.rows if len(row) > width)
    if overflow:
        logger.warning(
            "%d rows are wider than the %d headers; extra cells dropped", overflow, width
        )
    return replace(table, rows=tuple(_fit(row, width) for row in table.rows))


def _check_column(table: Table, index: int) -> None:
    if not 0 <= index < table.width:
        raise IndexOutOfRangeError(
            f"Column index {index} out of range (table has {table.width} columns)"
        )


def _check_name(name: str, what: str) -> None:
    if not isinstance(name, str) or not name:
        raise IncompleteHeaderError(f"Please provide a name for the {what}")


# ── Editing ──────────────────────────────────────────────────────


def edit_cell(table: Table, row_index: int, col_index: int, value: Scalar) -> Table:
    """Return a copy of *table* with one cell replaced.

    Rows past the end are synthesized (empty) up to *row_index*, and a
    short target row is padded to the header width first.
    """
    _check_column(table, col_index)
    if row_index < 0:
        raise IndexOutOfRangeError(f"Row index {row_index} out of range")

    width = table.width
    rows = list(table.rows)
    while len(rows) <= row_index:
        rows.append(("",) * width)

    target = list(rows[row_index])
    if len(target) < width:
        target.extend([""] * (width - len(target)))
    target[col_index] = value
    rows[row_index] = tuple(target)
    return replace(table, rows=tuple(rows))


def add_column(table: Table, name: str) -> Table:
    """Append a header and an empty cell to every row in one step."""
    _check_name(name, "new column")
    width = table.width
    rows = tuple(_fit(row, width) + ("",) for row in table.rows)
    return replace(table, headers=table.headers + (name,), rows=rows)


def delete_column(table: Table, index: int) -> Table:
    """Drop header *index* and the matching cell of every row."""
    _check_column(table, index)
    headers = table.headers[:index] + table.headers[index + 1:]
    rows = tuple(row[:index] + row[index + 1:] for row in table.rows)
    return replace(table, headers=headers, rows=rows)


def add_custom_column(table: Table, name: str, formula: str = "") -> Table:
    """Register a derived column; *formula* may be empty."""
    _check_name(name, "custom column")
    column = CustomColumn(name=name, formula=formula or "")
    return replace(table, custom_columns=table.custom_columns + (column,))


def bind(table: Table, name: str | None) -> Table:
    """Attach (or clear) the persisted relation name."""
    return replace(table, table_name=name)


# ── Reading ──────────────────────────────────────────────────────


def materialize(table: Table) -> list[list[CellValue]]:
    """Base rows with one computed value appended per custom column.

    A formula failure yields :data:`~sheetvault.models.ERROR` for that
    cell only; a blank formula yields ``""``.
    """
    columns = table.custom_columns
    result: list[list[CellValue]] = []
    for row in table.rows:
        cells: list[CellValue] = list(row)
        for column in columns:
            if column.formula.strip():
                cells.append(evaluate(column.formula, row))
            else:
                cells.append("")
        result.append(cells)
    return result


def total_pages(row_count: int, page_size: int) -> int:
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    return math.ceil(row_count / page_size)


def paginate(rows: Sequence[T], page_size: int, page_number: int) -> list[T]:
    """Return 1-indexed page *page_number*; out of range gives ``[]``."""
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    if page_number < 1:
        return []
    start = (page_number - 1) * page_size
    return list(rows[start:start + page_size])
