"""Workspace — the current table plus the commands presentation can send.

Holds the working :class:`~sheetvault.models.Table`, the current page and
a :class:`~sheetvault.store.TableStore`. Every command replaces
``self.table`` with the result of a pure operation, so a command that
raises leaves the workspace untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from sheetvault import PAGE_SIZE
from sheetvault import table as ops
from sheetvault.errors import EmptyInputError, HeaderStateError, InvalidTableNameError
from sheetvault.io import ProgressCallback, load_rows
from sheetvault.models import CellValue, Scalar, Table, TableView
from sheetvault.store import TableStore

logger = logging.getLogger(__name__)


class Workspace:
    def __init__(self, store: TableStore, *, page_size: int = PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.store = store
        self.page_size = page_size
        self.table: Table | None = None
        self.page = 1

    # ── Import ──────────────────────────────────────────────────

    def import_rows(self, rows: Sequence[Sequence[Scalar]]) -> Table:
        self.table = ops.import_raw(rows)
        self.page = 1
        logger.info("imported %d raw rows", len(self.table.rows))
        return self.table

    def import_file(self, path: Path, *, progress: ProgressCallback | None = None) -> Table:
        """Read, size-check and decode *path*, then start an unresolved table."""
        rows = load_rows(path, progress=progress)
        return self.import_rows(rows)

    @property
    def needs_headers(self) -> bool:
        return self.table is not None and not self.table.header_mode.resolved

    @property
    def header_slots(self) -> int:
        """How many names :meth:`confirm_headers` needs when ``has_headers`` is false."""
        return ops.first_row_width(self._require_table())

    def confirm_headers(self, has_headers: bool, names: Sequence[str] | None = None) -> Table:
        table = self._require_table()
        if has_headers:
            self.table = ops.resolve_explicit(table)
        else:
            self.table = ops.resolve_synthetic(table, names or [])
        return self.table

    # ── Edits ───────────────────────────────────────────────────

    def _require_table(self) -> Table:
        if self.table is None:
            raise EmptyInputError("No data available")
        return self.table

    def _require_resolved(self) -> Table:
        table = self._require_table()
        if not table.header_mode.resolved:
            raise HeaderStateError("Confirm the headers first")
        return table

    def edit_cell(self, row_index: int, col_index: int, value: Scalar) -> Table:
        self.table = ops.edit_cell(self._require_resolved(), row_index, col_index, value)
        return self.table

    def add_column(self, name: str) -> Table:
        self.table = ops.add_column(self._require_resolved(), name)
        return self.table

    def delete_column(self, index: int) -> Table:
        self.table = ops.delete_column(self._require_resolved(), index)
        return self.table

    def add_custom_column(self, name: str, formula: str = "") -> Table:
        self.table = ops.add_custom_column(self._require_resolved(), name, formula)
        return self.table

    # ── Reading ─────────────────────────────────────────────────

    def materialized_rows(self) -> list[list[CellValue]]:
        return ops.materialize(ops.normalize_rows(self._require_resolved()))

    @property
    def total_pages(self) -> int:
        if self.table is None:
            return 0
        return ops.total_pages(len(self.table.rows), self.page_size)

    def set_page(self, page: int) -> int:
        """Move to *page*, clamped to the available pages."""
        self.page = min(max(page, 1), max(self.total_pages, 1))
        return self.page

    def view(self) -> TableView:
        table = self._require_resolved()
        rows = ops.paginate(self.materialized_rows(), self.page_size, self.page)
        return TableView(
            headers=list(table.all_headers),
            rows=rows,
            table_name=table.table_name,
            page=self.page,
            total_pages=self.total_pages,
        )

    # ── Persistence ─────────────────────────────────────────────

    def tables(self) -> list[str]:
        return sorted(self.store.list_tables())

    def load(self, name: str) -> Table:
        """Replace the working table with a saved one; custom columns reset."""
        self.table = self.store.load_table(name)
        self.page = 1
        return self.table

    def save_as(self, name: str) -> Table:
        """Save headers, custom column names and computed rows as *name*."""
        table = self._require_resolved()
        self.store.create_table(name, table.all_headers, self.materialized_rows())
        self.table = ops.bind(table, name)
        return self.table

    def save_changes(self) -> Table:
        """Rewrite the bound table from the current (materialized) data."""
        table = self._require_resolved()
        if not table.table_name:
            raise InvalidTableNameError("Current data is not bound to a saved table")
        self.store.create_table(table.table_name, table.all_headers, self.materialized_rows())
        return table

    def append_to(self, name: str) -> None:
        table = self._require_resolved()
        self.store.append_rows(name, table.all_headers, self.materialized_rows())

    def drop(self, name: str) -> bool:
        existed = self.store.drop_table(name)
        if self.table is not None and self.table.table_name == name:
            self.table = ops.bind(self.table, None)
        return existed
