"""Tests for the tabular data model operations."""

from __future__ import annotations

import pytest

from sheetvault.errors import (
    EmptyInputError,
    HeaderStateError,
    IncompleteHeaderError,
    IndexOutOfRangeError,
    InsufficientRowsError,
)
from sheetvault.models import ERROR, HeaderMode, Table
from sheetvault.table import (
    add_column,
    add_custom_column,
    bind,
    delete_column,
    edit_cell,
    first_row_width,
    import_raw,
    materialize,
    normalize_rows,
    paginate,
    resolve_explicit,
    resolve_synthetic,
    total_pages,
)


def _resolved(headers: list[str], rows: list[list]) -> Table:
    return Table(headers=headers, rows=rows, header_mode=HeaderMode.EXPLICIT)


# ── Import + header resolution ──────────────────────────────────


def test_import_raw_rejects_empty_input() -> None:
    with pytest.raises(EmptyInputError):
        import_raw([])


def test_import_raw_starts_unresolved_and_unbound() -> None:
    table = import_raw([["a", "b"], ["1", "2"]])

    assert table.header_mode is HeaderMode.UNRESOLVED
    assert table.headers == ()
    assert table.table_name is None
    assert table.rows == (("a", "b"), ("1", "2"))


def test_resolve_explicit_promotes_first_row() -> None:
    table = resolve_explicit(import_raw([["name", 2024, None], ["Widget", 3, 4]]))

    assert table.headers == ("name", "2024", "")
    assert table.rows == (("Widget", 3, 4),)
    assert table.header_mode is HeaderMode.EXPLICIT


def test_resolve_explicit_with_only_a_header_row_leaves_no_data() -> None:
    table = resolve_explicit(import_raw([["a", "b"]]))

    assert table.headers == ("a", "b")
    assert table.rows == ()


def test_resolve_explicit_needs_a_row() -> None:
    with pytest.raises(InsufficientRowsError):
        resolve_explicit(Table())


def test_resolved_tables_cannot_be_resolved_again() -> None:
    table = resolve_explicit(import_raw([["a"], ["1"]]))

    with pytest.raises(HeaderStateError):
        resolve_explicit(table)
    with pytest.raises(HeaderStateError):
        resolve_synthetic(table, ["x"])


def test_resolve_synthetic_keeps_first_row_as_data() -> None:
    raw = import_raw([["1", "2"], ["3", "4"]])

    table = resolve_synthetic(raw, ["left", "right"])

    assert first_row_width(raw) == 2
    assert table.headers == ("left", "right")
    assert table.rows == raw.rows
    assert table.header_mode is HeaderMode.SYNTHETIC


@pytest.mark.parametrize("names", [["only"], ["a", "b", "c"], ["a", ""]])
def test_resolve_synthetic_requires_one_non_empty_name_per_column(names: list[str]) -> None:
    raw = import_raw([["1", "2"]])

    with pytest.raises(IncompleteHeaderError):
        resolve_synthetic(raw, names)


# ── Editing ──────────────────────────────────────────────────────


def test_edit_cell_is_pure_and_changes_one_cell() -> None:
    table = _resolved(["a", "b"], [["1", "2"], ["3", "4"]])

    edited = edit_cell(table, 1, 0, "x")

    assert table.rows == (("1", "2"), ("3", "4"))
    assert edited.rows == (("1", "2"), ("x", "4"))
    assert edited.headers == table.headers


def test_edit_cell_past_the_end_pads_with_empty_rows() -> None:
    table = _resolved(["a", "b"], [["1", "2"]])

    edited = edit_cell(table, 3, 1, "z")

    assert edited.rows == (("1", "2"), ("", ""), ("", ""), ("", "z"))


def test_edit_cell_pads_short_row_to_header_width() -> None:
    table = _resolved(["a", "b", "c"], [["1"]])

    edited = edit_cell(table, 0, 1, "y")

    assert edited.rows == (("1", "y", ""),)


@pytest.mark.parametrize(("row", "col"), [(0, 2), (0, -1), (-1, 0)])
def test_edit_cell_rejects_bad_indexes(row: int, col: int) -> None:
    table = _resolved(["a", "b"], [["1", "2"]])

    with pytest.raises(IndexOutOfRangeError):
        edit_cell(table, row, col, "x")


def test_index_errors_are_also_builtin_index_errors() -> None:
    with pytest.raises(IndexError):
        delete_column(_resolved(["a"], []), 5)


def test_add_column_widens_every_row() -> None:
    table = _resolved(["a", "b"], [["1", "2"], ["3"]])

    widened = add_column(table, "c")

    assert widened.headers == ("a", "b", "c")
    assert widened.rows == (("1", "2", ""), ("3", "", ""))


def test_add_column_requires_a_name() -> None:
    with pytest.raises(IncompleteHeaderError):
        add_column(_resolved(["a"], []), "")


def test_add_then_delete_column_restores_the_table() -> None:
    table = _resolved(["a", "b"], [["1", "2"], ["3", "4"]])

    widened = add_column(table, "tmp")
    widened = edit_cell(widened, 0, 2, "lost")
    restored = delete_column(widened, 2)

    assert restored.headers == table.headers
    assert restored.rows == table.rows


def test_delete_column_removes_header_and_cells() -> None:
    table = _resolved(["a", "b", "c"], [["1", "2", "3"]])

    narrowed = delete_column(table, 1)

    assert narrowed.headers == ("a", "c")
    assert narrowed.rows == (("1", "3"),)


def test_delete_column_rejects_bad_index() -> None:
    with pytest.raises(IndexOutOfRangeError):
        delete_column(_resolved(["a"], [["1"]]), 1)


def test_normalize_rows_pads_and_cuts() -> None:
    table = _resolved(["a", "b"], [["1"], ["1", "2", "3"]])

    assert normalize_rows(table).rows == (("1", ""), ("1", "2"))


def test_bind_sets_and_clears_table_name() -> None:
    table = bind(_resolved(["a"], []), "sales")

    assert table.table_name == "sales"
    assert bind(table, None).table_name is None


# ── Custom columns ───────────────────────────────────────────────


def test_materialize_without_custom_columns_returns_rows_unchanged() -> None:
    table = _resolved(["a", "b"], [["1", "2"], ["3", "4"]])

    assert materialize(table) == [["1", "2"], ["3", "4"]]


def test_materialize_appends_one_value_per_custom_column() -> None:
    table = _resolved(["qty", "price"], [["2", "3"], ["oops", "1"]])
    table = add_custom_column(table, "total", "$1 * $2")
    table = add_custom_column(table, "note")

    rows = materialize(table)

    assert table.all_headers == ("qty", "price", "total", "note")
    assert rows[0] == ["2", "3", 6, ""]
    assert rows[1] == ["oops", "1", ERROR, ""]
    assert table.rows == (("2", "3"), ("oops", "1"))


def test_custom_formulas_only_see_base_columns() -> None:
    table = _resolved(["a"], [["5"]])
    table = add_custom_column(table, "double", "$1 * 2")
    table = add_custom_column(table, "chained", "$2 + 1")

    assert materialize(table) == [["5", 10, 1]]


def test_materialize_keeps_going_past_an_oversized_cell() -> None:
    table = _resolved(["n"], [["9" * 5000], ["2"]])
    table = add_custom_column(table, "next", "$1 + 1")

    assert materialize(table) == [["9" * 5000, ERROR], ["2", 3]]


def test_add_custom_column_requires_a_name() -> None:
    with pytest.raises(IncompleteHeaderError):
        add_custom_column(_resolved(["a"], []), "", "$1")


# ── Pagination ───────────────────────────────────────────────────


def test_paginate_sixty_rows_in_pages_of_twenty_five() -> None:
    rows = [[str(n)] for n in range(60)]

    assert len(paginate(rows, 25, 1)) == 25
    assert paginate(rows, 25, 3) == rows[50:]
    assert paginate(rows, 25, 4) == []
    assert paginate(rows, 25, 0) == []
    assert total_pages(len(rows), 25) == 3


def test_total_pages_of_empty_table_is_zero() -> None:
    assert total_pages(0, 25) == 0


def test_paginate_rejects_non_positive_page_size() -> None:
    with pytest.raises(ValueError, match="page_size"):
        paginate([], 0, 1)
