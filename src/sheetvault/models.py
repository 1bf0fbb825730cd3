"""Data models shared across the package."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from numbers import Integral
from typing import Any, Union

Scalar = Union[str, int, float, None]
"""Closed cell variant. Import normalizes every decoded value into it."""

Row = tuple[Scalar, ...]


class ErrorMarker:
    """Sentinel for a cell whose formula failed. Renders as ``Error``."""

    _instance: ErrorMarker | None = None

    def __new__(cls) -> ErrorMarker:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ERROR"

    def __str__(self) -> str:
        return "Error"

    def __reduce__(self) -> tuple[Any, ...]:
        return (ErrorMarker, ())


ERROR = ErrorMarker()

CellValue = Union[str, int, float, bool, None, ErrorMarker]
"""What a materialized cell may hold: a stored scalar or a computed value."""


class HeaderMode(str, Enum):
    """Header resolution state of a :class:`Table`."""

    UNRESOLVED = "unresolved"
    EXPLICIT = "explicit"
    SYNTHETIC = "synthetic"

    @property
    def resolved(self) -> bool:
        return self is not HeaderMode.UNRESOLVED


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_tuple(values: Sequence[Any] | None, field_name: str) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return tuple(normalized)


def _to_row(values: Sequence[Any], field_name: str) -> Row:
    if isinstance(values, (str, bytes)):
        raise TypeError(f"{field_name} must be a sequence of cells")
    cells: list[Scalar] = []
    for cell in values:
        if cell is not None and (isinstance(cell, bool) or not isinstance(cell, (str, int, float))):
            raise TypeError(
                f"{field_name} cells must be str, int, float or None "
                f"(got {type(cell).__name__})"
            )
        cells.append(cell)
    return tuple(cells)


@dataclass(frozen=True)
class CustomColumn:
    """Derived column: ``formula`` is evaluated per base row at read time."""

    name: str
    formula: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not isinstance(self.formula, str):
            raise TypeError("custom column name and formula must be strings")

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "formula": self.formula}


@dataclass(frozen=True)
class Table:
    """The working dataset.

    Instances are immutable; every operation in :mod:`sheetvault.table`
    returns a new ``Table``. ``rows`` may be ragged until normalized.
    """

    headers: tuple[str, ...] = ()
    rows: tuple[Row, ...] = ()
    table_name: str | None = None
    custom_columns: tuple[CustomColumn, ...] = ()
    header_mode: HeaderMode = HeaderMode.UNRESOLVED

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _to_string_tuple(self.headers, "headers"))
        object.__setattr__(
            self, "rows", tuple(_to_row(row, "rows") for row in (self.rows or ()))
        )
        custom = tuple(self.custom_columns or ())
        for column in custom:
            if not isinstance(column, CustomColumn):
                raise TypeError("custom_columns items must be CustomColumn")
        object.__setattr__(self, "custom_columns", custom)
        object.__setattr__(self, "header_mode", HeaderMode(self.header_mode))
        if self.table_name is not None and not isinstance(self.table_name, str):
            raise TypeError("table_name must be a string or None")

    @property
    def width(self) -> int:
        return len(self.headers)

    @property
    def all_headers(self) -> tuple[str, ...]:
        """Base headers followed by custom column names."""
        return self.headers + tuple(column.name for column in self.custom_columns)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "header_mode": self.header_mode.value,
            "headers": list(self.headers),
            "rows": [list(row) for row in self.rows],
            "custom_columns": [column.to_dict() for column in self.custom_columns],
        }


@dataclass
class TableView:
    """What presentation renders: one page of materialized rows."""

    headers: list[str] = field(default_factory=list)
    rows: list[list[CellValue]] = field(default_factory=list)
    table_name: str | None = None
    page: int = 1
    total_pages: int = 0

    def __post_init__(self) -> None:
        self.page = _to_non_negative_int(self.page, "page")
        self.total_pages = _to_non_negative_int(self.total_pages, "total_pages")
