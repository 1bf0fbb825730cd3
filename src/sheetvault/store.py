"""Persistence bridge — named tables in an embedded SQLite image.

The whole database lives in memory while a :class:`TableStore` is open.
Its serialized image is the unit of durability: it is read from a
:class:`BlobSlot` on open and written back in full after every
mutation. A failed mutation leaves both the live database and the slot
as they were.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

from sheetvault.errors import (
    CorruptStoreError,
    InvalidTableNameError,
    SchemaMismatchError,
    StoreError,
    TableNotFoundError,
)
from sheetvault.formula import format_number
from sheetvault.models import CellValue, ErrorMarker, HeaderMode, Table

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"\W", re.ASCII)


# ── Durable slots ────────────────────────────────────────────────


class BlobSlot(Protocol):
    """One named place holding the full database image."""

    def read(self) -> bytes | None:
        """Return the stored image, or ``None`` if nothing was saved yet."""
        ...

    def write(self, data: bytes) -> None:
        """Replace the stored image with *data*."""
        ...


class FileSlot:
    """Image kept in a single file, replaced atomically on write."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read(self) -> bytes | None:
        if not self.path.exists():
            return None
        if self.path.is_dir():
            raise CorruptStoreError(f"Store path is a directory, not a file: {self.path}")
        return self.path.read_bytes()

    def write(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(self.path)

    def __repr__(self) -> str:
        return f"FileSlot({str(self.path)!r})"


class MemorySlot:
    """Image kept in process memory (tests, throwaway sessions)."""

    def __init__(self, data: bytes | None = None) -> None:
        self.data = data
        self.writes = 0

    def read(self) -> bytes | None:
        return self.data

    def write(self, data: bytes) -> None:
        self.data = bytes(data)
        self.writes += 1


# ── Helpers ──────────────────────────────────────────────────────


def sanitize_column(header: str) -> str:
    """Column identifier for *header*: every non-word character becomes ``_``."""
    return _NON_WORD_RE.sub("_", header)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _to_text(cell: CellValue) -> str | None:
    if cell is None:
        return None
    if isinstance(cell, ErrorMarker):
        return str(cell)
    if isinstance(cell, bool):
        return "true" if cell else "false"
    if isinstance(cell, (int, float)):
        return format_number(cell)
    return str(cell)


def _check_table_name(name: str) -> None:
    if not isinstance(name, str) or not name.strip():
        raise InvalidTableNameError("Please enter a table name")


def _prepare_rows(
    rows: Sequence[Sequence[CellValue]], width: int
) -> list[tuple[str | None, ...]]:
    prepared: list[tuple[str | None, ...]] = []
    for idx, row in enumerate(rows):
        if len(row) > width:
            raise SchemaMismatchError(
                f"Row {idx} has {len(row)} cells but the table has {width} columns"
            )
        cells = [_to_text(cell) for cell in row]
        cells.extend([None] * (width - len(cells)))
        prepared.append(tuple(cells))
    return prepared


# ── Store ────────────────────────────────────────────────────────


class TableStore:
    """Single-table CRUD over one durable database image.

    Lifecycle is ``open -> (mutate/commit)* -> close``; operations open
    the store on first use. Usable as a context manager.
    """

    def __init__(self, slot: BlobSlot) -> None:
        self.slot = slot
        self._conn: sqlite3.Connection | None = None

    # -- lifecycle ---------------------------------------------------

    def open(self) -> TableStore:
        if self._conn is None:
            self._conn = self._load()
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> TableStore:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _load(self) -> sqlite3.Connection:
        data = self.slot.read()
        conn = sqlite3.connect(":memory:", isolation_level=None)
        if not data:
            logger.debug("no saved image in %r; starting an empty store", self.slot)
            return conn
        try:
            conn.deserialize(data)
            conn.execute("SELECT name FROM sqlite_master").fetchall()
        except sqlite3.DatabaseError as exc:
            conn.close()
            raise CorruptStoreError(
                f"Saved database could not be opened ({len(data)} bytes): {exc}"
            ) from exc
        logger.debug("opened store image from %r (%d bytes)", self.slot, len(data))
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = self._load()
        return self._conn

    def _discard(self) -> None:
        # Next use reloads from the slot, which still holds the last good image.
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        conn.execute("BEGIN")
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreError(f"Database operation failed: {exc}") from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        try:
            self._commit(conn)
        except BaseException:
            self._discard()
            raise

    def _commit(self, conn: sqlite3.Connection) -> None:
        data = conn.serialize()
        self.slot.write(data)
        logger.info("store committed (%d bytes)", len(data))

    def export_image(self) -> bytes:
        """Serialized image of the live database."""
        return self._connection().serialize()

    # -- queries -----------------------------------------------------

    @staticmethod
    def _exists(conn: sqlite3.Connection, name: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        return row is not None

    @classmethod
    def _columns(cls, conn: sqlite3.Connection, name: str) -> list[str]:
        if not cls._exists(conn, name):
            raise TableNotFoundError(name)
        info = conn.execute(f"PRAGMA table_info({_quote(name)})").fetchall()
        return [str(col[1]) for col in info]

    def list_tables(self) -> set[str]:
        """Names of all saved tables."""
        conn = self._connection()
        result = conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        return {str(row[0]) for row in result}

    def load_table(self, name: str) -> Table:
        """Read a saved table back, bound to *name*.

        Headers are the sanitized column identifiers, and every value
        comes back as text (or ``None``).
        """
        _check_table_name(name)
        conn = self._connection()
        headers = self._columns(conn, name)
        rows = conn.execute(f"SELECT * FROM {_quote(name)} ORDER BY rowid").fetchall()
        logger.debug("loaded %r: %d rows x %d columns", name, len(rows), len(headers))
        return Table(
            headers=tuple(headers),
            rows=tuple(tuple(row) for row in rows),
            table_name=name,
            header_mode=HeaderMode.EXPLICIT,
        )

    # -- mutations ---------------------------------------------------

    def _insert(
        self,
        conn: sqlite3.Connection,
        name: str,
        rows: Sequence[Sequence[CellValue]],
        width: int,
    ) -> int:
        prepared = _prepare_rows(rows, width)
        placeholders = ", ".join("?" for _ in range(width))
        conn.executemany(f"INSERT INTO {_quote(name)} VALUES ({placeholders})", prepared)
        return len(prepared)

    def create_table(
        self,
        name: str,
        headers: Sequence[str],
        rows: Sequence[Sequence[CellValue]],
    ) -> None:
        """(Re)create *name* with one text column per header and insert *rows*.

        An existing table of the same name is replaced.
        """
        _check_table_name(name)
        columns = [sanitize_column(header) for header in headers]
        if not columns:
            raise SchemaMismatchError("A table needs at least one column")
        seen: set[str] = set()
        for column in columns:
            key = column.lower()
            if key in seen:
                raise SchemaMismatchError(
                    f"Duplicate column {column!r} after sanitizing headers"
                )
            seen.add(key)

        column_defs = ", ".join(f"{_quote(column)} TEXT" for column in columns)
        with self._transaction() as conn:
            conn.execute(f"DROP TABLE IF EXISTS {_quote(name)}")
            conn.execute(f"CREATE TABLE {_quote(name)} ({column_defs})")
            count = self._insert(conn, name, rows, len(columns))
        logger.info("created table %r (%d columns, %d rows)", name, len(columns), count)

    def append_rows(
        self,
        name: str,
        headers: Sequence[str],
        rows: Sequence[Sequence[CellValue]],
    ) -> None:
        """Insert *rows* into an existing table.

        Only the column count is checked against *headers*, not the names.
        """
        _check_table_name(name)
        with self._transaction() as conn:
            columns = self._columns(conn, name)
            if len(columns) != len(headers):
                raise SchemaMismatchError(
                    "Column count does not match the selected table "
                    f"({len(headers)} given, {name!r} has {len(columns)})"
                )
            count = self._insert(conn, name, rows, len(columns))
        logger.info("appended %d rows to %r", count, name)

    def drop_table(self, name: str) -> bool:
        """Remove *name*; returns whether it existed."""
        _check_table_name(name)
        with self._transaction() as conn:
            existed = self._exists(conn, name)
            conn.execute(f"DROP TABLE IF EXISTS {_quote(name)}")
        logger.info("dropped table %r", name)
        return existed
