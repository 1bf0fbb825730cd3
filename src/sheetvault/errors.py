"""Error taxonomy shared by the data model, the import adapter and the store."""

from __future__ import annotations


class SheetVaultError(Exception):
    """Base class for every error raised by sheet-vault."""


# ── Table preconditions ──────────────────────────────────────────


class EmptyInputError(SheetVaultError, ValueError):
    """Raw import produced no rows."""


class InsufficientRowsError(SheetVaultError, ValueError):
    """Not enough rows to promote the first one to headers."""


class IncompleteHeaderError(SheetVaultError, ValueError):
    """Synthetic header names are missing, blank, or the wrong count."""


class IndexOutOfRangeError(SheetVaultError, IndexError):
    """A row or column index falls outside the table."""


class HeaderStateError(SheetVaultError, ValueError):
    """Header resolution was requested on a table that is already resolved."""


# ── Import ───────────────────────────────────────────────────────


class DecodeError(SheetVaultError, ValueError):
    """Uploaded bytes could not be decoded as a workbook."""


class EmptyFileError(SheetVaultError, ValueError):
    """Workbook decoded fine but its first sheet has no rows."""


class FileTooLargeError(SheetVaultError, ValueError):
    """Upload exceeds the size ceiling.

    Attributes:
        size: Actual size of the upload in bytes.
        limit: Configured ceiling in bytes.
    """

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"File is too large: {size / 1024:.1f} KiB ({size} bytes); "
            f"maximum is {limit / 1024:.0f} KiB"
        )


# ── Store ────────────────────────────────────────────────────────


class StoreError(SheetVaultError):
    """Base class for persistence failures."""


class SchemaMismatchError(StoreError, ValueError):
    """Row payload does not fit the relation it targets."""


class CorruptStoreError(StoreError):
    """Durable image could not be opened as a database."""


class TableNotFoundError(StoreError, LookupError):
    """Named relation does not exist in the store."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Table not found: {name!r}")


class InvalidTableNameError(StoreError, ValueError):
    """Table name is empty or otherwise unusable."""


# ── Formulas ─────────────────────────────────────────────────────


class FormulaEvaluationError(SheetVaultError):
    """A formula failed for one row.

    Never escapes :func:`sheetvault.table.materialize`; the failing cell
    becomes :data:`sheetvault.formula.ERROR` instead.
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        full = f"Formula error: {message}"
        if position is not None:
            full += f" (at position {position})"
        super().__init__(full)
