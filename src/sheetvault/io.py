"""I/O helpers — read uploads, decode workbooks into rows, write JSON artifacts."""

from __future__ import annotations

import io
import json
import logging
import math
import zipfile
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, cast

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from sheetvault import MAX_UPLOAD_BYTES
from sheetvault.errors import DecodeError, EmptyFileError, FileTooLargeError
from sheetvault.models import ErrorMarker, Scalar

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

OPENPYXL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
SUPPORTED_SUFFIXES = (*OPENPYXL_SUFFIXES, ".xls", ".csv")

DEFAULT_CHUNK_SIZE = 16 * 1024

# ── Reading uploads ──────────────────────────────────────────────


def read_upload(
    path: Path,
    *,
    max_bytes: int = MAX_UPLOAD_BYTES,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress: ProgressCallback | None = None,
) -> bytes:
    """Read *path* in chunks and return the complete byte buffer.

    *progress* is called as ``progress(bytes_read, total_bytes)`` after
    every chunk; ``bytes_read`` only ever grows.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    FileTooLargeError
        If the file is larger than *max_bytes*. Nothing is read.
    DecodeError
        If *path* is a directory.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.is_dir():
        raise DecodeError(f"Input path is a directory, not a file: {path}")
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    total = path.stat().st_size
    if total > max_bytes:
        raise FileTooLargeError(total, max_bytes)

    chunks: list[bytes] = []
    done = 0
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            chunks.append(chunk)
            done += len(chunk)
            if progress is not None:
                progress(done, max(total, done))
    if progress is not None and done == 0:
        progress(0, 0)
    return b"".join(chunks)


# ── Normalisation ────────────────────────────────────────────────


def normalize_scalar(value: Any) -> Scalar:
    """Map one decoded cell onto ``str | int | float | None``."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if value is pd.NaT:
        return None
    if isinstance(value, datetime):
        if value.time() == time(0) and value.tzinfo is None:
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    item = getattr(value, "item", None)
    if callable(item):
        try:
            value = item()
        except (ValueError, TypeError):
            pass
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        return None if math.isnan(value) else value
    if isinstance(value, int):
        return value
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return str(value)


def _used_width(cells: list[Scalar]) -> int:
    width = len(cells)
    while width and cells[width - 1] in (None, ""):
        width -= 1
    return width


def _frame_to_rows(df: pd.DataFrame) -> list[list[Scalar]]:
    """Rows of the sheet's used range, all of one width.

    Blank rows are skipped. Trailing columns that are empty in every row
    are dropped; a cell left blank inside the used range stays ``None``
    (or ``""`` for CSV).
    """
    rows: list[list[Scalar]] = []
    width = 0
    for values in df.itertuples(index=False, name=None):
        cells = [normalize_scalar(v) for v in values]
        used = _used_width(cells)
        if used:
            rows.append(cells)
            width = max(width, used)
    return [row[:width] for row in rows]


# ── Decoding ─────────────────────────────────────────────────────


def _read_csv_bytes(data: bytes) -> pd.DataFrame:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError as exc:
            last_exc = exc
            continue
        if not text.strip():
            return pd.DataFrame()
        try:
            return pd.read_csv(
                io.StringIO(text),
                header=None,
                dtype=str,
                sep=None,
                engine="python",
                keep_default_na=False,
                skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except pd.errors.ParserError as exc:
            last_exc = exc
    raise DecodeError("Could not read CSV (decode or parse failed)") from last_exc


def decode_workbook(data: bytes, suffix: str = ".xlsx") -> list[list[Scalar]]:
    """Decode the first sheet of a workbook into raw rows.

    Fully empty rows are skipped and trailing empty cells are trimmed.

    Raises
    ------
    DecodeError
        If the bytes are not a readable workbook of the given type.
    EmptyFileError
        If the first sheet has no rows.
    """
    suffix = suffix.lower()
    read_excel = cast(Callable[..., pd.DataFrame], getattr(pd, "read_excel"))

    if suffix == ".csv":
        df = _read_csv_bytes(data)
    elif suffix in OPENPYXL_SUFFIXES:
        try:
            df = read_excel(
                io.BytesIO(data), engine="openpyxl", header=None, sheet_name=0, dtype=object
            )
        except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as exc:
            raise DecodeError(
                "Error reading file. Please make sure it's a valid Excel file."
            ) from exc
    elif suffix == ".xls":
        try:
            df = read_excel(
                io.BytesIO(data), engine="xlrd", header=None, sheet_name=0, dtype=object
            )
        except ImportError as exc:
            raise DecodeError(
                "Unsupported .xls input unless 'xlrd' is installed. "
                "Either convert to .xlsx or add dependency: pip install xlrd"
            ) from exc
        except (ValueError, KeyError, OSError) as exc:
            raise DecodeError(
                "Error reading file. Please make sure it's a valid Excel file."
            ) from exc
    else:
        raise DecodeError(
            f"Unsupported file type: {suffix!r}. Please upload an Excel file (.xlsx or .xls)"
        )

    rows = _frame_to_rows(df)
    if not rows:
        raise EmptyFileError("The uploaded file is empty")
    logger.debug("decoded %d rows from %s workbook", len(rows), suffix)
    return rows


def load_rows(
    path: Path,
    *,
    max_bytes: int = MAX_UPLOAD_BYTES,
    progress: ProgressCallback | None = None,
) -> list[list[Scalar]]:
    """Read *path* (size-checked, chunked) and decode its first sheet."""
    path = Path(path)
    data = read_upload(path, max_bytes=max_bytes, progress=progress)
    return decode_workbook(data, path.suffix)


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, ErrorMarker):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path
