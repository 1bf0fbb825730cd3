from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from openpyxl import Workbook

from sheetvault.errors import DecodeError, EmptyFileError, FileTooLargeError
from sheetvault.io import (
    decode_workbook,
    load_rows,
    normalize_scalar,
    read_upload,
    write_json,
)
from sheetvault.models import ERROR


def _xlsx_bytes(*sheets: list[list[object]]) -> bytes:
    wb = Workbook()
    active = wb.active
    assert active is not None
    wb.remove(active)
    for idx, rows in enumerate(sheets):
        ws = wb.create_sheet(title=f"Sheet{idx + 1}")
        for row in rows:
            ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ── read_upload ──────────────────────────────────────────────────


def test_read_upload_rejects_oversized_file_before_reading(tmp_path: Path) -> None:
    path = tmp_path / "big.xlsx"
    path.write_bytes(b"x" * (100 * 1024 + 1))
    calls: list[tuple[int, int]] = []

    with pytest.raises(FileTooLargeError, match="102401 bytes") as excinfo:
        read_upload(path, progress=lambda done, total: calls.append((done, total)))

    assert excinfo.value.size == 100 * 1024 + 1
    assert excinfo.value.limit == 100 * 1024
    assert calls == []


def test_read_upload_reports_monotonic_progress(tmp_path: Path) -> None:
    path = tmp_path / "data.xlsx"
    payload = bytes(range(256)) * 150
    path.write_bytes(payload)
    calls: list[tuple[int, int]] = []

    data = read_upload(
        path, chunk_size=16384, progress=lambda done, total: calls.append((done, total))
    )

    assert data == payload
    assert calls == [(16384, 38400), (32768, 38400), (38400, 38400)]


def test_read_upload_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_upload(tmp_path / "nope.xlsx")


def test_read_upload_rejects_directory(tmp_path: Path) -> None:
    folder = tmp_path / "fake.xlsx"
    folder.mkdir()

    with pytest.raises(DecodeError, match="not a file"):
        read_upload(folder)


# ── decode_workbook ──────────────────────────────────────────────


def test_decode_workbook_reads_first_sheet_only() -> None:
    data = _xlsx_bytes(
        [
            ["name", "qty", "when"],
            ["Widget", 3, datetime(2024, 1, 2)],
            [None, None, None],
            ["Gadget", 2.5],
        ],
        [["other", "sheet"]],
    )

    rows = decode_workbook(data, ".xlsx")

    assert rows == [
        ["name", "qty", "when"],
        ["Widget", 3, "2024-01-02"],
        ["Gadget", 2.5, None],
    ]


def test_decode_workbook_keeps_columns_beyond_a_short_header_row() -> None:
    data = _xlsx_bytes([["name", "qty", None], ["Widget", 3, "extra"]])

    rows = decode_workbook(data, ".xlsx")

    assert rows == [["name", "qty", None], ["Widget", 3, "extra"]]


def test_decode_workbook_rows_share_the_widest_width() -> None:
    data = _xlsx_bytes([[1, None, None, None], [2, 3, 4, None]])

    rows = decode_workbook(data, ".xlsx")

    assert rows == [[1, None, None], [2, 3, 4]]


def test_decode_workbook_garbage_raises_decode_error() -> None:
    with pytest.raises(DecodeError, match="valid Excel file"):
        decode_workbook(b"definitely not a zip archive", ".xlsx")


def test_decode_workbook_empty_sheet_raises() -> None:
    with pytest.raises(EmptyFileError):
        decode_workbook(_xlsx_bytes([]), ".xlsx")


def test_decode_workbook_rejects_unknown_type() -> None:
    with pytest.raises(DecodeError, match="Excel file"):
        decode_workbook(b"%PDF-1.4", ".pdf")


def test_decode_workbook_xls_without_xlrd_gives_hint(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fake_read_excel(*args: object, **kwargs: object) -> pd.DataFrame:
        del args, kwargs
        raise ImportError("No module named xlrd")

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    with pytest.raises(DecodeError, match="xlrd"):
        decode_workbook(b"x", ".xls")


def test_decode_csv_keeps_text() -> None:
    rows = decode_workbook(b"a,b\n1,2\n", ".csv")

    assert rows == [["a", "b"], ["1", "2"]]


def test_decode_csv_latin1_fallback() -> None:
    rows = decode_workbook("name,city\nAndré,Paris\n".encode("latin-1"), ".csv")

    assert rows[1] == ["André", "Paris"]


def test_decode_empty_csv_raises() -> None:
    with pytest.raises(EmptyFileError):
        decode_workbook(b"", ".csv")


def test_load_rows_reads_and_decodes(tmp_path: Path) -> None:
    path = tmp_path / "sales.xlsx"
    path.write_bytes(_xlsx_bytes([["region", "amount"], ["EU", 10]]))

    assert load_rows(path) == [["region", "amount"], ["EU", 10]]


# ── normalize_scalar ─────────────────────────────────────────────


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        (float("nan"), None),
        (pd.NaT, None),
        (True, "TRUE"),
        (np.int64(7), 7),
        (np.float64(1.5), 1.5),
        ("text", "text"),
        (datetime(2024, 5, 6), "2024-05-06"),
        (datetime(2024, 5, 6, 7, 8, 9), "2024-05-06T07:08:09"),
        (pd.Timestamp("2024-05-06"), "2024-05-06"),
    ],
)
def test_normalize_scalar(value: object, expected: object) -> None:
    assert normalize_scalar(value) == expected


# ── write_json ───────────────────────────────────────────────────


def test_write_json_is_atomic_and_deterministic(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "artifact.json"
    payload = {
        "b": 1,
        "a": datetime(2024, 1, 2, 3, 4, 5),
        "path": Path("foo/bar"),
    }

    out = write_json(path, payload)

    assert out == path
    text = path.read_text(encoding="utf-8")
    assert text.endswith("\n")
    assert '"a": "2024-01-02T03:04:05"' in text
    assert '"path": "foo/bar"' in text
    assert text.index('"a"') < text.index('"b"') < text.index('"path"')
    assert not path.with_suffix(path.suffix + ".tmp").exists()


def test_write_json_renders_error_marker(tmp_path: Path) -> None:
    path = write_json(tmp_path / "rows.json", {"rows": [[1, ERROR]]})

    assert '"Error"' in path.read_text(encoding="utf-8")


def test_write_json_raises_on_unknown_type(tmp_path: Path) -> None:
    class Unknown:
        pass

    with pytest.raises(TypeError, match="not JSON serializable"):
        write_json(tmp_path / "artifact.json", {"x": Unknown()})
