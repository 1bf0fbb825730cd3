"""sheet-vault — Import spreadsheets, edit them as tables, keep them in a local store."""

from pathlib import Path

__version__ = "0.1.0"

PAGE_SIZE: int = 25
"""Rows shown per page by the workspace view."""

MAX_UPLOAD_BYTES: int = 100 * 1024
"""Uploads above this size are rejected before decoding."""

DEFAULT_STORE_PATH: Path = Path("sheetvault.sqlite")
STORE_ENV_VAR: str = "SVAULT_STORE"
