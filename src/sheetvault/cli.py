"""CLI entry point for sheet-vault."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn
from rich.table import Table as RichTable

from sheetvault import DEFAULT_STORE_PATH, STORE_ENV_VAR, __version__
from sheetvault.errors import FileTooLargeError, IncompleteHeaderError, SheetVaultError
from sheetvault.formula import evaluate
from sheetvault.io import write_json
from sheetvault.models import CellValue, ErrorMarker, Table
from sheetvault.report import write_export
from sheetvault.session import Workspace
from sheetvault.store import FileSlot, TableStore
from sheetvault.utils import format_size, utcnow_iso

app = typer.Typer(
    name="svault",
    help="sheet-vault — Import spreadsheets, edit them as tables, keep them in a local store.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"sheet-vault v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _store_option() -> Any:
    return typer.Option(
        DEFAULT_STORE_PATH, "--store", "-s",
        envvar=STORE_ENV_VAR,
        help="Database file holding the saved tables.",
    )


def _quiet_option() -> Any:
    return typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output.",
    )


@contextmanager
def _guard() -> Iterator[None]:
    """Map library errors to exit code 2 and anything else to exit code 1."""
    try:
        yield
    except typer.Exit:
        raise
    except FileTooLargeError as exc:
        _err(f"File size exceeds the {format_size(exc.limit)} limit ({format_size(exc.size)})")
        raise typer.Exit(code=2)
    except (SheetVaultError, FileNotFoundError, ValueError) as exc:
        _err(str(exc))
        raise typer.Exit(code=2)
    except Exception as exc:
        _err(f"Unexpected internal error: {exc}")
        raise typer.Exit(code=1)


def _parse_names(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(",")]


def _parse_custom_columns(raw: Sequence[str] | None) -> list[tuple[str, str]]:
    """Parse ``--column name=formula`` pairs."""
    if not raw:
        return []
    columns: list[tuple[str, str]] = []
    for item in raw:
        if "=" not in item:
            raise IncompleteHeaderError(
                f"Invalid --column value: {item!r}  (expected name=formula)"
            )
        name, formula = item.split("=", 1)
        name = name.strip()
        if not name:
            raise IncompleteHeaderError("--column entries must have a non-empty name")
        columns.append((name, formula.strip()))
    return columns


def _parse_cell_edits(raw: Sequence[str] | None) -> list[tuple[int, int, str]]:
    """Parse ``--set ROW,COL=VALUE`` into 0-based ``(row, col, value)``.

    ROW and COL are 1-based, matching the ``#`` column of ``show`` and
    the ``$N`` references of formulas.
    """
    if not raw:
        return []
    edits: list[tuple[int, int, str]] = []
    for item in raw:
        target, sep, value = item.partition("=")
        row_text, comma, col_text = target.partition(",")
        if not sep or not comma:
            raise ValueError(f"Invalid --set value: {item!r}  (expected ROW,COL=VALUE)")
        try:
            row, col = int(row_text.strip()), int(col_text.strip())
        except ValueError:
            raise ValueError(
                f"Invalid --set value: {item!r}  (ROW and COL must be integers)"
            ) from None
        edits.append((row - 1, col - 1, value))
    return edits


def _cell_text(value: CellValue) -> str:
    if value is None:
        return ""
    if isinstance(value, ErrorMarker):
        return f"[red]{value}[/red]"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _prepare_import(
    workspace: Workspace,
    input_file: Path,
    *,
    has_headers: bool,
    names: str | None,
    columns: Sequence[str] | None,
    quiet: bool,
) -> None:
    echo = _printer(quiet)
    custom = _parse_custom_columns(columns)

    echo(f"[blue]>[/blue] Reading {input_file.name} …")
    if quiet:
        raw = workspace.import_file(input_file)
    else:
        with Progress(
            TextColumn("  {task.description}"),
            BarColumn(),
            DownloadColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("upload", total=None)

            def _advance(done: int, total: int) -> None:
                progress.update(task, completed=done, total=total)

            raw = workspace.import_file(input_file, progress=_advance)

    echo(f"  {len(raw.rows)} raw rows")

    if has_headers:
        table = workspace.confirm_headers(True)
    else:
        table = workspace.confirm_headers(False, _parse_names(names))
    for name, formula in custom:
        table = workspace.add_custom_column(name, formula)

    _echo_shape(echo, table)


def _echo_shape(echo: Callable[..., None], table: Table) -> None:
    echo(
        f"  {len(table.rows)} rows x {table.width} columns"
        + (f" (+{len(table.custom_columns)} computed)" if table.custom_columns else "")
    )


def _render_view(workspace: Workspace, title: str) -> None:
    view = workspace.view()
    tbl = RichTable(title=title, show_lines=False)
    tbl.add_column("#", style="dim", justify="right")
    for header in view.headers:
        tbl.add_column(header)
    offset = (view.page - 1) * workspace.page_size
    for idx, row in enumerate(view.rows, start=offset + 1):
        tbl.add_row(str(idx), *(_cell_text(cell) for cell in row))
    console.print(tbl)
    console.print(f"  Page {view.page} of {max(view.total_pages, 1)}")


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log store and import details to stderr.",
    ),
) -> None:
    """sheet-vault CLI."""
    _configure_logging(verbose)


# ── import / append ──────────────────────────────────────────────


@app.command("import")
def import_(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to an .xlsx, .xls or .csv file (first sheet is read).",
        exists=True, readable=True,
    ),
    table_name: str = typer.Option(..., "--table", "-t", help="Name to save the table under."),
    has_headers: bool = typer.Option(
        True, "--headers/--no-headers",
        help="Whether the first row holds column names.",
    ),
    names: str | None = typer.Option(
        None, "--names",
        help="Comma-separated column names (with --no-headers).",
    ),
    columns: list[str] | None = typer.Option(
        None, "--column", "-c",
        help="Computed column: name=formula, e.g. --column total='$2 * $3'.",
    ),
    store: Path = _store_option(),
    quiet: bool = _quiet_option(),
) -> None:
    """Import a spreadsheet and save it as a table (replacing any table of that name)."""
    echo = _printer(quiet)
    if not quiet:
        console.print(Panel(
            f"[bold]sheet-vault[/bold] v{__version__}\n"
            f"Input: {input_file}\nStore: {store}\nTable: {table_name}",
            title="Import", border_style="blue",
        ))
    with _guard(), TableStore(FileSlot(store)) as table_store:
        workspace = Workspace(table_store)
        _prepare_import(
            workspace, input_file,
            has_headers=has_headers, names=names, columns=columns, quiet=quiet,
        )
        echo(f"[blue]>[/blue] Saving table {table_name!r} …")
        workspace.save_as(table_name)
        echo(f"[green]Done[/green] — {len(workspace.table.rows)} rows -> {table_name}")


@app.command()
def append(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to an .xlsx, .xls or .csv file (first sheet is read).",
        exists=True, readable=True,
    ),
    table_name: str = typer.Option(..., "--table", "-t", help="Existing table to append to."),
    has_headers: bool = typer.Option(
        True, "--headers/--no-headers",
        help="Whether the first row holds column names.",
    ),
    names: str | None = typer.Option(
        None, "--names",
        help="Comma-separated column names (with --no-headers).",
    ),
    columns: list[str] | None = typer.Option(
        None, "--column", "-c",
        help="Computed column: name=formula.",
    ),
    store: Path = _store_option(),
    quiet: bool = _quiet_option(),
) -> None:
    """Append a spreadsheet's rows to an existing table (column counts must match)."""
    echo = _printer(quiet)
    with _guard(), TableStore(FileSlot(store)) as table_store:
        workspace = Workspace(table_store)
        _prepare_import(
            workspace, input_file,
            has_headers=has_headers, names=names, columns=columns, quiet=quiet,
        )
        echo(f"[blue]>[/blue] Appending to {table_name!r} …")
        workspace.append_to(table_name)
        echo(f"[green]Done[/green] — {len(workspace.table.rows)} rows appended to {table_name}")


@app.command()
def edit(
    table_name: str = typer.Argument(..., help="Saved table to change."),
    cells: list[str] | None = typer.Option(
        None, "--set",
        help="Cell edit ROW,COL=VALUE (1-based; rows past the end are added).",
    ),
    add_columns: list[str] | None = typer.Option(
        None, "--add-column",
        help="Append an empty column with this name.",
    ),
    drop_columns: list[int] | None = typer.Option(
        None, "--drop-column",
        help="Delete the column at this 1-based position.",
    ),
    columns: list[str] | None = typer.Option(
        None, "--column", "-c",
        help="Computed column: name=formula, stored as plain values on save.",
    ),
    store: Path = _store_option(),
    quiet: bool = _quiet_option(),
) -> None:
    """Change a saved table in place and save it.

    Applied in this order: --drop-column, --add-column, --set, --column.
    Column positions for --drop-column refer to the table as saved.
    """
    echo = _printer(quiet)
    with _guard(), TableStore(FileSlot(store)) as table_store:
        custom = _parse_custom_columns(columns)
        edits = _parse_cell_edits(cells)
        workspace = Workspace(table_store)
        table = workspace.load(table_name)

        for position in sorted(set(drop_columns or []), reverse=True):
            table = workspace.delete_column(position - 1)
        for name in add_columns or []:
            table = workspace.add_column(name)
        for row, col, value in edits:
            table = workspace.edit_cell(row, col, value)
        for name, formula in custom:
            table = workspace.add_custom_column(name, formula)

        _echo_shape(echo, table)
        echo(f"[blue]>[/blue] Saving changes to {table_name!r} …")
        workspace.save_changes()
        echo(f"[green]Done[/green] — {len(edits)} cells edited in {table_name}")


# ── store commands ───────────────────────────────────────────────


@app.command()
def tables(store: Path = _store_option()) -> None:
    """List saved tables."""
    with _guard(), TableStore(FileSlot(store)) as table_store:
        names = Workspace(table_store).tables()
    if not names:
        console.print("  No saved tables")
        return
    tbl = RichTable(title="Saved tables")
    tbl.add_column("Table", style="bold")
    for name in names:
        tbl.add_row(name)
    console.print(tbl)


@app.command()
def show(
    table_name: str = typer.Argument(..., help="Table to display."),
    page: int = typer.Option(1, "--page", "-p", help="Page to display (1-based)."),
    store: Path = _store_option(),
) -> None:
    """Show one page of a saved table."""
    with _guard(), TableStore(FileSlot(store)) as table_store:
        workspace = Workspace(table_store)
        workspace.load(table_name)
        workspace.set_page(page)
        _render_view(workspace, table_name)


@app.command()
def drop(
    table_name: str = typer.Argument(..., help="Table to delete."),
    store: Path = _store_option(),
    quiet: bool = _quiet_option(),
) -> None:
    """Delete a saved table."""
    echo = _printer(quiet)
    with _guard(), TableStore(FileSlot(store)) as table_store:
        existed = Workspace(table_store).drop(table_name)
    if existed:
        echo(f"[green]Deleted[/green] {table_name}")
    else:
        echo(f"[yellow]![/yellow] No table named {table_name!r}; nothing deleted")


@app.command()
def export(
    table_name: str = typer.Argument(..., help="Table to export."),
    out: Path = typer.Option(
        ..., "--out", "-o",
        help="Output file: .xlsx for a printable workbook, .json for raw data.",
    ),
    store: Path = _store_option(),
    quiet: bool = _quiet_option(),
) -> None:
    """Export a saved table to .xlsx or .json."""
    echo = _printer(quiet)
    with _guard(), TableStore(FileSlot(store)) as table_store:
        workspace = Workspace(table_store)
        table = workspace.load(table_name)
        suffix = out.suffix.lower()
        if suffix == ".json":
            payload = table.to_dict()
            payload["exported_at_utc"] = utcnow_iso()
            path = write_json(out, payload)
        elif suffix == ".xlsx":
            path = write_export(
                out, table.headers, workspace.materialized_rows(), title=table_name
            )
        else:
            raise ValueError(f"Unsupported export type: {suffix!r}. Use .xlsx or .json")
        echo(f"  Export -> {path}")


@app.command("eval")
def eval_(
    formula: str = typer.Argument(..., help="Formula over $1..$N, e.g. '$1 * $2'."),
    values: list[str] | None = typer.Argument(None, help="Row values bound to $1, $2, …"),
) -> None:
    """Evaluate one formula against one row of values."""
    result = evaluate(formula, values or [])
    console.print(_cell_text(result))
    if isinstance(result, ErrorMarker):
        raise typer.Exit(code=2)
