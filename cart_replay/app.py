"""Typer CLI entrypoint for cart replay."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, AsyncContextManager, Awaitable, Callable, List, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ConfigRepository, GlobalConfig
from .engine.exporter import SUPPORTED_FORMATS, FileExporter
from .errors import CartReplayError
from .infra import KeyValueStore
from .logging_conf import configure_logging, replay_log_path, tail_log
from .models import FilterSnapshot
from .orchestrator import ExportOrchestrator, ExportReport, ExporterFactory, ItemResult, open_session
from .queue import PersistedQueue

app = typer.Typer(
    help="Cart replay command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
cart_app = typer.Typer(
    name="cart",
    help="Manage the export cart",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Inspect replay logs",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()

SessionFactory = Callable[..., AsyncContextManager[ExportOrchestrator]]


@dataclass
class AppState:
    repository: ConfigRepository
    config: GlobalConfig
    queue: PersistedQueue
    session: SessionFactory


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    config = repository.load_global_config()
    store = KeyValueStore(repository.store_path())
    queue = PersistedQueue(store, capacity=config.queue_capacity)
    return AppState(
        repository=repository,
        config=config,
        queue=queue,
        session=partial(open_session, queue, config),
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _run(
    state: AppState,
    action: Callable[[ExportOrchestrator], Awaitable[Any]],
    **session_options: Any,
) -> Any:
    async def _go() -> Any:
        async with state.session(**session_options) as orchestrator:
            return await action(orchestrator)

    return asyncio.run(_go())


def _render_cart_table(items: Sequence[FilterSnapshot]) -> Table:
    table = Table(title=f"Export cart · {len(items)} item(s)", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Source", style="magenta")
    table.add_column("Title", overflow="fold")
    table.add_column("Estimate", justify="right", style="green")
    table.add_column("Added", style="dim")
    for item in items:
        table.add_row(
            item.id,
            item.data_source.value,
            escape(item.label),
            str(item.estimated_count),
            item.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    return table


def _notes(result: ItemResult) -> str:
    notes: list[str] = []
    if result.reason:
        notes.append(result.reason)
    if result.preview:
        notes.append(f"offline preview: {len(result.preview)} row(s)")
    if result.mismatch is not None:
        notes.append(f"count changed: {result.mismatch.describe()}")
    if result.trimmed:
        notes.append(f"trimmed {result.trimmed}")
    if result.limit_exceeded:
        notes.append("page limit reached, result may be partial")
    if result.relaxed_clause:
        notes.append(f"{result.relaxed_clause} applied client-side")
    if result.status == "preview":
        notes.append("from stored preview")
    return "; ".join(notes) or "-"


def _render_report(report: ExportReport) -> Table:
    table = Table(title=f"Export results · run {report.run_tag}", box=box.SIMPLE_HEAD)
    table.add_column("Item", style="cyan", overflow="fold")
    table.add_column("Source", style="magenta")
    table.add_column("Status")
    table.add_column("Exported / Expected", justify="right")
    table.add_column("Notes", overflow="fold")
    table.add_column("File", style="dim", overflow="fold")
    for result in report.items:
        status_style = "green" if result.ok else "red"
        table.add_row(
            escape(result.label),
            result.data_source or "-",
            f"[{status_style}]{result.status}[/{status_style}]",
            f"{result.count} / {result.expected}",
            escape(_notes(result)),
            str(result.output_path) if result.output_path else "-",
        )
    return table


app.add_typer(cart_app, name="cart", help="Manage the export cart (list/add/remove/clear/summary)")
app.add_typer(log_app, name="log", help="Show replay logs")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@cart_app.command("list", help="Show queued filter snapshots.")
def cart_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    items = state.queue.items()
    if not items:
        console.print("The cart is empty. Add a query with `cart-replay cart add FILE`.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_cart_table(items))


@cart_app.command("add", help="Estimate a saved query and put it in the cart.")
def cart_add(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="YAML or JSON snapshot request file."),
    estimated: Optional[int] = typer.Option(
        None,
        "--estimated",
        min=0,
        help="Use this count instead of running a count query.",
    ),
) -> None:
    state = _get_state(ctx)
    try:
        snapshot = state.repository.load_snapshot_request(path)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=1)
    except ValueError as exc:
        console.print(f"Invalid snapshot request: {escape(str(exc))}", style="red")
        raise typer.Exit(code=1)
    try:
        added = _run(state, lambda orchestrator: orchestrator.add_to_cart(snapshot, estimated_count=estimated))
    except CartReplayError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=1)
    console.print(
        f"Added `{escape(added.label)}` ({added.data_source.value}) with {added.estimated_count} "
        f"estimated record(s). ID: {added.id}",
        style="green",
    )


@cart_app.command("remove", help="Remove one item from the cart.")
def cart_remove(
    ctx: typer.Context,
    item_id: str = typer.Argument(..., help="Cart item ID."),
) -> None:
    state = _get_state(ctx)
    if not state.queue.remove(item_id):
        console.print(f"No cart item `{item_id}`.", style="red")
        raise typer.Exit(code=1)
    console.print(f"Removed `{item_id}`.", style="green")


@cart_app.command("clear", help="Remove every item from the cart.")
def cart_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm("Remove every item from the cart?"):
        console.print("Cart left unchanged.", style="yellow")
        raise typer.Exit(code=0)
    removed = state.queue.clear()
    console.print(f"Cleared {removed} item(s).", style="green")


@cart_app.command("summary", help="Show item count and total estimated records.")
def cart_summary(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    summary = state.queue.summary()
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Items", justify="right", style="cyan")
    table.add_column("Capacity", justify="right")
    table.add_column("Estimated records", justify="right", style="green")
    table.add_row(str(summary.entries), str(state.queue.capacity), str(summary.total_estimated))
    console.print(table)


def _file_exporter_factory(output_dir: Path, fmt: str) -> ExporterFactory:
    def factory(snapshot: FilterSnapshot, run_tag: str) -> FileExporter:
        return FileExporter(output_dir, snapshot.label, fmt, run_tag=f"{run_tag}-{snapshot.id[:8]}")

    return factory


@app.command("export", help="Replay cart items and write one file per item.")
def export(
    ctx: typer.Context,
    ids: Optional[List[str]] = typer.Argument(None, help="Cart item IDs (default: all)."),
    fmt: str = typer.Option("json", "--format", help="Output format: json or csv."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Directory for export files."),
    use_preview: bool = typer.Option(
        False,
        "--use-preview",
        help="Export the stored preview rows instead of querying the sources.",
        is_flag=True,
    ),
) -> None:
    state = _get_state(ctx)
    if fmt not in SUPPORTED_FORMATS:
        console.print(f"Unsupported format `{fmt}`; choose one of {', '.join(SUPPORTED_FORMATS)}.", style="red")
        raise typer.Exit(code=1)
    if not ids and not len(state.queue):
        console.print("The cart is empty, nothing to export.", style="yellow")
        raise typer.Exit(code=0)
    target = output_dir or state.repository.outputs_path()
    report = _run(
        state,
        lambda orchestrator: orchestrator.export(ids or None, use_preview=use_preview),
        exporter_factory=_file_exporter_factory(target, fmt),
    )
    if report is None:
        console.print("Export was cancelled before it finished.", style="yellow")
        raise typer.Exit(code=1)
    console.print(_render_report(report))
    if report.failed:
        console.print(f"{len(report.failed)} item(s) failed.", style="red")
        raise typer.Exit(code=1)


@log_app.command("show", help="Show the most recent replay log lines.")
def log_show(
    lines: int = typer.Option(100, "--lines", min=1, help="Number of lines to show."),
) -> None:
    content = tail_log(replay_log_path(), lines)
    if not content:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"replay.log · last {len(content)} line(s)", style="cyan")
    console.print("".join(content), markup=False)


__all__ = ["AppState", "app", "build_state"]
