import asyncio
import logging
import threading
from typing import Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner
from rich.table import Table
from typing_extensions import Annotated

from memory_loop.domains.memory import Memory, format_time_ago
from memory_loop.domains.session import CaptureState
from memory_loop.factories.memory_loop_factory import MemoryLoopFactory
from memory_loop.services.capture_session import CaptureSessionController
from memory_loop.services.memory_store import MemoryStore

# --- Basic Logging Configuration ---
logging.basicConfig(level=logging.WARNING, format="%(levelname)s:%(name)s:%(message)s")
# --- End Logging Configuration ---

app = typer.Typer()
console = Console()

ConfigOption = Annotated[
    str, typer.Option(help="Path to the configuration JSON file.")
]


def _load_config(config: str) -> dict:
    try:
        return MemoryLoopFactory.load_config(config_path=config)
    except ValueError as e:
        console.print(f"[bold red]Error loading configuration:[/bold red] {e}")
        raise typer.Exit(code=1)


async def _open_store(config: dict) -> MemoryStore:
    store = MemoryLoopFactory.create_store(config)
    await store.load()
    if store.last_error:
        console.print(f"[yellow]{store.last_error}[/yellow]")
    return store


def _render_memory(memory: Memory) -> None:
    pin = "[magenta]pinned[/magenta] " if memory.pinned else ""
    console.print(f"{pin}[bold]{memory.title}[/bold] [dim]({memory.id})[/dim]")
    console.print(
        f"[dim]{memory.category} · {memory.mood} · "
        f"{format_time_ago(memory.created_at)}[/dim]"
    )
    if memory.action_items:
        console.print("Action Items:")
        for index, item in enumerate(memory.action_items):
            mark = "x" if index in memory.completed_items else " "
            console.print(f"  {index}. [{mark}] {item}")
    else:
        console.print("Action Items:\n  - None")
    console.print(f'[italic]"{memory.transcript}"[/italic]')


def _status_line(controller: CaptureSessionController):
    snapshot = controller.snapshot()
    if snapshot.state == CaptureState.RECORDING:
        bar = "#" * int(snapshot.amplitude * 30)
        return (
            f"[turquoise2]LISTENING...[/turquoise2] {snapshot.duration_text} "
            f"{bar:<30} [dim]press Enter to stop[/dim]"
        )
    if snapshot.state == CaptureState.PROCESSING:
        return Spinner("dots", "Structuring your memory...")
    return snapshot.state.value


def _watch_enter(loop: asyncio.AbstractEventLoop) -> asyncio.Event:
    # Daemon thread so a pending input() never holds up interpreter exit.
    pressed = asyncio.Event()

    def _wait() -> None:
        try:
            input()
        except EOFError:
            return
        if not loop.is_closed():
            loop.call_soon_threadsafe(pressed.set)

    threading.Thread(target=_wait, daemon=True).start()
    return pressed


async def _record(config: dict) -> Optional[Memory]:
    store = await _open_store(config)
    controller = MemoryLoopFactory.create_capture_controller(config, store)

    async with controller:
        await controller.start()
        if controller.state == CaptureState.ERROR:
            console.print(f"[bold red]{controller.error_message}[/bold red]")
            return None

        enter_pressed = _watch_enter(asyncio.get_running_loop())
        with Live(console=console, refresh_per_second=10, transient=True) as live:
            while controller.state in (
                CaptureState.RECORDING,
                CaptureState.PROCESSING,
            ):
                if enter_pressed.is_set() and controller.state == CaptureState.RECORDING:
                    controller.stop()
                live.update(_status_line(controller))
                await asyncio.sleep(0.1)

        if controller.state == CaptureState.ERROR:
            console.print(f"[bold red]{controller.error_message}[/bold red]")
            return None
        return store.get(controller.memory_id) if controller.memory_id else None


@app.command()
def serve(
    config: ConfigOption = "config.json",
    host: Annotated[str, typer.Option(help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to listen on.")] = 5000,
):
    """Run the memory processing server."""
    server = MemoryLoopFactory.create_server(_load_config(config))
    console.print(f"[green]Serving /api/process-memory on {host}:{port}[/green]")
    server.run(host=host, port=port)


@app.command()
def record(config: ConfigOption = "config.json"):
    """Record a voice memo, process it and store the resulting memory."""
    try:
        memory = asyncio.run(_record(_load_config(config)))
    except KeyboardInterrupt:
        console.print("\n[yellow]Recording abandoned.[/yellow]")
        raise typer.Exit(code=1)
    if memory is None:
        raise typer.Exit(code=1)
    _render_memory(memory)


@app.command("list")
def list_memories(config: ConfigOption = "config.json"):
    """List stored memories, pinned first then newest first."""
    store = asyncio.run(_open_store(_load_config(config)))
    if not store.memories:
        console.print("[dim]No memories yet.[/dim]")
        return

    table = Table()
    table.add_column("")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Category")
    table.add_column("Mood")
    table.add_column("Tasks")
    table.add_column("When")
    for memory in store.sorted_memories:
        table.add_row(
            "📌" if memory.pinned else "",
            memory.id,
            memory.title,
            memory.category,
            memory.mood,
            f"{len(memory.completed_items)}/{len(memory.action_items)}",
            format_time_ago(memory.created_at),
        )
    console.print(table)


def _with_memory(config: str, memory_id: str, action) -> None:
    async def _run() -> Optional[Memory]:
        store = await _open_store(_load_config(config))
        if store.get(memory_id) is None:
            return None
        await action(store)
        if store.last_error:
            console.print(f"[yellow]{store.last_error}[/yellow]")
        return store.get(memory_id)

    memory = asyncio.run(_run())
    if memory is None:
        console.print(f"[bold red]No memory with id {memory_id}[/bold red]")
        raise typer.Exit(code=1)
    _render_memory(memory)


@app.command()
def show(memory_id: str, config: ConfigOption = "config.json"):
    """Show one memory."""

    async def _noop(store: MemoryStore) -> None:
        return None

    _with_memory(config, memory_id, _noop)


@app.command()
def share(memory_id: str, config: ConfigOption = "config.json"):
    """Print a memory as shareable plain text."""
    store = asyncio.run(_open_store(_load_config(config)))
    memory = store.get(memory_id)
    if memory is None:
        console.print(f"[bold red]No memory with id {memory_id}[/bold red]")
        raise typer.Exit(code=1)
    console.print(memory.share_text(), markup=False)


@app.command()
def pin(memory_id: str, config: ConfigOption = "config.json"):
    """Pin or unpin a memory."""
    _with_memory(config, memory_id, lambda store: store.toggle_pin(memory_id))


@app.command()
def toggle(memory_id: str, index: int, config: ConfigOption = "config.json"):
    """Mark an action item as done or not done."""
    _with_memory(
        config, memory_id, lambda store: store.toggle_action_item(memory_id, index)
    )


@app.command()
def delete(memory_id: str, config: ConfigOption = "config.json"):
    """Delete a memory."""

    async def _run() -> bool:
        store = await _open_store(_load_config(config))
        if store.get(memory_id) is None:
            return False
        await store.remove(memory_id)
        if store.last_error:
            console.print(f"[yellow]{store.last_error}[/yellow]")
        return True

    if not asyncio.run(_run()):
        console.print(f"[bold red]No memory with id {memory_id}[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted {memory_id}[/green]")


if __name__ == "__main__":
    app()
