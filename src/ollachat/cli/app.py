"""Main CLI application using Typer."""
import asyncio
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..conversation import Message, MessageRole, export_backup, import_backup, read_backup, write_backup
from ..errors import OllachatError
from ..generation import ChatService, GenerationState
from ..images import encode_image
from .providers import get_settings, get_store, get_transport

# Create Typer app
app = typer.Typer(
    name="ollachat",
    help="Chat with local models served by Ollama",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

_ROLE_STYLES = {
    MessageRole.SYSTEM: "dim",
    MessageRole.USER: "bold yellow",
    MessageRole.ASSISTANT: "bold green",
}


def _fail(error: OllachatError) -> None:
    console.print(f"[red]Error: {escape(error.user_message)}[/red]")
    raise typer.Exit(code=1)


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{size} B"
        size /= 1024
    return f"{size:.1f} GB"


def _print_message(message: Message) -> None:
    style = _ROLE_STYLES.get(message.role, "bold")
    label = message.role.value.capitalize()
    suffix = " [dim](image)[/dim]" if message.image_data else ""
    console.print(f"[{style}]{label}:[/{style}]{suffix} {escape(message.content)}\n")


@app.command()
def ping():
    """Check that the Ollama server is reachable."""
    async def _ping():
        settings = get_settings(console)
        async with get_transport(settings, console) as transport:
            result = await transport.test_connectivity()

        if result.ok:
            console.print(f"[green]+[/green] {escape(result.message)}")
        else:
            console.print(f"[red]x[/red] {escape(result.message)}")
            raise typer.Exit(code=1)

    asyncio.run(_ping())


@app.command()
def models():
    """List models installed on the server."""
    async def _models():
        settings = get_settings(console)
        async with get_transport(settings, console) as transport:
            try:
                installed = await transport.list_models()
            except OllachatError as e:
                _fail(e)

        if not installed:
            console.print("[dim]No models installed. Pull one with: ollachat pull <name>[/dim]")
            return

        table = Table(title="Installed Models", show_header=True, header_style="bold cyan")
        table.add_column("Name", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Parameters")
        table.add_column("Quantization")
        table.add_column("Modified", style="dim")

        for model in installed:
            details = model.details
            table.add_row(
                model.name,
                _format_size(model.size),
                (details.parameter_size if details else None) or "-",
                (details.quantization_level if details else None) or "-",
                model.modified_at[:19] or "-",
            )

        console.print(table)

    asyncio.run(_models())


@app.command()
def pull(
    name: str = typer.Argument(..., help="Model name, e.g. llama3.2")
):
    """Ask the server to download a model."""
    async def _pull():
        settings = get_settings(console)
        async with get_transport(settings, console) as transport:
            try:
                await transport.pull_model(name)
                progress = await transport.pull_status()
            except OllachatError as e:
                _fail(e)

        console.print(f"[green]Pull requested for {escape(name)}[/green]")
        if progress.status:
            fraction = progress.fraction
            detail = f" ({fraction:.0%})" if fraction is not None else ""
            console.print(f"[dim]Status: {escape(progress.status)}{detail}[/dim]")

    asyncio.run(_pull())


@app.command()
def new(
    model: str = typer.Argument(None, help="Model for the chat (default: OLLACHAT_DEFAULT_MODEL)"),
    title: str | None = typer.Option(None, "--title", "-t", help="Chat title")
):
    """Create a new chat."""
    async def _new():
        settings = get_settings(console)
        store = get_store(settings)
        try:
            await store.connect()
            chat = await store.create_chat(model or settings.default_model, title)
        finally:
            await store.disconnect()

        console.print(f"[green]Created chat {chat.id}[/green]")
        console.print(f"[dim]Model: {escape(chat.model_id)}  Title: {escape(chat.title)}[/dim]")

    asyncio.run(_new())


@app.command()
def chats():
    """List chats, most recently updated first."""
    async def _chats():
        settings = get_settings(console)
        store = get_store(settings)
        try:
            await store.connect()
            all_chats = await store.list_chats()
            counts = {chat.id: len(await store.get_messages(chat.id)) for chat in all_chats}
        finally:
            await store.disconnect()

        if not all_chats:
            console.print("[dim]No chats yet. Start one with: ollachat new[/dim]")
            return

        table = Table(title="Chats", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Title", style="cyan")
        table.add_column("Model")
        table.add_column("Messages", justify="right")
        table.add_column("Updated", style="dim")

        for chat in all_chats:
            table.add_row(chat.id, chat.title, chat.model_id, str(counts[chat.id]), _format_time(chat.updated_at))

        console.print(table)

    asyncio.run(_chats())


@app.command()
def show(
    chat_id: str = typer.Argument(..., help="Chat ID")
):
    """Print a chat transcript."""
    async def _show():
        settings = get_settings(console)
        store = get_store(settings)
        try:
            await store.connect()
            chat = await store.get_chat(chat_id)
            messages = await store.get_messages(chat_id)
        except OllachatError as e:
            _fail(e)
        finally:
            await store.disconnect()

        console.print(Panel(
            f"[bold]{escape(chat.title)}[/bold]\n[dim]Model: {escape(chat.model_id)}  "
            f"Updated: {_format_time(chat.updated_at)}[/dim]",
            border_style="cyan",
        ))
        for message in messages:
            _print_message(message)

    asyncio.run(_show())


@app.command()
def rename(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    title: str = typer.Argument(..., help="New title")
):
    """Rename a chat."""
    async def _rename():
        settings = get_settings(console)
        store = get_store(settings)
        try:
            await store.connect()
            chat = await store.rename_chat(chat_id, title)
        except OllachatError as e:
            _fail(e)
        finally:
            await store.disconnect()

        console.print(f"[green]Renamed to {escape(chat.title)}[/green]")

    asyncio.run(_rename())


@app.command()
def delete(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt"
    )
):
    """Delete a chat and all of its messages."""
    async def _delete():
        if not yes:
            confirm = typer.confirm(f"Delete chat {chat_id}?")
            if not confirm:
                console.print("[dim]Aborted.[/dim]")
                return

        settings = get_settings(console)
        store = get_store(settings)
        try:
            await store.connect()
            await store.delete_chat(chat_id)
        except OllachatError as e:
            _fail(e)
        finally:
            await store.disconnect()

        console.print("[green]Chat deleted.[/green]")

    asyncio.run(_delete())


@app.command()
def send(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    text: str = typer.Argument("", help="Message text"),
    image: Path | None = typer.Option(
        None,
        "--image",
        "-i",
        exists=True,
        dir_okay=False,
        help="Attach an image (vision models only)"
    )
):
    """Send a message and stream the reply. Ctrl-C cancels the generation."""
    async def _send():
        settings = get_settings(console)
        store = get_store(settings)
        transport = get_transport(settings, console)

        def print_delta(delta: str) -> None:
            console.print(delta, end="", markup=False, highlight=False)

        try:
            await store.connect()
            async with ChatService(store, transport) as service:
                encoded = encode_image(image) if image is not None else None
                turn = await service.start_generation(chat_id, text, image=encoded, on_delta=print_delta)
                console.print("[bold green]Assistant:[/bold green] ", end="")
                try:
                    await turn.wait()
                except asyncio.CancelledError:
                    await service.cancel(turn)
                console.print()
                if turn.state == GenerationState.CANCELLED:
                    console.print("[yellow]Generation cancelled.[/yellow]")
        except OllachatError as e:
            console.print()
            _fail(e)
        except OSError as e:
            console.print(f"[red]Error: could not read image: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await transport.close()
            await store.disconnect()

    try:
        asyncio.run(_send())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")


@app.command(name="export")
def export_command(
    path: Path = typer.Argument(..., dir_okay=False, help="Backup file to write")
):
    """Export all chats to a JSON backup."""
    async def _export():
        settings = get_settings(console)
        store = get_store(settings)
        try:
            await store.connect()
            document = await export_backup(store)
        finally:
            await store.disconnect()

        write_backup(document, path)
        console.print(f"[green]Exported {len(document.chats)} chats to {escape(str(path))}[/green]")

    asyncio.run(_export())


@app.command(name="import")
def import_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup file to read"),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt"
    )
):
    """Replace all chats with the contents of a JSON backup."""
    async def _import():
        if not yes:
            console.print("[yellow]WARNING: This replaces all existing chats![/yellow]")
            confirm = typer.confirm("Are you sure you want to continue?")
            if not confirm:
                console.print("[dim]Aborted.[/dim]")
                return

        settings = get_settings(console)
        try:
            document = read_backup(path)
        except ValueError as e:
            console.print(f"[red]Error: invalid backup file: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)

        store = get_store(settings)
        try:
            await store.connect()
            count = await import_backup(store, document)
        except ValueError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

        console.print(f"[green]Imported {count} chats.[/green]")

    asyncio.run(_import())


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
