"""
Main CLI entry point for Cello Chat.

Provides command-line interface with Rich console output.
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .. import __version__
from ..backends.http import HttpChatBackend
from ..config import BackendConfig, Config, LogLevel, get_config, save_config
from ..exceptions import CelloChatError, format_error_for_user
from ..logging import configure_logging, get_main_logger, log_shutdown, log_startup
from ..protocol.models import HistoryRecord
from ..session import ChatSession
from ..timeline import Message, messages_from_history
from ..tui.widgets import format_tool_call

app = typer.Typer(
    name="cello-chat",
    help="Chat with Cello, the spreadsheet assistant, from your terminal.",
    add_completion=False,
    rich_markup_mode="rich"
)

history_app = typer.Typer(name="history", help="Conversation history commands")
config_app = typer.Typer(name="config", help="Configuration management commands")
app.add_typer(history_app, name="history")
app.add_typer(config_app, name="config")

console = Console()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
):
    """Cello Chat: the spreadsheet assistant's chat panel in your terminal."""
    try:
        config = get_config()

        if log_level:
            config.logging.level = LogLevel(log_level.upper())
        if verbose:
            config.logging.level = LogLevel.DEBUG

        configure_logging(config.logging)
        log_startup(__version__, config.backend.api_url)

    except Exception as e:
        console.print(f"[red]Error initializing Cello Chat: {e}[/red]")
        sys.exit(1)


def _apply_overrides(config: Config, api_url: Optional[str], no_stream: bool) -> Config:
    updates = config.backend.model_dump()
    if api_url:
        updates["api_url"] = api_url
    if no_stream:
        updates["streaming"] = False
    config.backend = BackendConfig(**updates)
    return config


async def _run_with_backend(config: Config, func, *args, **kwargs):
    """Run an async function against an initialized backend, then clean up."""
    backend = HttpChatBackend(config.backend)
    await backend.initialize()
    try:
        return await func(backend, *args, **kwargs)
    finally:
        await backend.cleanup()


@app.command()
def start(
    conversation: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Spreadsheet id whose conversation to open"
    ),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Backend base URL"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Use the request/response chat endpoint"),
):
    """Open the chat panel."""
    try:
        config = _apply_overrides(get_config(), api_url, no_stream)
        logger = get_main_logger()

        # Nothing may reach stdout once Textual owns the terminal
        configure_logging(config.logging, tui_mode=True)

        from ..tui.app import CelloChatApp

        conversation_id = conversation or config.default_conversation
        logger.info("Cello Chat starting", conversation_id=conversation_id, api_url=config.backend.api_url)

        backend = HttpChatBackend(config.backend)
        CelloChatApp(backend, config, conversation_id=conversation_id).run()
        log_shutdown()

    except KeyboardInterrupt:
        sys.stderr.write("\nShutting down...\n")
        log_shutdown()
    except CelloChatError as e:
        sys.stderr.write(f"Error: {e}\n")
        sys.exit(1)
    except Exception as e:
        logger = get_main_logger()
        logger.error("Unexpected error during startup", error=str(e), error_type=type(e).__name__)
        sys.stderr.write(f"Unexpected error: {e}\n")
        sys.exit(1)


def _print_messages(messages: List[Message]) -> None:
    for message in messages:
        if message.role == "user":
            title, style = "You", "blue"
        else:
            title, style = "Cello", "green"
        subtitle = message.timestamp.astimezone().strftime("%Y-%m-%d %H:%M")
        if message.context_range:
            subtitle += f" · {message.context_range}"

        body = Text(message.content or "")
        for call in message.tool_calls or ():
            for line in format_tool_call(call):
                body.append("\n")
                body.append(line, style="dim")

        console.print(Panel(body, title=title, subtitle=subtitle, border_style=style, title_align="left"))


@app.command()
def ask(
    conversation: str = typer.Argument(..., help="Spreadsheet id"),
    query: str = typer.Argument(..., help="What to ask Cello"),
    context_range: Optional[str] = typer.Option(None, "--range", "-r", help="Selected cell range, e.g. A1:B5"),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Backend base URL"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Use the request/response chat endpoint"),
):
    """Send one message and print Cello's reply."""
    config = _apply_overrides(get_config(), api_url, no_stream)

    async def _ask(backend):
        session = ChatSession(backend, config, conversation_id=conversation)
        before = len(session.messages)
        with console.status("[bold green]Cello is thinking..."):
            await session.send(query, context_range=context_range)
        return list(session.messages[before:])

    try:
        _print_messages(asyncio.run(_run_with_backend(config, _ask)))
    except CelloChatError as e:
        console.print(f"[red]Error: {format_error_for_user(e)}[/red]")
        sys.exit(1)


@app.command()
def ping(
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Backend base URL"),
):
    """Check that the backend is reachable."""
    config = _apply_overrides(get_config(), api_url, False)

    async def _ping(backend):
        return await backend.test_connection()

    result = asyncio.run(_run_with_backend(config, _ping))
    if result["success"]:
        console.print(f"[green]✓[/green] {config.backend.api_url}: {result['message']}")
        console.print(f"  Response time: {result['response_time']:.2f}s")
    else:
        console.print(f"[red]✗[/red] {config.backend.api_url}: {result['error']}")
        sys.exit(1)


@history_app.command("show")
def show_history(
    conversation: str = typer.Argument(..., help="Spreadsheet id"),
    as_json: bool = typer.Option(False, "--json", help="Print raw history records as JSON"),
):
    """Print a conversation's history."""
    config = get_config()

    async def _load(backend):
        return await backend.get_history(conversation)

    try:
        records: List[HistoryRecord] = asyncio.run(_run_with_backend(config, _load))
    except CelloChatError as e:
        console.print(f"[red]Error loading history: {format_error_for_user(e)}[/red]")
        sys.exit(1)

    if as_json:
        payload = [record.model_dump(mode="json", exclude_none=True) for record in records]
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    if not records:
        console.print("[dim]No messages yet.[/dim]")
        return

    _print_messages(list(messages_from_history(records)))
    console.print(f"\n[dim]{len(records)} messages[/dim]")


@history_app.command("clear")
def clear_history(
    conversation: str = typer.Argument(..., help="Spreadsheet id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a conversation's history."""
    if not yes:
        typer.confirm(
            "Clear our conversation history? 🗑️ Don't worry, we can always start fresh!",
            abort=True,
        )

    config = get_config()

    async def _clear(backend):
        await backend.clear_history(conversation)

    try:
        asyncio.run(_run_with_backend(config, _clear))
    except CelloChatError as e:
        console.print(f"[red]Error clearing conversation: {format_error_for_user(e)}[/red]")
        sys.exit(1)

    console.print("[green]✓[/green] ✨ Conversation cleared! Let's start fresh!")


@config_app.command("show")
def show_config():
    """Show current configuration."""
    try:
        config = get_config()

        console.print(Panel.fit(
            f"[bold]API URL:[/bold] {config.backend.api_url}\n" +
            f"[bold]Streaming:[/bold] {config.backend.streaming}\n" +
            f"[bold]Timeout:[/bold] {config.backend.timeout}s\n" +
            f"[bold]Connect Timeout:[/bold] {config.backend.connect_timeout}s",
            title="Backend Configuration"
        ))

        console.print(Panel.fit(
            f"[bold]Default Conversation:[/bold] {config.default_conversation or 'None'}\n" +
            f"[bold]Welcome Message:[/bold] {config.chat.welcome_message}",
            title="Chat Configuration"
        ))

        console.print(Panel.fit(
            f"[bold]Log Level:[/bold] {config.logging.level.value}\n" +
            f"[bold]Log Format:[/bold] {config.logging.format}\n" +
            f"[bold]Log File:[/bold] {config.logging.file or 'Console only'}",
            title="Logging Configuration"
        ))

        table = Table(title="UI Configuration", show_header=False)
        table.add_column("Setting", style="cyan", no_wrap=True)
        table.add_column("Value")
        for key, value in config.ui.model_dump().items():
            table.add_row(key, str(value))
        console.print(table)

    except Exception as e:
        console.print(f"[red]Error showing configuration: {e}[/red]")
        sys.exit(1)


@config_app.command("save")
def write_config(
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Where to write the YAML file"),
):
    """Write the current configuration to a YAML file."""
    try:
        written = save_config(get_config(), path)
        console.print(f"[green]✓[/green] Configuration saved to {written}")
    except Exception as e:
        console.print(f"[red]Error saving configuration: {e}[/red]")
        sys.exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(Panel.fit(
        f"[bold cyan]Cello Chat[/bold cyan] v{__version__}\n\n" +
        "The spreadsheet assistant's chat panel,\n" +
        "streaming straight into your terminal.\n\n" +
        "[dim]Built with 🎻 for spreadsheet people[/dim]",
        title="Version Information"
    ))


def main_entry():
    """Entry point for the CLI application."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main_entry()
