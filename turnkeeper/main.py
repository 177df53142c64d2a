"""Main entry point for Turnkeeper."""

import asyncio
import signal
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from turnkeeper.config import Config, get_config, set_config
from turnkeeper.llm import get_provider
from turnkeeper.logging import configure_logging, log
from turnkeeper.orchestrator import ConversationOrchestrator, TurnEvent, TurnEventType
from turnkeeper.permissions import PermissionManager, console_prompt

app = typer.Typer(help="Turnkeeper - a tool-using assistant for your workspace")

EXIT_COMMANDS = {"exit", "quit"}


def render_event(console: Console, event: TurnEvent) -> None:
    """Print one turn event."""
    if event.type == TurnEventType.STATUS:
        console.print(f"[dim]\\[{escape(event.message)}][/dim]")
    elif event.type == TurnEventType.TEXT_DELTA:
        console.print(event.content, end="", markup=False, highlight=False)
    elif event.type == TurnEventType.TOOL_EXECUTING:
        console.print(f"\n[cyan][Tool][/cyan] {escape(event.display_text)}", highlight=False)
    elif event.type == TurnEventType.TOOL_RESULT:
        style = "red" if event.is_error else "green"
        console.print(f"[{style}][Result][/{style}] {escape(event.display_text)}", highlight=False)
    elif event.type == TurnEventType.SKIPPED_DUPLICATE_TOOL:
        console.print(f"[yellow][Skipped][/yellow] {escape(event.message)}")
    elif event.type == TurnEventType.FINAL_ASSISTANT_RESPONSE:
        # Text was already streamed through text_delta events
        console.print()
    elif event.type == TurnEventType.ERROR:
        console.print(f"\n[bold red]Error:[/bold red] {escape(event.message)}")
    elif event.type == TurnEventType.ABORTED:
        console.print("\n[yellow][Request aborted][/yellow]")


async def run_interactive(console: Console) -> None:
    """Run the interactive read-eval loop."""
    cfg = get_config()
    permissions = PermissionManager(
        prompt=console_prompt(console),
        auto_approve=cfg.tools.auto_approve,
    )
    provider = get_provider()
    orchestrator = ConversationOrchestrator.from_config(cfg, provider=provider, permissions=permissions)
    loop = asyncio.get_running_loop()

    console.print("[bold]Turnkeeper[/bold] - ask about your workspace. Type 'exit' to quit, Ctrl+C aborts a request.\n")
    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "> ")
            except EOFError:
                break
            user_input = line.strip()
            if not user_input:
                continue
            if user_input.lower() in EXIT_COMMANDS:
                break

            abort_event = asyncio.Event()
            try:
                loop.add_signal_handler(signal.SIGINT, abort_event.set)
            except (NotImplementedError, RuntimeError):
                pass
            try:
                async for event in orchestrator.run_turn(user_input, abort_event):
                    render_event(console, event)
            finally:
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except (NotImplementedError, RuntimeError):
                    pass
    finally:
        await provider.close()
    console.print("Goodbye!")


def main(config: str = "", model: str = "", verbose: bool = False) -> None:
    """Start an interactive Turnkeeper session."""
    if config:
        try:
            cfg = Config.from_yaml(Path(config))
        except Exception as e:
            print(f"Failed to load config {config}: {e}", file=sys.stderr)
            raise typer.Exit(code=1)
        if not cfg.model.api_key:
            cfg.model.api_key = Config.load().model.api_key
    else:
        cfg = Config.load()

    if model:
        cfg.model.model = model
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)

    console = Console()
    try:
        asyncio.run(run_interactive(console))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except Exception as e:
        log.error("Fatal error", error=str(e))
        sys.exit(1)


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive session."""
    main(config, model, verbose)


@app.command()
def version() -> None:
    """Show version information."""
    from turnkeeper import __version__
    print(f"Turnkeeper v{__version__}")


if __name__ == "__main__":
    app()
