from rich.console import Console
from typer.testing import CliRunner

from turnkeeper import __version__
from turnkeeper.main import app, render_event
from turnkeeper.orchestrator import TurnEvent, TurnEventType


def make_console() -> Console:
    return Console(record=True, width=120, color_system=None)


def test_version_command():
    result = CliRunner().invoke(app, ["version"])

    assert result.exit_code == 0
    assert f"Turnkeeper v{__version__}" in result.output


def test_render_streams_text_without_newline():
    console = make_console()

    render_event(console, TurnEvent(TurnEventType.TEXT_DELTA, content="Hello [b]"))
    render_event(console, TurnEvent(TurnEventType.TEXT_DELTA, content="world"))

    assert console.export_text() == "Hello [b]world"


def test_render_tool_events():
    console = make_console()

    render_event(console, TurnEvent(TurnEventType.TOOL_EXECUTING, display_text="viewFile(filePath='a.txt')"))
    render_event(console, TurnEvent(TurnEventType.TOOL_RESULT, display_text="viewFile [ERROR]\nmissing", is_error=True))
    render_event(console, TurnEvent(TurnEventType.SKIPPED_DUPLICATE_TOOL, message="Skipped duplicate call to viewFile"))

    output = console.export_text()
    assert "[Tool] viewFile(filePath='a.txt')" in output
    assert "[Result] viewFile [ERROR]" in output
    assert "[Skipped] Skipped duplicate call to viewFile" in output


def test_render_error_and_abort():
    console = make_console()

    render_event(console, TurnEvent(TurnEventType.ERROR, message="Messages API error 500"))
    render_event(console, TurnEvent(TurnEventType.ABORTED))

    output = console.export_text()
    assert "Error: Messages API error 500" in output
    assert "[Request aborted]" in output
