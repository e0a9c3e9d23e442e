"""
Command Line Interface for LifeTales.

Runs a single memory through the pipeline from the terminal and manages the
local configuration. Sessions are in-memory, so every ``weave`` starts a
fresh story.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from lifetales import __version__
from lifetales.ai.client import AIUnavailableError
from lifetales.config import (
    APIKeyManager,
    AppConfig,
    ConfigError,
    get_config,
    load_config,
)
from lifetales.core.models import Chapter, PipelineInput, StatusEvent
from lifetales.pipeline.orchestrator import PipelineBusyError, PipelineError
from lifetales.session import StorySession, create_session
from lifetales.utils.logging import setup_logging

logger = logging.getLogger(__name__)

console = Console()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def print_header(text: str) -> None:
    """Print a styled header."""
    console.print()
    console.print(Panel(text, style="bold blue", expand=False))
    console.print()


def print_success(text: str) -> None:
    console.print(f"[bold green]✓[/bold green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[bold yellow]⚠[/bold yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[bold red]✗[/bold red] {text}")


def print_chapter(chapter: Chapter, story_title: str) -> None:
    """Print a chapter as a panel."""
    tags = escape(", ".join(chapter.tags)) if chapter.tags else "-"
    illustration = "yes" if chapter.illustration else "none"
    body = (
        f"{escape(chapter.narrative)}\n\n"
        f"[cyan]Mood:[/cyan] {escape(chapter.mood)}\n"
        f"[cyan]Tags:[/cyan] {tags}\n"
        f"[cyan]Illustration:[/cyan] {illustration}"
    )
    console.print(Panel(body, title=escape(story_title), subtitle=chapter.media_type.value, border_style="green"))


def _flatten(data: dict, prefix: str = "") -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, prefix=f"{name}."))
        else:
            rows.append((name, str(value)))
    return rows


def resolve_config(ctx: click.Context) -> AppConfig:
    """Config from ``--config`` if given, else the cached default."""
    path = ctx.obj.get("config_path") if ctx.obj else None
    if path:
        return load_config(Path(path))
    return get_config()


def build_session(config: AppConfig) -> StorySession:
    """Create the Gemini-backed session used by ``weave``."""
    return create_session(config)


# =============================================================================
# MAIN CLI GROUP
# =============================================================================


@click.group()
@click.version_option(__version__, prog_name="lifetales")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Custom config file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool, config_path: str | None) -> None:
    """
    LifeTales - turn spoken memories into story chapters.

    Each memory is transcribed, analyzed for mood, rewritten as a short
    narrative and illustrated with Gemini.
    """
    if debug:
        setup_logging(level="DEBUG")
    elif verbose:
        setup_logging(level="INFO")
    else:
        setup_logging(level="WARNING")

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# =============================================================================
# WEAVE COMMAND
# =============================================================================


@cli.command()
@click.option("--text", "-t", "text", help="A typed memory")
@click.option(
    "--audio",
    "-a",
    "audio",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="An audio recording of the memory",
)
@click.option("--title", default="My Story", show_default=True, help="Story title")
@click.option("--theme", default="", help="Story theme (defaults to Personal)")
@click.option("--mime-type", "mime_type", help="Audio MIME type (guessed from the file name if omitted)")
@click.option("--json", "as_json", is_flag=True, help="Print the chapter as JSON")
@click.pass_context
def weave(
    ctx: click.Context,
    text: str | None,
    audio: Path | None,
    title: str,
    theme: str,
    mime_type: str | None,
    as_json: bool,
) -> None:
    """Turn one memory into a chapter."""
    if (text is None) == (audio is None):
        raise click.UsageError("Provide exactly one of --text or --audio.")

    try:
        config = resolve_config(ctx)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    try:
        if audio is not None:
            mime = mime_type or mimetypes.guess_type(audio.name)[0] or config.pipeline.default_audio_mime_type
            pipeline_input = PipelineInput.audio(audio.read_bytes(), mime)
        else:
            pipeline_input = PipelineInput.text(text or "")
    except ValidationError:
        print_error("The memory is empty.")
        sys.exit(2)

    try:
        session = build_session(config)
    except AIUnavailableError as e:
        print_error(e.message)
        if e.reason == "no_api_key":
            print_warning("Configure a key with: lifetales config set-key")
        sys.exit(1)

    try:
        story = session.create_story(title, theme)
    except ValueError as e:
        print_error(str(e))
        sys.exit(2)

    if not as_json:
        session.subscribe(_show_status)

    try:
        chapter = asyncio.run(session.record_memory(story.id, pipeline_input))
    except (PipelineError, PipelineBusyError) as e:
        print_error(e.message)
        sys.exit(1)

    if as_json:
        click.echo(chapter.model_dump_json(indent=2))
        return

    print_chapter(chapter, story.title)


def _show_status(event: StatusEvent) -> None:
    console.print(f"[dim]{event.message}[/dim]")


# =============================================================================
# CONFIG GROUP
# =============================================================================


@cli.group()
def config() -> None:
    """Manage configuration settings."""


@config.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Display current configuration."""
    try:
        app_config = resolve_config(ctx)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    print_header("Current Configuration")

    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in _flatten(app_config.to_display_dict()):
        table.add_row(key, escape(value))

    manager = APIKeyManager()
    key_status = "configured" if manager.get_key() is not None else "not set"
    table.add_row("api_key", f"{key_status} ({manager.get_key_source().value})")

    console.print(table)


@config.command("set-key")
def set_key() -> None:
    """Store the Gemini API key in the system keyring."""
    print_header("Set Gemini API Key")

    api_key = click.prompt("Enter your Gemini API key", hide_input=True)

    try:
        APIKeyManager().store_key(api_key)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    print_success("API key stored in the system keyring")


def main() -> None:
    """Entry point for the console script."""
    cli()


if __name__ == "__main__":
    main()
