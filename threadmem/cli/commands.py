"""CLI commands for threadmem."""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from threadmem import __logo__, __version__
from threadmem.errors import ConfigurationError
from threadmem.memory.types import Message

app = typer.Typer(
    name="threadmem",
    help=f"{__logo__} threadmem - Conversation memory compaction and recall",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} threadmem v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """threadmem - Conversation memory compaction and recall."""
    from threadmem.config.loader import load_config
    from threadmem.core.logger import configure_logger

    configure_logger(load_config())


def _read_messages(path: Path) -> list[Message]:
    """Read a JSON array of {role, content} objects; list position is the sequence index."""
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(1)

    if isinstance(data, dict):
        data = data.get("messages", [])
    if not isinstance(data, list):
        console.print(f"[red]{path} must contain a JSON array of messages[/red]")
        raise typer.Exit(1)

    try:
        return [Message.from_dict(item, sequence_index=i) for i, item in enumerate(data)]
    except (TypeError, ValueError, AttributeError) as e:
        console.print(f"[red]Invalid message in {path}: {e}[/red]")
        raise typer.Exit(1)


def _preview(text: str, width: int = 70) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 1] + "…"


def _messages_table(title: str, messages: list[Message]) -> Table:
    table = Table(title=title)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Role", style="magenta")
    table.add_column("Content")
    for message in messages:
        table.add_row(str(message.sequence_index), message.role.value, _preview(message.content))
    return table


# ============================================================================
# Compaction
# ============================================================================


@app.command()
def compact(
    file: Path = typer.Argument(..., help="JSON file with a list of {role, content} messages"),
    max_messages: int = typer.Option(None, "--max-messages", "-n", help="Message budget"),
    ratio: float = typer.Option(None, "--ratio", "-r", help="Share of the budget reserved for recent messages"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """Compact a conversation history to a message budget."""
    from threadmem.config.loader import load_config
    from threadmem.memory.pipeline import MemoryPipeline

    config = load_config()
    messages = _read_messages(file)

    overrides = config.compaction.model_dump()
    if max_messages is not None:
        overrides["max_messages"] = max_messages
    if ratio is not None:
        overrides["recency_reservation_ratio"] = ratio

    pipeline = MemoryPipeline(config=config)
    try:
        result = pipeline.compact(messages, overrides)
    except ConfigurationError as e:
        console.print(f"[red]Invalid compaction settings: {e}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps([m.to_dict() for m in result], indent=2, ensure_ascii=False))
        return

    console.print(_messages_table(f"Compacted {len(messages)} → {len(result)} messages", result))


@app.command()
def segments(
    file: Path = typer.Argument(..., help="JSON file with a list of {role, content} messages"),
    threshold: float = typer.Option(None, "--threshold", "-t", help="Continuity threshold"),
    max_segments: int = typer.Option(None, "--max-segments", "-m", help="Segments to keep"),
):
    """Show topic segments of a conversation and which ones would be kept."""
    from threadmem.config.loader import load_config
    from threadmem.memory.topics import TopicSegmenter

    topics = load_config().topics
    try:
        segmenter = TopicSegmenter(
            continuity_threshold=threshold if threshold is not None else topics.continuity_threshold,
            max_segments=max_segments if max_segments is not None else topics.max_segments,
            min_messages=topics.min_messages,
        )
    except ValueError as e:
        console.print(f"[red]Invalid segmentation settings: {e}[/red]")
        raise typer.Exit(1)
    messages = _read_messages(file)
    found = segmenter.segment(messages)
    kept_from = max(0, len(found) - segmenter.max_segments)

    table = Table(title=f"{len(found)} topic segments")
    table.add_column("Segment", style="cyan", justify="right")
    table.add_column("Messages", justify="right")
    table.add_column("Range")
    table.add_column("Kept")
    table.add_column("Opens with")
    for i, segment in enumerate(found):
        table.add_row(
            str(i),
            str(len(segment)),
            f"{segment[0].sequence_index}-{segment[-1].sequence_index}",
            "[green]✓[/green]" if i >= kept_from else "[dim]-[/dim]",
            _preview(segment[0].content, 50),
        )
    console.print(table)


# ============================================================================
# Config
# ============================================================================


@app.command()
def config(
    init: bool = typer.Option(False, "--init", help="Write the default configuration file"),
):
    """Show the effective configuration."""
    from threadmem.config.loader import get_config_path, load_config, save_config
    from threadmem.config.schema import Config

    config_path = get_config_path()

    if init:
        if config_path.exists():
            console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
            if not typer.confirm("Overwrite?"):
                raise typer.Exit()
        save_config(Config())
        console.print(f"[green]✓[/green] Created config at {config_path}")
        return

    cfg = load_config()
    source = str(config_path) if config_path.exists() else "defaults"

    table = Table(title=f"{__logo__} threadmem configuration ({source})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for section in ("compaction", "topics", "tool_filter", "token_limit", "retrieval"):
        for key, value in getattr(cfg, section).model_dump().items():
            table.add_row(f"{section}.{key}", str(value))
    table.add_row("storage.db_path", str(cfg.db_path))
    table.add_row("storage.chroma_path", str(cfg.chroma_path))
    table.add_row("scoring.model", cfg.scoring.model)
    table.add_row("embedding.model", cfg.embedding.model)
    console.print(table)


if __name__ == "__main__":
    app()
