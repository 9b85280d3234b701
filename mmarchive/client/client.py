"""CLI client for the Mattermost archiver.

Provides commands to mirror a workspace, browse the mirror and query the
full-text index built from it.
"""

import logging
from datetime import datetime
from typing import Any, Dict, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from mmarchive.archive.reader import ArchiveReader
from mmarchive.errors import ArchiveError
from mmarchive.models.config import ArchiveConfig, ConfigLoader
from mmarchive.search.index import IndexBuilder
from mmarchive.sources.crawler import MattermostCrawler

err_console = Console(stderr=True)
console = Console()

# Configure logging to stay quiet by default, will be adjusted by verbose flag
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
)

app = typer.Typer(help="Archive a Mattermost workspace locally and search it")


class State:
    """Application state container."""

    def __init__(self) -> None:
        """Initialize application state."""
        self.config: ArchiveConfig = ArchiveConfig()
        self.verbose: bool = False


state = State()


def _override(config: ArchiveConfig, **values: Optional[Any]) -> ArchiveConfig:
    update: Dict[str, Any] = {k: v for k, v in values.items() if v is not None}
    return config.model_copy(update=update) if update else config


def _fail(err: ArchiveError) -> NoReturn:
    err_console.print(f"Error: {err}", style="red", markup=False, highlight=False)
    if state.verbose:
        logging.exception("Command failed")
    raise typer.Exit(code=1)


@app.callback()  # type: ignore[misc]
def main(
    config: str = typer.Option("mmarchive.yaml", "--config", help="Path to configuration file"),
    data_dir: Optional[str] = typer.Option(None, "--dir", help="Mirror directory"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging (DEBUG level)"),
) -> None:
    """Archive a Mattermost workspace locally and search it."""
    state.verbose = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("mmarchive").setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.INFO)
        logging.getLogger("mmarchive").setLevel(logging.INFO)

    state.config = _override(ConfigLoader.load(config), dir=data_dir)


@app.command()  # type: ignore[misc]
def dump(
    endpoint: Optional[str] = typer.Option(
        None, "--endpoint", help="The API endpoint e.g. https://mattermost.example.com/api/v4/"
    ),
    cookie: Optional[str] = typer.Option(None, "--cookie", help="Mattermost session cookie"),
    channel: Optional[str] = typer.Option(None, "--channel", help="Dump only this channel ID"),
) -> None:
    """Dump data from Mattermost into the mirror directory."""
    cfg = _override(state.config, endpoint=endpoint, cookie=cookie, channel_id=channel)
    try:
        crawler = MattermostCrawler.create(cfg)
        try:
            stats = crawler.dump(cfg.channel_id)
        finally:
            crawler.close()
    except ArchiveError as e:
        _fail(e)

    console.print(
        f"[green]Mirror up to date: {stats.pages} pages ({stats.pages_fetched} new), "
        f"{stats.attachments_fetched} new attachments, {stats.attachments_missing} missing.[/green]"
    )


@app.command()  # type: ignore[misc]
def channels() -> None:
    """List cached channels."""
    try:
        state.config.require("dir")
        cached = ArchiveReader(state.config.mirror_root).load_channels()
    except ArchiveError as e:
        _fail(e)

    table = Table(title="Channels")
    table.add_column("ID", style="cyan")
    table.add_column("Display name")
    for c in cached:
        table.add_row(c.id, Text(c.display_name))
    console.print(table)


@app.command()  # type: ignore[misc]
def posts(
    channel_id: str = typer.Argument(..., help="Channel ID"),
) -> None:
    """List cached posts for a channel, oldest first."""
    try:
        state.config.require("dir")
        reader = ArchiveReader(state.config.mirror_root)
        users = reader.user_map()
        replayed = reader.replay(channel_id)
    except ArchiveError as e:
        _fail(e)

    table = Table(title=f"Posts in {channel_id}")
    table.add_column("Time", style="dim")
    table.add_column("User", style="bold")
    table.add_column("Message")
    for archived in replayed:
        p = archived.post
        t = datetime.fromtimestamp(p.create_at // 1000).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(t, Text(users.get(p.user_id, "")), Text(p.message))
    console.print(table)


@app.command()  # type: ignore[misc]
def query(
    text: str = typer.Argument(..., help="Free-text query"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum number of hits"),
) -> None:
    """Query posts, building the search index first if needed."""
    try:
        state.config.require("dir")
        with IndexBuilder(state.config.mirror_root).build() as index:
            result = index.search(text, limit=limit if limit is not None else state.config.query_limit)
    except ArchiveError as e:
        _fail(e)

    table = Table(title=Text(f"Results for {text!r}"))
    table.add_column("ID", style="cyan")
    table.add_column("Message")
    for hit in result.hits:
        table.add_row(hit.post_id, Text.from_ansi("".join(hit.fragments)))
    console.print(table)
    console.print(result.summary(), markup=False, highlight=False)


if __name__ == "__main__":
    app()
