"""CLI entry-point for the Bluesky media harvester."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import BlueskyConfig, HarvesterConfig
from .errors import SkyHarvestError
from .harvester import Harvester
from .store import ArchiveStore

console = Console()
logger = logging.getLogger("skyharvest.cli")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def _print_stats(stats: dict[str, int]) -> None:
    table = Table(title="Harvest Summary", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    for key, val in stats.items():
        table.add_row(key.capitalize(), str(val))
    console.print(table)


@click.group()
@click.option("-u", "--username", envvar="BLUESKY_USERNAME", help="Bluesky handle or DID (without @)")
@click.option("-p", "--password", envvar="BLUESKY_APP_PASSWORD", help="Bluesky app password (not your main password!)")
@click.option(
    "-o", "--output",
    envvar="SKYHARVEST_OUTPUT",
    default="./archive",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory to save archived images",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, username: str | None, password: str | None, output: Path, verbose: bool) -> None:
    """Bluesky Harvester – archive image posts to a local folder.

    Downloads images from liked posts (or from one author's feed), skips
    anything already archived, and can resume an interrupted run.
    """
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["username"] = username
    ctx.obj["password"] = password
    ctx.obj["output"] = output


def harvest_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    fn = click.option("--resume", is_flag=True, help="Resume from the last saved position")(fn)
    fn = click.option(
        "-d", "--delay", default=0, type=click.IntRange(min=0),
        help="Delay between API requests in milliseconds (helps avoid rate limits)",
    )(fn)
    fn = click.option("--nsfw-only", is_flag=True, help="Only archive posts with NSFW/content warning labels")(fn)
    fn = click.option(
        "-l", "--limit", default=100, type=click.IntRange(min=0),
        help="Maximum number of posts to fetch per run (0 = unlimited)",
    )(fn)
    return fn


def _make_config(
    ctx: click.Context,
    *,
    limit: int,
    nsfw_only: bool,
    delay: int,
    resume: bool,
    target: str | None = None,
) -> HarvesterConfig:
    username = ctx.obj["username"]
    password = ctx.obj["password"]
    if not username:
        raise click.UsageError("Missing --username (or BLUESKY_USERNAME)")
    if not password:
        raise click.UsageError("Missing --password (or BLUESKY_APP_PASSWORD)")
    return HarvesterConfig(
        username=username.lstrip("@"),
        password=password,
        output_dir=ctx.obj["output"],
        limit=limit,
        nsfw_only=nsfw_only,
        delay=delay / 1000.0,
        resume=resume,
        target_actor=target.lstrip("@") if target else None,
        bluesky=BlueskyConfig.from_env(),
    )


def _run(cfg: HarvesterConfig) -> None:
    try:
        with Harvester(cfg) as h:
            result = h.run()
    except SkyHarvestError as exc:
        logger.debug("Harvest failed", exc_info=True)
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Archive complete ({result.fetch.reason.replace('_', ' ')})")
    _print_stats(result.summary())


# ─── Commands ────────────────────────────────────────────────────


@cli.command()
@harvest_options
@click.pass_context
def likes(ctx: click.Context, limit: int, nsfw_only: bool, delay: int, resume: bool) -> None:
    """Archive images from your liked posts.

    Example: skyharvest -u alice.bsky.social likes --limit 0 --resume
    """
    cfg = _make_config(ctx, limit=limit, nsfw_only=nsfw_only, delay=delay, resume=resume)
    console.print(f"[bold]Archiving likes of [cyan]@{cfg.actor}[/cyan]...[/bold]")
    _run(cfg)


@cli.command()
@click.argument("target")
@harvest_options
@click.pass_context
def user(ctx: click.Context, target: str, limit: int, nsfw_only: bool, delay: int, resume: bool) -> None:
    """Archive all original image posts from TARGET.

    Example: skyharvest -u alice.bsky.social user bob.bsky.social --limit 50
    """
    cfg = _make_config(ctx, limit=limit, nsfw_only=nsfw_only, delay=delay, resume=resume, target=target)
    console.print(f"[bold]Archiving image posts from [cyan]@{cfg.actor}[/cyan]...[/bold]")
    _run(cfg)


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show how many posts and images are in the archive."""
    db_path = Path(ctx.obj["output"]) / "archive.db"
    if not db_path.exists():
        console.print(f"[red]✗[/red] No archive found at {db_path}")
        sys.exit(1)
    try:
        with ArchiveStore.open(db_path) as store:
            posts, images = store.stats()
    except SkyHarvestError as exc:
        console.print(f"[red]✗[/red] {escape(str(exc))}")
        sys.exit(1)
    _print_stats({"posts": posts, "images": images})


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
