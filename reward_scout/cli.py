"""Reward Scout CLI - cache reward-seat availability and build a report."""

import asyncio
import logging
from typing import Annotated, Optional

import typer
from typer.core import TyperGroup

from . import cache, pipeline, report
from .config import Settings
from .errors import CircuitBreakerOpen, NoRoutesError, ScrapeError
from .progress import console, print_run_summary


class DefaultToAllGroup(TyperGroup):
    """Treat a leading route filter as arguments to the `all` command."""

    def parse_args(self, ctx, args):
        first = next((a for a in args if not a.startswith("-")), None)
        if first is not None and first not in self.commands:
            args = ["all", *args]
        return super().parse_args(ctx, args)


app = typer.Typer(
    name="reward-scout",
    cls=DefaultToAllGroup,
    help="✈ Find reward seats across every route and month, then browse them offline.",
    rich_markup_mode="rich",
)

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

RoutesArg = Annotated[
    Optional[list[str]],
    typer.Argument(help="Restrict by route (LHR-JFK) or airport code (JFK)", show_default=False),
]
NoCacheOpt = Annotated[bool, typer.Option("--no-cache", help="Ignore cached months and scrape fresh")]
VerboseOpt = Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging")]


def _setup(verbose: bool) -> Settings:
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    settings = Settings.from_env()
    cache.configure(settings.cache_dir, settings.output_dir)
    return settings


def _requested(routes: Optional[list[str]]) -> list[str]:
    return [r.strip().upper() for r in routes or [] if r.strip()]


def _run(coro):
    """Run a pipeline coroutine, turning run-level errors into exit status 1."""
    try:
        return asyncio.run(coro)
    except NoRoutesError as e:
        console.print(f"[red]❌ {e}[/red]")
        if e.available:
            console.print("\nAvailable routes:")
            for route in e.available:
                console.print(f"  {route.code} - {route.name or '?'}")
        raise typer.Exit(1)
    except CircuitBreakerOpen as e:
        print_run_summary(e.stats)
        console.print(f"[red]❌ {e}[/red]")
        for code in sorted(e.completed):
            console.print(f"  [dim]completed before abort:[/dim] {code}")
        if e.completed:
            console.print("[dim]Completed routes were saved as an incomplete dataset.[/dim]")
        console.print("[dim]Months fetched so far are cached; rerun to resume.[/dim]")
        raise typer.Exit(1)
    except ScrapeError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    no_cache: NoCacheOpt = False,
    verbose: VerboseOpt = False,
):
    """
    Scrape, process and build in one go when no command is given.

    Examples:

      reward-scout LHR-JFK MAN

      reward-scout process --no-cache JFK
    """
    if ctx.invoked_subcommand is None:
        all_cmd(routes=None, no_cache=no_cache, verbose=verbose)


@app.command()
def scrape(
    routes: RoutesArg = None,
    no_cache: NoCacheOpt = False,
    verbose: VerboseOpt = False,
):
    """🔍 Scrape availability into the cache only."""
    settings = _setup(verbose)
    outcome = _run(pipeline.scrape_to_cache(settings, _requested(routes), force_fresh=no_cache))
    console.print(
        f"[bold green]✅ Scrape complete.[/bold green] "
        f"{len(outcome.route_data)} routes cached in {cache.CACHE_DIR}/"
    )


@app.command()
def process(
    routes: RoutesArg = None,
    no_cache: NoCacheOpt = False,
    verbose: VerboseOpt = False,
):
    """🧱 Write the report data files from cache, scraping first if needed."""
    settings = _setup(verbose)
    count = _run(pipeline.process(settings, _requested(routes), no_cache=no_cache))
    console.print(
        f"[green]🧱 Processed data written for {count} routes:[/green] "
        f"{cache.OUTPUT_DIR / report.FLIGHTS_DATA_FILE}"
    )


@app.command()
def build(verbose: VerboseOpt = False):
    """📄 Write the static report page."""
    _setup(verbose)
    path = pipeline.build()
    console.print(f"[bold green]✅ Build complete:[/bold green] {path}")


@app.command("all")
def all_cmd(
    routes: RoutesArg = None,
    no_cache: NoCacheOpt = False,
    verbose: VerboseOpt = False,
):
    """✈ Scrape, process and build (the default)."""
    settings = _setup(verbose)
    count = _run(pipeline.run_all(settings, _requested(routes), no_cache=no_cache))
    report_path = cache.OUTPUT_DIR / report.REPORT_FILE
    console.print(
        f"\n[bold green]✅ Done![/bold green] {count} routes. "
        f"Open {report_path} in your browser."
    )


def main():
    app()


if __name__ == "__main__":
    main()
