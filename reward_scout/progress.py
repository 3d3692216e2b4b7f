"""Live progress and end-of-run summary for a scrape."""

import logging
from typing import Optional

from rich import box
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from .dispatcher import ScrapeStats

console = Console()
logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    if minutes == 0:
        return f"{secs}s"
    return f"{minutes}m {secs}s"


def _avg_text(stats: ScrapeStats) -> str:
    ms = stats.ms_per_network_success()
    return "--" if ms is None else f"{ms:.0f}ms"


class ScrapeProgress:
    """Progress bar on a terminal, one log line per resolved request elsewhere.

    Use as a context manager and pass ``update`` to the dispatcher as its
    ``on_progress`` callback.
    """

    def __init__(self, total: int, enabled: bool = True):
        self.total = total
        self.enabled = enabled and console.is_terminal
        self._progress: Optional[Progress] = None
        self._task = None

    def __enter__(self) -> "ScrapeProgress":
        if self.enabled:
            self._progress = Progress(
                TextColumn("[bold blue]Months"),
                BarColumn(bar_width=30),
                MofNCompleteColumn(),
                TextColumn(
                    "ok:[green]{task.fields[ok]}[/green] empty:{task.fields[empty]} "
                    "fail:[red]{task.fields[failed]}[/red] fb:{task.fields[fallback]} "
                    "cache:{task.fields[cached]} ok_avg:{task.fields[avg]}"
                ),
                TimeElapsedColumn(),
                console=console,
                transient=False,
            )
            self._progress.start()
            self._task = self._progress.add_task(
                "scrape", total=self.total, ok=0, empty=0, failed=0, fallback=0, cached=0, avg="--"
            )
        return self

    def __exit__(self, *exc_info) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def update(self, stats: ScrapeStats) -> None:
        if self._progress is not None:
            self._progress.update(
                self._task,
                completed=stats.completed,
                ok=stats.successful,
                empty=stats.empty,
                failed=stats.failed,
                fallback=stats.fallback_used,
                cached=stats.cached,
                avg=_avg_text(stats),
            )
            return
        percent = 100 if self.total == 0 else round(stats.completed * 100 / self.total)
        logger.info(
            f"Progress {stats.completed}/{self.total} ({percent}%) | ok:{stats.successful} "
            f"empty:{stats.empty} failed:{stats.failed} fallback:{stats.fallback_used} "
            f"cache:{stats.cached} ok_avg:{_avg_text(stats)}"
        )


def print_run_summary(stats: ScrapeStats) -> None:
    table = Table(title="Scrape summary", box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Count", justify="right")

    table.add_row("Month requests", str(stats.total))
    table.add_row("Completed", str(stats.completed))
    table.add_row("[green]With availability[/green]", str(stats.successful))
    table.add_row("Empty", str(stats.empty))
    table.add_row("[red]Failed[/red]", str(stats.failed))
    table.add_row("Browser fallback used", str(stats.fallback_used))
    table.add_row("Served from cache", str(stats.cached))
    table.add_row("Session refreshes", str(stats.session_refreshes))
    table.add_row("Avg per network success", _avg_text(stats))
    table.add_row("Elapsed", format_duration(stats.elapsed))

    console.print(table)
