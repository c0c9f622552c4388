"""Rich console rendering of the marketplace overview and provider leaderboard."""

from __future__ import annotations

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from escrow_mirror.reporting.read_surface import Overview, ProviderRank


def _percent(rate: Optional[float]) -> str:
    return "N/A" if rate is None else f"{rate * 100:.1f}%"


def format_status_line(overview: Overview, token_symbol: str = "USDC") -> str:
    """One-line marketplace summary for log-style output."""
    return (
        f"Marketplace Update: jobs={overview.jobs_total} "
        f"completed={overview.jobs_completed} refunded={overview.jobs_refunded} "
        f"volume={overview.volume_settled_display} {token_symbol}"
    )


def print_summary(
    overview: Overview,
    providers: List[ProviderRank],
    console: Optional[Console] = None,
    token_symbol: str = "USDC",
) -> None:
    """
    Render the marketplace overview and the provider leaderboard as rich tables.
    """
    console = console or Console()

    checkpoint = "none" if overview.checkpoint is None else f"{overview.checkpoint:,}"
    totals = Table(
        title=f"Escrow Marketplace\n[dim]Checkpoint block: {checkpoint}[/dim]",
        box=box.ROUNDED,
    )
    totals.add_column("Jobs", justify="right", style="magenta")
    totals.add_column("Completed", justify="right", style="green")
    totals.add_column("Refunded", justify="right", style="red")
    totals.add_column("Active Providers", justify="right", style="cyan")
    totals.add_column(f"Volume ({token_symbol})", justify="right", style="bold green")
    totals.add_column("Success Rate", justify="right", style="yellow")
    totals.add_row(
        f"{overview.jobs_total:,}",
        f"{overview.jobs_completed:,}",
        f"{overview.jobs_refunded:,}",
        f"{overview.active_providers:,}",
        overview.volume_settled_display,
        _percent(overview.success_rate),
    )
    console.print(totals)

    if not providers:
        console.print("[yellow]No settled providers yet.[/yellow]")
        return

    leaderboard = Table(
        title="Top Providers",
        box=box.ROUNDED,
        caption="Sorted by completed jobs, then volume",
    )
    leaderboard.add_column("#", justify="right", style="blue")
    leaderboard.add_column("Provider", style="cyan", no_wrap=True)
    leaderboard.add_column("Completed", justify="right", style="green")
    leaderboard.add_column("Refunded", justify="right", style="red")
    leaderboard.add_column(f"Volume ({token_symbol})", justify="right", style="bold green")
    leaderboard.add_column("Success Rate", justify="right", style="yellow")

    for entry in providers:
        leaderboard.add_row(
            str(entry.rank),
            entry.provider,
            f"{entry.completed:,}",
            f"{entry.refunded:,}",
            entry.volume_settled_display,
            _percent(entry.success_rate),
        )

    console.print(leaderboard)


__all__ = ["format_status_line", "print_summary"]
