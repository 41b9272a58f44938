"""
SearchProxy Terminal UI
========================
Rich terminal output for the command-line interface: banner, status lines,
and tables for dialects, recognition results, and recorded queries.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from searchproxy import __version__

# ── Theme ────────────────────────────────────────────────────────────────────

SEARCHPROXY_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "title": "bold bright_green",
    "subtitle": "dim",
    "dialect": "bold magenta",
    "dim": "dim white",
})

console = Console(theme=SEARCHPROXY_THEME)

# ── Banner ───────────────────────────────────────────────────────────────────

BANNER_SMALL = (
    f"[bold bright_green]🔎 SearchProxy[/] [dim]v{__version__}[/] "
    "[dim]|[/] [bold bright_cyan]Search-query recording HTTP proxy[/]"
)


def show_banner() -> None:
    """Display the SearchProxy banner."""
    console.print(BANNER_SMALL)


# ── Status & Info ────────────────────────────────────────────────────────────

def print_info(msg: str) -> None:
    console.print(f"[info]ℹ {msg}[/]")


def print_success(msg: str) -> None:
    console.print(f"[success]✔ {msg}[/]")


def print_warning(msg: str) -> None:
    console.print(f"[warning]⚠ {msg}[/]")


def print_error(msg: str) -> None:
    console.print(f"[error]✖ {msg}[/]")


def show_config_status(config: Dict[str, Any]) -> None:
    """Display configuration status."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")

    for key, value in config.items():
        table.add_row(key, str(value))

    console.print(Panel(table, title="[title]Configuration[/]", border_style="green"))


# ── Tables ───────────────────────────────────────────────────────────────────

def show_dialects(rows: Iterable[Dict[str, str]]) -> None:
    """Display the dialect table in match order."""
    table = Table(title="Search Engine Dialects")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Dialect", style="dialect")
    table.add_column("Match")
    table.add_column("Extract")
    table.add_column("Split")

    for i, row in enumerate(rows, 1):
        table.add_row(str(i), row["name"], row["match"], row["extract"], row["split"])

    console.print(table)


def show_recognitions(results: List[Tuple[str, Optional[str], Optional[str], List[str]]]) -> None:
    """Display (uri, dialect, query, keywords) recognition results."""
    table = Table(title="Recognition")
    table.add_column("URI", overflow="fold")
    table.add_column("Dialect", style="dialect")
    table.add_column("Query")
    table.add_column("Keywords")

    for uri, dialect, query, keywords in results:
        if dialect is None:
            table.add_row(uri, "[dim]—[/]", "[dim]no match[/]", "")
        else:
            table.add_row(uri, dialect, query or "", ", ".join(repr(k) for k in keywords))

    console.print(table)


def show_queries(records: Iterable[Any]) -> None:
    """Display recorded queries, newest first."""
    table = Table(title="Recorded Queries")
    table.add_column("When", style="dim")
    table.add_column("Query")
    table.add_column("Keywords")

    count = 0
    for r in records:
        table.add_row(r.when.strftime("%Y-%m-%d %H:%M:%S"), r.query, ", ".join(r.keywords))
        count += 1

    if count:
        console.print(table)
    else:
        print_info("No recorded queries")
