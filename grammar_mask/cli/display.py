"""
Rich terminal display utilities for CLI.

Provides formatted output using the Rich library for:
- Syntax-highlighted schema text
- Vocabulary summary and matcher trace tables
- Generation statistics
- Success/failure indicators
"""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from grammar_mask.vocabulary.vocabulary import Vocabulary

console = Console()


def print_header(title: str) -> None:
    """Print a formatted header."""
    console.print()
    console.print(f"[bold cyan]{title}[/bold cyan]")
    console.print("=" * len(title))
    console.print()


def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message with X mark."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_separator() -> None:
    console.print("[dim]" + "─" * 70 + "[/dim]")


def print_json(data: Any, title: Optional[str] = None) -> None:
    """
    Print JSON data with syntax highlighting.

    Args:
        data: JSON-serializable data or JSON string
        title: Optional title for the panel
    """
    json_str = data if isinstance(data, str) else json.dumps(data, indent=2, ensure_ascii=False)
    syntax = Syntax(json_str, "json", theme="monokai", line_numbers=False)

    if title:
        console.print(Panel(syntax, title=f"[bold]{title}[/bold]", border_style="cyan"))
    else:
        console.print(syntax)


def print_vocabulary(vocabulary: Vocabulary, title: str = "Vocabulary") -> None:
    """Print a vocabulary summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Property", style="cyan", width=20)
    table.add_column("Value", style="white")

    stop_tokens = ", ".join(f"{i} {vocabulary.tokens[i]!r}" for i in sorted(vocabulary.stop_token_ids))

    table.add_row("Tokens", str(vocabulary.vocab_size))
    table.add_row("Encoding", vocabulary.encoding_kind.name)
    table.add_row("Bitmask Words", str(vocabulary.bitmask_words))
    table.add_row("Stop Tokens", stop_tokens or Text("none", style="yellow"))
    table.add_row("Special Tokens", str(len(vocabulary.special_token_ids)))
    table.add_row("Fingerprint", vocabulary.fingerprint[:16])

    console.print()
    console.print(table)
    console.print()


def print_trace(rows: List[Dict[str, Any]]) -> None:
    """
    Print a matcher trace.

    Args:
        rows: One dict per token with keys: token, token_id, permitted,
            allowed_count, accepted, can_terminate
    """
    table = Table(title="Matcher Trace", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Token", style="cyan")
    table.add_column("Id", justify="right")
    table.add_column("Allowed", justify="right")
    table.add_column("In Mask", justify="center")
    table.add_column("Accepted", justify="center")
    table.add_column("Can Stop", justify="center")

    for i, row in enumerate(rows, 1):
        token_id = "-" if row["token_id"] is None else str(row["token_id"])
        table.add_row(
            str(i),
            repr(row["token"]),
            token_id,
            str(row["allowed_count"]),
            "[green]✓[/green]" if row["permitted"] else "[red]✗[/red]",
            "[green]✓[/green]" if row["accepted"] else "[red]✗[/red]",
            "[green]✓[/green]" if row["can_terminate"] else "[dim]-[/dim]",
        )

    console.print()
    console.print(table)
    console.print()


def print_result_stats(
    is_complete: bool,
    rejected_tokens: int,
    latency_ms: float,
    tokens_generated: int
) -> None:
    """Print generation result statistics in a table."""
    table = Table(title="Generation Statistics", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan", width=20)
    table.add_column("Value", style="white", width=30)

    status = Text("✓ Complete", style="green bold") if is_complete else Text("✗ Incomplete", style="red bold")
    table.add_row("Status", status)
    table.add_row("Latency", f"{latency_ms:.0f} ms")
    table.add_row("Tokens Generated", str(tokens_generated))
    if rejected_tokens:
        table.add_row("Rejected Tokens", str(rejected_tokens), style="yellow")

    console.print()
    console.print(table)
    console.print()


def create_progress_spinner() -> Progress:
    """Create a progress spinner for long-running operations."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    )
