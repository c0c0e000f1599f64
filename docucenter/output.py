import json
import os
from typing import Any, Dict, List, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling the CLI output mode.
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "DOCUCENTER_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_rows(
    rows: List[Dict[str, Any]],
    columns: Sequence[Tuple[str, str]],
    title: str,
    empty_message: str,
) -> None:
    """Print dict rows in the current output mode.

    ``columns`` is a sequence of (key, header) pairs.
    - plain: one line per row, values joined with ' | '
    - json: JSON array of the selected keys
    - rich: Rich table
    """
    if not rows:
        print(empty_message)
        return

    mode = get_output_mode()
    if mode == "json":
        payload = [{key: row.get(key) for key, _ in columns} for row in rows]
        print(json.dumps(payload, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for _, header in columns:
            table.add_column(header)
        for row in rows:
            table.add_row(*("" if row.get(key) is None else str(row.get(key)) for key, _ in columns))
        _console.print(table)
    else:
        for row in rows:
            print(" | ".join("" if row.get(key) is None else str(row.get(key)) for key, _ in columns))


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print dashboard statistics in the current output mode."""
    mode = get_output_mode()
    labels = {
        "total_books": "Total Books",
        "available_books": "Available Books",
        "active_loans": "Active Loans",
        "overdue_loans": "Overdue Loans",
        "total_participants": "Participants",
        "books_this_week": "Loans This Week",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{labels.get(k, k)}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{labels.get(key, key)}: {value}")
