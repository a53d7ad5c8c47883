import json
import os
from typing import Any, List

from rich.console import Console
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LENDING_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _fmt(value: Any) -> str:
    return "" if value is None else str(value)


def print_reservations(views: List[Any], title: str = "Reservations") -> None:
    """Print reservations in the current output mode.
    - plain: '#id [STATUS] Book title -> User (due YYYY-MM-DD) fee X late Y' lines, or 'No reservations found.'
    - json: JSON array of the reservation views
    - rich: Rich table
    """
    mode = get_output_mode()

    if not views:
        print("No reservations found.")
        return

    if mode == "json":
        payload = [view.to_dict() for view in views]
        print(json.dumps(payload, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=f"📚 {title}", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("User", style="white")
        table.add_column("Due", style="yellow")
        table.add_column("Status")
        table.add_column("Total", justify="right")
        table.add_column("Late fee", justify="right", style="red")
        for v in views:
            table.add_row(
                _fmt(v.id), v.book_title, v.user_name, _fmt(v.expected_return_date),
                v.status.value, _fmt(v.total_fee), _fmt(v.late_fee),
            )
        _console.print(table)
    else:
        for v in views:
            print(
                f"#{v.id} [{v.status.value}] {v.book_title} -> {v.user_name} "
                f"(due {v.expected_return_date}) fee {v.total_fee} late {v.late_fee}"
            )


def print_reservation(view: Any) -> None:
    """Print a single reservation using the list renderer."""
    print_reservations([view], title=f"Reservation #{view.id}")
