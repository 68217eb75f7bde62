import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_loans_result(loans: List[Any]) -> None:
    """Print loans in the current output mode.
    - plain: '#id  title -> email (due YYYY-MM-DD)' lines, or 'No overdue loans.'
    - json: JSON array of loan dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not loans:
        print("No overdue loans.")
        return

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Overdue Loans", show_lines=True, header_style="bold cyan")
        table.add_column("Loan", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("Borrower", style="white")
        table.add_column("Due", style="red")
        for loan in loans:
            table.add_row(str(loan.id), loan.book_title or "", loan.user_email or "", loan.due_date.isoformat())
        _console.print(table)
    else:
        for loan in loans:
            print(f"#{loan.id}  {loan.book_title} -> {loan.user_email} (due {loan.due_date.isoformat()})")


def print_count_result(label: str, count: int) -> None:
    """Print a single counter, e.g. notifications created by a batch job."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps({label: count}, ensure_ascii=False))
    elif mode == "rich":
        _console.print(Panel.fit(f"[bold]{label}:[/] {count}", border_style="blue"))
    else:
        print(f"{label}: {count}")


def print_summary_result(summary: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(summary, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key.replace('_', ' ').title()}:[/] {value}" for key, value in summary.items())
        _console.print(Panel.fit(content, title="Summary", border_style="blue"))
    else:
        for key, value in summary.items():
            print(f"{key.replace('_', ' ').title()}: {value}")
