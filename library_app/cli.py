import logging
import os
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from library_app import database
from library_app.config import settings
from library_app.errors import LibraryError
from library_app.models import Role
from library_app.services import LoanService, NotificationService, ReportService, UserService
from library_app.ui_helpers import (
    print_count_result,
    print_loans_result,
    print_summary_result,
    set_output_mode,
)

console = Console()

# --- Typer CLI application ---
app = typer.Typer(help="Library circulation administration CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db_file: Optional[str] = typer.Option(
        None,
        "--db-file",
        help="SQLite database file (default: LIBRARY_DB_FILE or library.db)",
    ),
):
    """Global options for the CLI (output mode, database file)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)
    if db_file:
        database.DATABASE_FILE = db_file


@app.command("init-db")
def cli_init_db():
    """Create the database schema if it does not exist."""
    database.initialize_database()
    print(f"Database initialized at {database.DATABASE_FILE}")


@app.command("create-user")
def cli_create_user(
    name: str,
    email: str,
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
    role: Role = typer.Option(Role.USER, "--role", "-r", case_sensitive=False),
):
    """Create an account with any role (USER, LIBRARIAN or ADMIN)."""
    database.initialize_database()
    try:
        user = UserService().create_user(name, email, password, role=role)
    except LibraryError as e:
        console.print(f"[bold red]{e.message}[/]")
        raise typer.Exit(code=1)
    print(f"Created {user.role.value} {user.email} (id {user.id})")


@app.command("overdue")
def cli_overdue():
    """List open loans past their due date."""
    database.initialize_database()
    print_loans_result(LoanService().get_overdue_loans())


@app.command("notify-overdue")
def cli_notify_overdue():
    """Notify the borrower of every overdue loan."""
    database.initialize_database()
    print_count_result("Notifications created", LoanService().create_overdue_notifications())


@app.command("notify-librarians")
def cli_notify_librarians():
    """Alert every librarian about loans overdue by more than a week."""
    database.initialize_database()
    created = NotificationService().notify_librarians_about_overdue_beyond_one_week()
    print_count_result("Notifications created", created)


@app.command("summary")
def cli_summary():
    """Show catalog and circulation counters."""
    database.initialize_database()
    print_summary_result(ReportService().summary())


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default: API_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = port or int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/ (docs at /docs)")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "library_app.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    env = dict(os.environ, LIBRARY_DB_FILE=database.DATABASE_FILE)
    subprocess.run(args, env=env)


if __name__ == "__main__":
    app()
