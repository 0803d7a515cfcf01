import logging
import subprocess
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

import database
from config import settings
from library import Library
from seed import MOCK_MEMBERS, seed_members

APP_NAME = "Libra CLI"

console = Console()
logger = logging.getLogger(__name__)

app = typer.Typer(help="Libra library management")


@contextmanager
def open_library() -> Iterator[Library]:
    """Connect to the configured database for the duration of one command."""
    client = database.create_client(settings)
    try:
        yield Library(database.get_database(client, settings), settings=settings)
    finally:
        database.close_client(client)


@app.callback()
def _global_options(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Run the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"Starting API on http://{host}:{port}/")
    args = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] could not start uvicorn. Is it installed?")
        raise typer.Exit(code=1)


@app.command("init-db")
def cli_init_db():
    """Create the collection indexes."""
    with open_library() as lib:
        database.ensure_indexes(lib.db)
    console.print("[green]Indexes created[/]")


@app.command("seed")
def cli_seed():
    """Replace all members with the mock data set and show the test credentials."""
    with open_library() as lib:
        count = seed_members(lib.members.collection, lib.hasher)
    console.print(f"[green]Inserted {count} members[/]")

    table = Table(title="Test credentials", box=box.SIMPLE)
    for column in ("Name", "Email", "Password", "Role", "Student ID"):
        table.add_column(column)
    for member in MOCK_MEMBERS:
        table.add_row(member["name"], member["email"], member["password"], member["role"],
                      member.get("studentId") or "-")
    console.print(table)


@app.command("stats")
def cli_stats():
    """Show member, book and loan statistics."""
    with open_library() as lib:
        stats = lib.statistics()

    members = Table(title="Members by role", box=box.SIMPLE)
    members.add_column("Role")
    members.add_column("Count", justify="right")
    members.add_column("Active", justify="right")
    for row in stats["members"]:
        members.add_row(str(row["_id"]), str(row["count"]), str(row["active"]))
    console.print(members)

    books = Table(title="Books by category", box=box.SIMPLE)
    books.add_column("Category")
    books.add_column("Total", justify="right")
    books.add_column("Available", justify="right")
    for row in stats["books"]:
        books.add_row(str(row["_id"] or "-"), str(row["total"]), str(row["available"]))
    console.print(books)

    loans = Table(title="Loans", box=box.SIMPLE)
    loans.add_column("Active", justify="right")
    loans.add_column("Returned", justify="right")
    loans.add_column("Overdue", justify="right")
    summary = stats["loans"]
    loans.add_row(str(summary["activeLoans"]), str(summary["returnedLoans"]), str(summary["overdueLoans"]))
    console.print(loans)


@app.command("mark-overdue")
def cli_mark_overdue():
    """Flag active loans past their due date as overdue."""
    with open_library() as lib:
        result = lib.loans.refresh_overdue()
    console.print(f"Marked {result['flagged']} loans overdue, cleared {result['cleared']}")


if __name__ == "__main__":
    app()
