import logging
import os
import subprocess
import sys
from datetime import timedelta
from typing import Optional

import typer
from rich.console import Console

from . import database
from .config import settings
from .errors import LibraryError
from .output import print_rows, print_stats_result, set_output_mode
from .seed import seed_demo_data
from .store import LibraryStore

APP_NAME = "Docucenter CLI"

console = Console()
logger = logging.getLogger(__name__)


def default_db_file() -> str:
    """Per-user database used when LIBRARY_DB_FILE is not set, so separate runs share data."""
    app_dir = typer.get_app_dir("docucenter")
    os.makedirs(app_dir, exist_ok=True)
    return os.path.join(app_dir, "library.db")


class StoreManager:
    """Lazily loaded store shared by every command of one CLI run."""

    _instance: Optional[LibraryStore] = None
    _db_file: Optional[str] = None

    @classmethod
    def get_instance(cls) -> LibraryStore:
        db_file = settings.db_file or default_db_file()
        if cls._instance is None or db_file != cls._db_file:
            cls._instance = database.load_store(db_file, max_active_loans=settings.max_active_loans)
            cls._db_file = db_file
            logger.debug("Store loaded from %s", db_file)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None
        cls._db_file = None


app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Global options for the CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)
    if output:
        set_output_mode(output)


@app.command("seed")
def cli_seed():
    """Load demo data into an empty library."""
    store = StoreManager.get_instance()
    if store.list_books():
        print("Library already contains data; nothing seeded.")
        return
    seed_demo_data(store)
    print(f"Seeded {len(store.list_books())} books and {len(store.list_participants())} participants.")


@app.command("books")
def cli_books():
    """List all books with their available copies."""
    store = StoreManager.get_instance()
    rows = [book.to_dict() for book in store.list_books()]
    print_rows(
        rows,
        [("id", "ID"), ("title", "Title"), ("author", "Author"), ("available_copies", "Available"), ("quantity", "Copies")],
        title="📚 Books",
        empty_message="No books in library.",
    )


@app.command("loans")
def cli_loans(status: Optional[str] = typer.Option(None, "--status", "-s", help="active | overdue | returned")):
    """List book loans, optionally filtered by status."""
    store = StoreManager.get_instance()
    try:
        loans = store.list_loans(status=status)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    rows = []
    for loan in loans:
        book = store.get_book_by_id(loan.book_id)
        rows.append({**loan.to_dict(), "title": book.title if book else "Unknown Book"})
    print_rows(
        rows,
        [("id", "ID"), ("title", "Book"), ("borrower_name", "Borrower"), ("due_date", "Due"), ("status", "Status")],
        title="📖 Loans",
        empty_message="No loans found.",
    )


@app.command("lend")
def cli_lend(
    book_id: str,
    borrower_id: str,
    days: int = typer.Option(settings.default_loan_days, "--days", "-d", help="Loan period in days"),
    borrower_type: str = typer.Option("participant", "--type", "-t", help="participant | other_reader"),
):
    """Lend a book to a participant or other reader."""
    store = StoreManager.get_instance()
    try:
        loan = store.create_loan(book_id, borrower_id, store.today() + timedelta(days=days), borrower_type=borrower_type)
    except (LibraryError, ValueError) as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Loan {loan.id} created for {loan.borrower_name}, due {loan.due_date.isoformat()}.")


@app.command("return")
def cli_return(loan_id: str):
    """Return a book loan."""
    store = StoreManager.get_instance()
    try:
        loan = store.return_loan(loan_id)
    except LibraryError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Loan {loan.id} returned on {loan.return_date.isoformat()}.")


@app.command("renew")
def cli_renew(
    loan_id: str,
    days: int = typer.Option(settings.default_loan_days, "--days", "-d", help="Days to add to the current due date"),
):
    """Extend the due date of a book loan."""
    store = StoreManager.get_instance()
    loan = store.get_loan_by_id(loan_id)
    if loan is None:
        print(f"Error: Loan {loan_id} not found.")
        raise typer.Exit(code=1)
    try:
        loan = store.renew_loan(loan_id, loan.due_date + timedelta(days=days))
    except LibraryError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Loan {loan.id} is now due {loan.due_date.isoformat()}.")


@app.command("overdue")
def cli_overdue():
    """Show the number of overdue loans and list the overdue book loans."""
    store = StoreManager.get_instance()
    print(f"Overdue loans: {store.count_overdue()}")
    rows = [loan.to_dict() for loan in store.list_loans(status="overdue")]
    print_rows(
        rows,
        [("id", "ID"), ("borrower_name", "Borrower"), ("due_date", "Due")],
        title="⏰ Overdue",
        empty_message="No overdue book loans.",
    )


@app.command("stats")
def cli_stats():
    """Show dashboard statistics."""
    store = StoreManager.get_instance()
    print_stats_result(store.get_stats().to_dict())


@app.command("activity")
def cli_activity(limit: int = typer.Option(settings.recent_activity_limit, "--limit", "-n")):
    """Show the most recent loan activity."""
    store = StoreManager.get_instance()
    rows = [record.to_dict() for record in store.recent_activity(limit)]
    print_rows(
        rows,
        [("title", "Item"), ("borrower_name", "Borrower"), ("loan_date", "Loaned"), ("status", "Status"), ("return_date", "Returned")],
        title="🕑 Recent activity",
        empty_message="No recent activity.",
    )


@app.command("categories")
def cli_categories():
    """Show how many books each category holds."""
    store = StoreManager.get_instance()
    rows = []
    for category_id, count in store.category_distribution():
        category = store.get_category_by_id(category_id)
        rows.append({"name": category.name, "book_count": count})
    print_rows(
        rows,
        [("name", "Category"), ("book_count", "Books")],
        title="🏷️ Categories",
        empty_message="No categorized books.",
    )


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart the server on code changes")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/api")
    args = [sys.executable, "-m", "uvicorn", "docucenter.api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
