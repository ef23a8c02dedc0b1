import logging
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from libratech import database
from libratech.access import AccessGate
from libratech.config import settings
from libratech.exceptions import LibraryError, NotFound
from libratech.inventory import BorrowStatus, ReturnStatus
from libratech.library import Library
from libratech.models import Book
from libratech.ui_helpers import (
    print_books_result,
    print_categories_result,
    print_loans_result,
    print_message,
    set_output_mode,
)
from libratech.validators import EmailValidator

APP_NAME = "Libratech CLI"

console = Console(stderr=True)
logger = logging.getLogger(__name__)

app = typer.Typer(help=APP_NAME)


def _fail(message: str) -> None:
    print(message)
    raise typer.Exit(code=1)


def _get_library() -> Library:
    try:
        return Library()
    except LibraryError as e:
        console.print(f"[bold red]Could not open the library database: {e}[/]")
        raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file (default: LIBRARY_DB_FILE)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Global options (output mode, database file)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    if output:
        set_output_mode(output)
    if db:
        database.DATABASE_FILE = db


@app.command("init-db")
def cli_init_db():
    """Create the database schema if it does not exist."""
    library = _get_library()
    print(f"Database ready at {library.location}")


# ------------------------- Catalog ------------------------- #
@app.command("add-category")
def cli_add_category(name: str):
    """Add a book category."""
    try:
        category = _get_library().catalog.add_category(name)
    except ValueError as e:
        _fail(f"Error: {e}")
    print_message(category.to_dict(), f"Added category {category.name} ({category.id})")


@app.command("categories")
def cli_categories(name: Optional[str] = typer.Option(None, "--name", help="Exact category name")):
    """List categories."""
    print_categories_result(_get_library().catalog.list_categories(name=name))


@app.command("add-book")
def cli_add_book(
    title: str = typer.Option(..., "--title", "-t", help="Book title"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author name"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Category name"),
    quantity: int = typer.Option(1, "--quantity", "-q", min=0, help="Copies available for loan"),
    description: Optional[str] = typer.Option(None, "--description", help="Short description"),
):
    """Add a book to the catalog."""
    try:
        book = _get_library().catalog.add_book(
            Book(title=title, author=author, category=category, quantity=quantity, description=description)
        )
    except ValueError as e:
        _fail(f"Error: {e}")
    print_message(book.to_dict(), f"Successfully added: {book.title} ({book.id})")


@app.command("list")
def cli_list(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by category"),
    available: bool = typer.Option(False, "--available", help="Only books with copies on the shelf"),
    skip: int = typer.Option(0, "--skip", min=0),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", min=1),
):
    """List books."""
    books = _get_library().catalog.list_books(
        category=category,
        quantity=0 if available else None,
        comparison="gt" if available else None,
        skip=skip,
        limit=limit,
    )
    print_books_result(books)


# ------------------------- Loans ------------------------- #
@app.command("borrow")
def cli_borrow(
    book_id: str,
    email: str,
    return_date: Optional[str] = typer.Option(None, "--return-date", help="Due date agreed with the borrower"),
):
    """Lend a copy of a book to a borrower."""
    if not EmailValidator.is_valid_email(email):
        _fail(f"Not a valid email: {email}")
    email = EmailValidator.normalize_email(email)
    try:
        result = _get_library().inventory.borrow(book_id, email, return_date=return_date)
    except NotFound:
        _fail(f"Book {book_id} not found.")

    if result.status is BorrowStatus.BORROWED:
        print_message(result.loan.to_dict(), f"Borrowed: loan {result.loan.id}")
    elif result.status is BorrowStatus.ALREADY_BORROWED:
        _fail(f"{email} already has book {book_id} on loan.")
    else:
        _fail(f"Book {book_id} has no copies left.")


@app.command("return")
def cli_return(loan_id: str):
    """Return a loan. Returning twice is harmless."""
    result = _get_library().inventory.return_book(loan_id)
    if result.status is ReturnStatus.ALREADY_RETURNED:
        print(f"Loan {loan_id} is not active; nothing to do.")
    elif not result.restocked:
        print(f"Returned loan {loan_id}; its book has been removed from the catalog.")
    else:
        print(f"Returned loan {loan_id}.")


@app.command("loans")
def cli_loans(email: str):
    """List a borrower's active loans."""
    print_loans_result(_get_library().ledger.list_for_borrower(EmailValidator.normalize_email(email)))


# ------------------------- Admin ------------------------- #
@app.command("restock")
def cli_restock(book_id: str, quantity: int = typer.Argument(..., min=0)):
    """Set the number of copies available for loan."""
    try:
        book = _get_library().inventory.set_quantity(book_id, quantity)
    except NotFound:
        _fail(f"Book {book_id} not found.")
    print_message(book.to_dict(), f"{book.title} now has {book.quantity} available.")


@app.command("delete")
def cli_delete(book_id: str):
    """Delete a book and every loan of it."""
    result = _get_library().inventory.delete_book(book_id)
    if not result.book_deleted:
        _fail(f"Book {book_id} not found.")
    print(f"Book {book_id} has been removed ({result.loans_deleted} loan(s) closed).")


@app.command("token")
def cli_token(email: str):
    """Mint a session token, for calling the API from scripts."""
    try:
        token = AccessGate().issue(email)
    except ValueError as e:
        _fail(f"Error: {e}")
    print(token)


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    print(f"Starting {settings.app_name} API on http://{host}:{port}{settings.api_prefix}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "libratech.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    logger.debug("Launching %s", " ".join(args))
    try:
        subprocess.run(args, check=False)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
