import os
import json
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBRATECH_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _rich_table(title: str, columns: List[str], rows: List[List[str]]) -> None:
    table = Table(title=title, show_lines=True, header_style="bold cyan")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*row)
    _console.print(table)


def print_books_result(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: 'ID - Title by Author [category] (N available)' lines, or 'No books in library.'
    - json: array of book documents
    - rich: Rich table
    """
    if not books:
        print("No books in library.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        _rich_table(
            "📚 Books",
            ["ID", "Title", "Author", "Category", "Available"],
            [[b.id, b.title, b.author or "", b.category or "", str(b.quantity)] for b in books],
        )
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author or 'Unknown'} [{b.category or '-'}] ({b.quantity} available)")


def print_loans_result(loans: List[Any]) -> None:
    if not loans:
        print("No active loans.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([l.to_dict() for l in loans], ensure_ascii=False))
    elif mode == "rich":
        _rich_table(
            "📖 Loans",
            ["Loan", "Book", "Borrower", "Since", "Due"],
            [[l.id, l.book_id, l.email, l.created_at, l.return_date or ""] for l in loans],
        )
    else:
        for l in loans:
            due = f" due {l.return_date}" if l.return_date else ""
            print(f"{l.id} - book {l.book_id} borrowed by {l.email}{due}")


def print_categories_result(categories: List[Any]) -> None:
    if not categories:
        print("No categories.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([c.to_dict() for c in categories], ensure_ascii=False))
    elif mode == "rich":
        _rich_table("🗂️ Categories", ["ID", "Name"], [[c.id, c.name] for c in categories])
    else:
        for c in categories:
            print(f"{c.id} - {c.name}")


def print_message(payload: Dict[str, Any], text: str) -> None:
    """Print a single result: the payload as JSON in json mode, ``text`` otherwise."""
    if get_output_mode() == "json":
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(text)
