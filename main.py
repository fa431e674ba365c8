import logging
import time
from dataclasses import replace
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from alerts import DueDateAlertScanner
from config import settings
from library import Library
from persistence import PersistenceError
from utils.ui_helpers import (
    set_output_mode,
    print_alerts,
    print_book_list,
    print_lines,
    print_member_list,
    print_stats_result,
)
from utils.validators import ISBNValidator, TextValidator

APP_NAME = "Library Circulation CLI"

console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route log records through rich on stderr. Safe to call more than once."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _library(ctx: typer.Context) -> Library:
    return ctx.obj


def _error(message: str) -> None:
    err_console.print(f"[bold red]{message}[/]")
    raise typer.Exit(code=1)


# --- Typer CLI Application ---
app = typer.Typer(help="Library circulation: catalog, members, checkouts and reservations.")


@app.callback()
def _global_options(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    data_dir: Optional[str] = typer.Option(
        None,
        "--data-dir",
        help="Directory holding the data file and backups",
    ),
):
    """Global options and the shared library for every command."""
    if ctx.resilient_parsing:
        return
    if output:
        set_output_mode(output)
    configure_logging(settings.log_level)

    config = replace(settings, data_dir=data_dir) if data_dir else settings
    library = Library(config=config)
    ctx.obj = library
    ctx.call_on_close(library.close)


# ------------------------- Catalog ------------------------- #
@app.command("add-book")
def cli_add_book(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Book title"),
    author: str = typer.Argument(..., help="Author name"),
    isbn: str = typer.Option("", "--isbn", help="ISBN-10 or ISBN-13"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Shelf category"),
):
    """Add a book to the catalog."""
    if not TextValidator.validate_title(title):
        _error("Error: title cannot be empty")
    if not TextValidator.validate_author(author):
        _error("Error: invalid author name")
    if isbn:
        if not ISBNValidator.is_valid_isbn(isbn):
            _error(f"Error: invalid ISBN {isbn}")
        isbn = ISBNValidator.normalize_isbn(isbn)

    book_id = _library(ctx).add_book(title, author, isbn, category)
    print(f"Added book {book_id}: {title.strip()} by {author.strip()}")


@app.command("remove-book")
def cli_remove_book(ctx: typer.Context, book_id: str):
    """Remove a book and its reservation queue."""
    if _library(ctx).remove_book(book_id):
        print(f"Book {book_id} has been removed.")
    else:
        print(f"Book {book_id} not found.")


@app.command("list")
def cli_list(ctx: typer.Context):
    """List every book in the catalog."""
    print_book_list(_library(ctx).list_books())


@app.command("find")
def cli_find(ctx: typer.Context, book_id: str):
    """Show one book with its reservation queue."""
    lib = _library(ctx)
    book = lib.get_book(book_id)
    if book is None:
        print(f"Book {book_id} not found.")
        return
    print("Book Found")
    print(f"Title: {book.title}")
    print(f"Author: {book.author}")
    print(f"ISBN: {book.isbn}")
    if book.category:
        print(f"Category: {book.category}")
    if book.available:
        print("Status: available")
    else:
        print(f"Status: out to {book.current_borrower_id}, due {book.due_date.isoformat()}")
    queue = lib.reservation_list(book_id)
    if queue:
        print(f"Waiting: {', '.join(queue)}")


@app.command("search")
def cli_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Text to look for in title, author or ISBN"),
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum number of results"),
):
    """Search the catalog."""
    books = _library(ctx).search_books(query)[:limit]
    print_book_list(books, empty_message="No books match the search.")


@app.command("outstanding")
def cli_outstanding(ctx: typer.Context):
    """List books that are currently checked out."""
    print_book_list(_library(ctx).outstanding_books(), empty_message="No books are checked out.")


@app.command("stats")
def cli_stats(ctx: typer.Context):
    """Show catalog and circulation statistics."""
    print_stats_result(_library(ctx).get_statistics())


# ------------------------- Members ------------------------- #
@app.command("register")
def cli_register(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Member name"),
    email: str = typer.Option("", "--email", "-e", help="Contact email"),
    phone: Optional[str] = typer.Option(None, "--phone", help="Contact phone"),
):
    """Register a new member."""
    if not TextValidator.validate_name(name):
        _error("Error: member name cannot be empty")
    if not TextValidator.validate_email(email):
        _error(f"Error: invalid email {email}")

    member_id = _library(ctx).add_member(name.strip(), email.strip(), phone)
    print(f"Registered member {member_id}: {name.strip()}")


@app.command("remove-member")
def cli_remove_member(ctx: typer.Context, member_id: str):
    """Remove a member. Books they hold stay checked out."""
    lib = _library(ctx)
    member = lib.get_member(member_id)
    if member is None or not lib.remove_member(member_id):
        print(f"Member {member_id} not found.")
        return
    print(f"Member {member_id} has been removed.")
    if member.borrowed_books:
        print(f"Still checked out to {member_id}: {', '.join(member.borrowed_books)}")


@app.command("members")
def cli_members(ctx: typer.Context):
    """List registered members."""
    print_member_list(_library(ctx).list_members())


@app.command("history")
def cli_history(ctx: typer.Context, member_id: str):
    """Show a member's borrowing history."""
    print_lines(f"History for {member_id}", _library(ctx).history(member_id), "No history recorded.")


# ------------------------- Circulation ------------------------- #
@app.command("checkout")
def cli_checkout(ctx: typer.Context, book_id: str, member_id: str):
    """Check a book out to a member."""
    lib = _library(ctx)
    if lib.checkout(book_id, member_id):
        book = lib.get_book(book_id)
        print(f"Checked out {book_id} to {member_id}, due {book.due_date.isoformat()}")
    else:
        print(f"Checkout failed: {book_id} is unknown or not available, or {member_id} is unknown.")


@app.command("return")
def cli_return(ctx: typer.Context, book_id: str):
    """Return a borrowed book."""
    lib = _library(ctx)
    if not lib.return_book(book_id):
        print(f"Book {book_id} is not checked out.")
        return
    print(f"Book {book_id} returned.")
    waiting = lib.reservation_list(book_id)
    if waiting:
        print(f"Next in queue: {waiting[0]}")


@app.command("renew")
def cli_renew(ctx: typer.Context, book_id: str):
    """Extend the due date of a borrowed book."""
    lib = _library(ctx)
    if lib.renew(book_id):
        print(f"Renewed {book_id}, now due {lib.get_book(book_id).due_date.isoformat()}")
    else:
        print(f"Book {book_id} is not checked out.")


@app.command("reserve")
def cli_reserve(ctx: typer.Context, book_id: str, member_id: str):
    """Put a member in the reservation queue for a book."""
    lib = _library(ctx)
    lib.reserve(book_id, member_id)
    position = len(lib.reservation_list(book_id))
    print(f"Member {member_id} reserved {book_id} (position {position}).")


@app.command("next-reservation")
def cli_next_reservation(ctx: typer.Context, book_id: str):
    """Take the next member off a book's reservation queue."""
    member_id = _library(ctx).next_reservation(book_id)
    if member_id is None:
        print(f"No reservations for {book_id}.")
    else:
        print(f"Next reservation for {book_id}: {member_id}")


@app.command("queue")
def cli_queue(ctx: typer.Context, book_id: str):
    """Show the reservation queue for a book without changing it."""
    print_lines(f"Queue for {book_id}", _library(ctx).reservation_list(book_id), f"No reservations for {book_id}.")


# ------------------------- Alerts ------------------------- #
@app.command("alerts")
def cli_alerts(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Alert window in days"),
):
    """Run one due-date scan and print the alerts."""
    scanner = DueDateAlertScanner(_library(ctx), threshold_days=days)
    print_alerts(scanner.scan_once())


@app.command("watch")
def cli_watch(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Alert window in days"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between scans"),
    timeout: int = typer.Option(0, "--timeout", help="Seconds to run before exiting (0 = until Ctrl+C)"),
):
    """Keep scanning for due books in the background."""
    scanner = DueDateAlertScanner(
        _library(ctx),
        threshold_days=days,
        interval_seconds=interval,
        on_alert=lambda alert: console.print(f"[bold yellow]⏰ {alert}[/]"),
    )
    print(f"Watching due dates every {scanner.interval_seconds}s (Ctrl+C to stop)")
    scanner.start()
    started = time.monotonic()
    try:
        while timeout <= 0 or time.monotonic() - started < timeout:
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    finally:
        scanner.stop()
    print("Stopped watching.")


# ------------------------- Data files ------------------------- #
@app.command("backups")
def cli_backups(ctx: typer.Context):
    """List backup files, newest first."""
    try:
        names = _library(ctx).list_backups()
    except PersistenceError as e:
        _error(f"Error: {e}")
    print_lines("Backups", names, "No backups found.")


@app.command("restore")
def cli_restore(
    ctx: typer.Context,
    name: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Replace the current data with a backup."""
    if not yes and not typer.confirm(f"Replace all current data with {name}?", default=True):
        print("Restore cancelled.")
        return
    try:
        _library(ctx).restore_backup(name)
    except PersistenceError as e:
        _error(f"Restore failed: {e}")
    print(f"Restored data from {name}")


@app.command("export")
def cli_export(ctx: typer.Context, path: str):
    """Write the whole library to a JSON file."""
    try:
        _library(ctx).export_to(path)
    except PersistenceError as e:
        _error(f"Export failed: {e}")
    print(f"Library exported to {path}")


@app.command("import")
def cli_import(ctx: typer.Context, path: str):
    """Replace the current data with a previously exported file."""
    try:
        _library(ctx).import_from(path)
    except PersistenceError as e:
        _error(f"Import failed: {e}")
    stats = _library(ctx).get_statistics()
    print(f"Imported {stats['total_books']} books and {stats['members']} members from {path}")


if __name__ == "__main__":
    app()
