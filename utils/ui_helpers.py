import os
import json
from typing import List, Any, Dict, Sequence
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


def _book_status(book: Any) -> str:
    if book.available:
        return "available"
    return f"out to {book.current_borrower_id}, due {book.due_date.isoformat()}"


def print_book_list(books: List[Any], empty_message: str = "No books in library.") -> None:
    """Print books in the current output mode.
    - plain: 'ID - Title by Author [status]' lines, or the empty message
    - json: JSON array of the stored book fields
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("ISBN", style="dim")
        table.add_column("Status")
        for b in books:
            status = "[green]available[/]" if b.available else f"[yellow]{_book_status(b)}[/]"
            table.add_row(b.id, b.title, b.author, b.isbn, status)
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{_book_status(b)}]")


def print_member_list(members: List[Any]) -> None:
    mode = get_output_mode()

    if not members:
        print("No members registered.")
        return

    if mode == "json":
        print(json.dumps([m.to_dict() for m in members], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="👥 Members", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        table.add_column("Email", style="white")
        table.add_column("Borrowed", justify="right")
        for m in members:
            table.add_row(m.id, m.name, m.email, str(len(m.borrowed_books)))
        _console.print(table)
    else:
        for m in members:
            borrowed = ", ".join(m.borrowed_books) if m.borrowed_books else "none"
            print(f"{m.id} - {m.name} <{m.email}> borrowed: {borrowed}")


def print_lines(title: str, lines: Sequence[str], empty_message: str) -> None:
    """Print a titled list of strings (history, queues, backups)."""
    mode = get_output_mode()

    if not lines:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(list(lines), ensure_ascii=False))
    elif mode == "rich":
        body = "\n".join(f"{i}. {line}" for i, line in enumerate(lines, 1))
        _console.print(Panel.fit(body, title=title, border_style="blue"))
    else:
        print(f"{title}:")
        for line in lines:
            print(f"- {line}")


def print_alerts(alerts: List[Any]) -> None:
    mode = get_output_mode()

    if not alerts:
        print("No books due soon.")
        return

    if mode == "json":
        payload = [
            {
                "bookId": a.book_id,
                "title": a.title,
                "memberId": a.member_id,
                "member": a.borrower,
                "dueDate": a.due_date.isoformat(),
                "daysLeft": a.days_left,
            }
            for a in alerts
        ]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        for a in alerts:
            _console.print(f"[bold yellow]⏰ {a}[/]")
    else:
        for a in alerts:
            print(str(a))


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the main metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "available_books": "Available",
        "outstanding_books": "Checked Out",
        "members": "Members",
        "reservations": "Pending Reservations",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
