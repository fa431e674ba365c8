from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date


@dataclass
class Book:
    """A single title in the catalog and its circulation state."""

    id: str
    title: str
    author: str
    isbn: str
    category: str | None = None
    available: bool = True
    current_borrower_id: str | None = None
    due_date: date | None = None

    def __post_init__(self) -> None:
        self.title = self.title.strip()
        self.author = self.author.strip()
        self.isbn = self.isbn.strip()

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def check_out(self, member_id: str, due: date) -> None:
        self.available = False
        self.current_borrower_id = member_id
        self.due_date = due

    def check_in(self) -> None:
        self.available = True
        self.current_borrower_id = None
        self.due_date = None

    def copy(self) -> "Book":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "available": self.available,
            "currentBorrowerId": self.current_borrower_id,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        due = data.get("dueDate")
        borrower = data.get("currentBorrowerId")
        # The borrower field decides availability; a stale or missing flag is ignored
        available = borrower is None

        return Book(
            id=str(data["id"]),
            title=data["title"],
            author=data.get("author", ""),
            isbn=data.get("isbn", ""),
            category=data.get("category"),
            available=available,
            current_borrower_id=None if borrower is None else str(borrower),
            due_date=date.fromisoformat(due) if due and not available else None,
        )
