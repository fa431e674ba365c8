from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import List


@dataclass
class Member:
    id: str
    name: str
    email: str
    phone: str | None = None
    membership_date: date = field(default_factory=date.today)
    active: bool = True
    borrowed_books: List[str] = field(default_factory=list)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} <{self.email}> ({self.id})"

    def add_borrowed(self, book_id: str) -> None:
        if book_id not in self.borrowed_books:
            self.borrowed_books.append(book_id)

    def remove_borrowed(self, book_id: str) -> bool:
        if book_id in self.borrowed_books:
            self.borrowed_books.remove(book_id)
            return True
        return False

    def copy(self) -> "Member":
        return replace(self, borrowed_books=list(self.borrowed_books))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "membershipDate": self.membership_date.isoformat(),
            "active": self.active,
            "borrowedBooks": list(self.borrowed_books),
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        joined = data.get("membershipDate")
        listed = data.get("borrowedBooks") or []
        if not isinstance(listed, list):
            raise TypeError(f"borrowedBooks must be a list, got {type(listed).__name__}")
        active = data.get("active", True)
        if not isinstance(active, bool):
            raise TypeError(f"active must be true or false, got {active!r}")

        borrowed: List[str] = []
        # De-duplicate while keeping the original order
        for book_id in map(str, listed):
            if book_id not in borrowed:
                borrowed.append(book_id)

        return Member(
            id=str(data["id"]),
            name=data["name"],
            email=data.get("email", ""),
            phone=data.get("phone"),
            membership_date=date.fromisoformat(joined) if joined else date.today(),
            active=active,
            borrowed_books=borrowed,
        )
