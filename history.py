"""Structured records for the per-member borrowing history.

Each entry renders to the same free-text line the log has always shown
(``"Checked out Dune"``), so callers reading plain strings are unaffected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class HistoryKind(str, Enum):
    CHECKOUT = "checkout"
    RETURN = "return"
    RENEWAL = "renewal"
    NOTE = "note"


_VERBS = {
    HistoryKind.CHECKOUT: "Checked out",
    HistoryKind.RETURN: "Returned",
    HistoryKind.RENEWAL: "Renewed",
}


@dataclass(frozen=True)
class HistoryEntry:
    kind: HistoryKind
    member_id: str
    title: str
    book_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        verb = _VERBS.get(self.kind)
        if verb is None:
            return self.title
        return f"{verb} {self.title}"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "bookId": self.book_id,
            "memberId": self.member_id,
            "title": self.title,
        }

    @staticmethod
    def from_dict(data, member_id: str) -> "HistoryEntry":
        # Plain strings are the legacy free-text format; keep the text verbatim
        if isinstance(data, str):
            return HistoryEntry(kind=HistoryKind.NOTE, member_id=member_id, title=data)

        stamp = data.get("timestamp")
        return HistoryEntry(
            kind=HistoryKind(data.get("kind", HistoryKind.NOTE.value)),
            member_id=data.get("memberId") or member_id,
            title=data.get("title", ""),
            book_id=data.get("bookId"),
            timestamp=datetime.fromisoformat(stamp) if stamp else datetime.now(),
        )
