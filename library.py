import logging
import threading
from collections import deque
from datetime import date, datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from book import Book
from config import Settings, settings
from history import HistoryEntry, HistoryKind
from member import Member
from persistence import DataPersistence, PathLike, PersistenceError, Snapshot

logger = logging.getLogger(__name__)

BOOK_ID_PREFIX = "B"
MEMBER_ID_PREFIX = "M"


class Library:
    """Shared registry of books, members, reservation queues and history.

    One instance is built at startup and handed to everything that needs it.
    All state lives behind a single re-entrant lock, and every mutation
    writes the full snapshot to disk before returning.

    Expected failures (unknown IDs, unavailable books) are reported through
    ``False``/``None`` results. Only the explicit durability operations
    (``flush``, ``export_to``, ``import_from``, ``restore_backup``) raise
    ``PersistenceError``; the automatic save after a mutation logs the error
    and keeps the in-memory change.
    """

    def __init__(
        self,
        persistence: Optional[DataPersistence] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = config or settings
        self.persistence = persistence or DataPersistence.from_settings(self.settings)
        self._clock = clock
        self._now = now
        self._lock = threading.RLock()

        self._books: Dict[str, Book] = {}
        self._members: Dict[str, Member] = {}
        self._history: Dict[str, List[HistoryEntry]] = {}
        self._reservations: Dict[str, Deque[str]] = {}
        self._next_book_number = 0
        self._next_member_number = 0
        self._dirty = False

        self._load()

    # ------------------------- Catalog ------------------------- #
    def add_book(self, title: str, author: str, isbn: str, category: Optional[str] = None) -> str:
        with self._lock:
            book_id = self._allocate_id(BOOK_ID_PREFIX, self._books, "_next_book_number")
            self._books[book_id] = Book(id=book_id, title=title, author=author, isbn=isbn, category=category)
            logger.info("Added book %s: %s", book_id, title)
            self._persist()
            return book_id

    def remove_book(self, book_id: str) -> bool:
        """Drop a book and its reservation queue. Returns False if it was unknown."""
        with self._lock:
            book = self._books.pop(book_id, None)
            if book is None:
                return False
            self._reservations.pop(book_id, None)
            logger.info("Removed book %s: %s", book_id, book.title)
            self._persist()
            return True

    def get_book(self, book_id: str) -> Optional[Book]:
        with self._lock:
            book = self._books.get(book_id)
            return book.copy() if book else None

    def list_books(self) -> List[Book]:
        with self._lock:
            return [book.copy() for book in self._books.values()]

    def search_books(self, query: str) -> List[Book]:
        """Case-insensitive match on title, author or ISBN."""
        text = (query or "").strip().lower()
        with self._lock:
            return [
                book.copy()
                for book in self._books.values()
                if not text
                or text in book.title.lower()
                or text in book.author.lower()
                or text in book.isbn.lower()
            ]

    def outstanding_books(self) -> List[Book]:
        with self._lock:
            return [book.copy() for book in self._books.values() if not book.available]

    # ------------------------- Members ------------------------- #
    def add_member(self, name: str, email: str, phone: Optional[str] = None) -> str:
        with self._lock:
            member_id = self._allocate_id(MEMBER_ID_PREFIX, self._members, "_next_member_number")
            self._members[member_id] = Member(
                id=member_id, name=name, email=email, phone=phone, membership_date=self._clock()
            )
            self._history.setdefault(member_id, [])
            logger.info("Registered member %s: %s", member_id, name)
            self._persist()
            return member_id

    def remove_member(self, member_id: str) -> bool:
        # Borrowed books and queued reservations are left untouched.
        with self._lock:
            member = self._members.pop(member_id, None)
            if member is None:
                return False
            if member.borrowed_books:
                logger.warning(
                    "Member %s removed while still holding %s", member_id, ", ".join(member.borrowed_books)
                )
            self._persist()
            return True

    def get_member(self, member_id: str) -> Optional[Member]:
        with self._lock:
            member = self._members.get(member_id)
            return member.copy() if member else None

    def list_members(self) -> List[Member]:
        with self._lock:
            return [member.copy() for member in self._members.values()]

    # ------------------------- Circulation ------------------------- #
    def checkout(self, book_id: str, member_id: str) -> bool:
        with self._lock:
            book = self._books.get(book_id)
            member = self._members.get(member_id)
            if book is None or member is None:
                logger.info("Checkout refused: unknown book %s or member %s", book_id, member_id)
                return False
            if not book.available:
                logger.info("Checkout refused: %s is already out to %s", book_id, book.current_borrower_id)
                return False

            due = self._clock() + timedelta(days=self.settings.loan_days)
            book.check_out(member_id, due)
            member.add_borrowed(book_id)
            self._record(HistoryKind.CHECKOUT, member_id, book)
            logger.info("Checked out %s to %s, due %s", book_id, member_id, due.isoformat())
            self._persist()
            return True

    def return_book(self, book_id: str) -> bool:
        with self._lock:
            book = self._books.get(book_id)
            if book is None or book.available:
                return False

            borrower_id = book.current_borrower_id
            book.check_in()
            member = self._members.get(borrower_id) if borrower_id else None
            if member is not None:
                member.remove_borrowed(book_id)
            if borrower_id is not None:
                self._record(HistoryKind.RETURN, borrower_id, book)
            logger.info("Returned %s from %s", book_id, borrower_id)
            self._persist()
            return True

    def renew(self, book_id: str) -> bool:
        """Push the due date of a borrowed book back by the renewal period."""
        with self._lock:
            book = self._books.get(book_id)
            if book is None or book.available or book.due_date is None:
                return False

            book.due_date = book.due_date + timedelta(days=self.settings.renewal_days)
            if book.current_borrower_id is not None:
                self._record(HistoryKind.RENEWAL, book.current_borrower_id, book)
            logger.info("Renewed %s, now due %s", book_id, book.due_date.isoformat())
            self._persist()
            return True

    # ------------------------- Reservations ------------------------- #
    def reserve(self, book_id: str, member_id: str) -> None:
        # No check for existing holds or duplicate entries.
        with self._lock:
            self._reservations.setdefault(book_id, deque()).append(member_id)
            logger.info("Member %s queued for %s", member_id, book_id)
            self._persist()

    def next_reservation(self, book_id: str) -> Optional[str]:
        with self._lock:
            queue = self._reservations.get(book_id)
            if not queue:
                return None
            member_id = queue.popleft()
            if not queue:
                del self._reservations[book_id]
            self._persist()
            return member_id

    def reservation_list(self, book_id: str) -> List[str]:
        with self._lock:
            return list(self._reservations.get(book_id, ()))

    # ------------------------- History ------------------------- #
    def history(self, member_id: str) -> List[str]:
        with self._lock:
            return [str(entry) for entry in self._history.get(member_id, ())]

    def history_entries(self, member_id: str) -> List[HistoryEntry]:
        with self._lock:
            return list(self._history.get(member_id, ()))

    # ------------------------- Reports ------------------------- #
    def due_soon(
        self, threshold_days: int, today: Optional[date] = None
    ) -> List[Tuple[Book, Optional[Member], int]]:
        """Borrowed books due within ``threshold_days`` (inclusive), soonest first."""
        today = today or self._clock()
        found: List[Tuple[Book, Optional[Member], int]] = []
        with self._lock:
            for book in self._books.values():
                if book.available or book.due_date is None:
                    continue
                days_left = (book.due_date - today).days
                if 0 <= days_left <= threshold_days:
                    member = self._members.get(book.current_borrower_id)
                    found.append((book.copy(), member.copy() if member else None, days_left))
        return sorted(found, key=lambda item: (item[2], item[0].id))

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            out = sum(1 for book in self._books.values() if not book.available)
            return {
                "total_books": len(self._books),
                "available_books": len(self._books) - out,
                "outstanding_books": out,
                "members": len(self._members),
                "reservations": sum(len(queue) for queue in self._reservations.values()),
            }

    # ------------------------- Persistence ------------------------- #
    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(
                books={book_id: book.copy() for book_id, book in self._books.items()},
                members={member_id: member.copy() for member_id, member in self._members.items()},
                history={member_id: list(entries) for member_id, entries in self._history.items()},
                reservations={book_id: list(queue) for book_id, queue in self._reservations.items()},
                next_book_number=self._next_book_number,
                next_member_number=self._next_member_number,
            )

    def flush(self) -> None:
        """Save now and raise ``PersistenceError`` if the write fails."""
        with self._lock:
            self.persistence.save(self.snapshot())
            self._dirty = False

    def export_to(self, path: PathLike) -> None:
        self.persistence.export_to(path, self.snapshot())

    def import_from(self, path: PathLike) -> None:
        """Replace the whole registry with the contents of ``path``."""
        snapshot = self.persistence.import_from(path)
        with self._lock:
            self._apply(snapshot)
            self._dirty = True
            self.flush()

    def list_backups(self) -> List[str]:
        return self.persistence.list_backups()

    def restore_backup(self, name: str) -> None:
        snapshot = self.persistence.restore_from_backup(name)
        with self._lock:
            self._apply(snapshot)
            self._dirty = True
            self.flush()

    def shutdown(self) -> bool:
        """Final flush if an earlier automatic save did not reach disk."""
        with self._lock:
            if not self._dirty:
                return True
            try:
                self.flush()
            except PersistenceError as exc:
                logger.error("Final save failed, unsaved changes are lost: %s", exc)
                return False
            logger.info("Pending changes saved on shutdown")
            return True

    def close(self) -> None:
        self.shutdown()

    # ------------------------- Internals ------------------------- #
    def _load(self) -> None:
        try:
            snapshot = self.persistence.load()
        except PersistenceError as exc:
            logger.warning("Could not load persisted data, starting with an empty library: %s", exc)
            snapshot = Snapshot()
        with self._lock:
            self._apply(snapshot)

    def _apply(self, snapshot: Snapshot) -> None:
        self._books = {book_id: book.copy() for book_id, book in snapshot.books.items()}
        self._members = {member_id: member.copy() for member_id, member in snapshot.members.items()}
        self._history = {member_id: list(entries) for member_id, entries in snapshot.history.items()}
        self._reservations = {book_id: deque(queue) for book_id, queue in snapshot.reservations.items()}
        self._next_book_number = snapshot.next_book_number
        self._next_member_number = snapshot.next_member_number

    def _allocate_id(self, prefix: str, existing: Dict[str, Any], counter_attr: str) -> str:
        number = getattr(self, counter_attr)
        while f"{prefix}{number}" in existing:
            number += 1
        setattr(self, counter_attr, number + 1)
        return f"{prefix}{number}"

    def _record(self, kind: HistoryKind, member_id: str, book: Book) -> None:
        entry = HistoryEntry(
            kind=kind, member_id=member_id, title=book.title, book_id=book.id, timestamp=self._now()
        )
        self._history.setdefault(member_id, []).append(entry)

    def _persist(self) -> bool:
        try:
            self.persistence.save(self.snapshot())
        except PersistenceError as exc:
            self._dirty = True
            logger.error("Automatic save failed, change kept in memory only: %s", exc)
            return False
        self._dirty = False
        return True
