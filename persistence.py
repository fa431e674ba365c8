"""
JSON snapshot storage for the library registry.

The whole registry is written as one document. Every save goes to a temporary
file first and is then moved over the live file, so a crash mid-write leaves
the previous good copy in place. Before the live file is replaced it is copied
into the backup directory; only the newest ``max_backups`` copies are kept.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from book import Book
from config import Settings, settings
from history import HistoryEntry
from member import Member

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

FIRST_ID_NUMBER = 100
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_ID_NUMBER = re.compile(r"(\d+)$")
_SAME_SECOND = re.compile(r"^_(\d{3})$")


class PersistenceError(Exception):
    """Reading or writing the data file failed."""


class CorruptDataError(PersistenceError):
    """The data file exists but does not hold a valid library document."""


def _as_list(value) -> list:
    if not isinstance(value, list):
        raise TypeError(f"expected a list, got {type(value).__name__}")
    return value


def _next_number(ids, floor: int = FIRST_ID_NUMBER) -> int:
    highest = floor - 1
    for raw in ids:
        match = _ID_NUMBER.search(str(raw))
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


@dataclass
class Snapshot:
    """Complete serializable state of the registry at one point in time."""

    books: Dict[str, Book] = field(default_factory=dict)
    members: Dict[str, Member] = field(default_factory=dict)
    history: Dict[str, List[HistoryEntry]] = field(default_factory=dict)
    reservations: Dict[str, List[str]] = field(default_factory=dict)
    next_book_number: int = FIRST_ID_NUMBER
    next_member_number: int = FIRST_ID_NUMBER

    def is_empty(self) -> bool:
        return not (self.books or self.members or self.history or self.reservations)

    def to_document(self) -> dict:
        return {
            "books": {book_id: book.to_dict() for book_id, book in self.books.items()},
            "members": {member_id: m.to_dict() for member_id, m in self.members.items()},
            "history": {
                member_id: [entry.to_dict() for entry in entries]
                for member_id, entries in self.history.items()
            },
            "reservations": {book_id: list(queue) for book_id, queue in self.reservations.items()},
            "counters": {"book": self.next_book_number, "member": self.next_member_number},
        }

    @staticmethod
    def from_document(doc: dict) -> "Snapshot":
        if not isinstance(doc, dict):
            raise CorruptDataError("Top-level JSON value must be an object")

        try:
            books = {
                str(key): Book.from_dict({**value, "id": key})
                for key, value in (doc.get("books") or {}).items()
            }
            members = {
                str(key): Member.from_dict({**value, "id": key})
                for key, value in (doc.get("members") or {}).items()
            }
            history = {
                str(member_id): [HistoryEntry.from_dict(item, str(member_id)) for item in _as_list(items)]
                for member_id, items in (doc.get("history") or {}).items()
            }
            reservations = {
                str(book_id): [str(member_id) for member_id in _as_list(queue)]
                for book_id, queue in (doc.get("reservations") or {}).items()
            }
            counters = doc.get("counters") or {}
            next_book = max(int(counters.get("book", 0)), _next_number(books))
            next_member = max(int(counters.get("member", 0)), _next_number(members))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise CorruptDataError(f"Invalid library document: {exc}") from exc

        return Snapshot(
            books=books,
            members=members,
            history=history,
            reservations=reservations,
            next_book_number=next_book,
            next_member_number=next_member,
        )


class DataPersistence:
    """Reads and writes library snapshots on the local file system."""

    def __init__(
        self,
        data_dir: Optional[PathLike] = None,
        *,
        data_file: Optional[str] = None,
        backup_dir: Optional[str] = None,
        max_backups: Optional[int] = None,
        auto_backup: Optional[bool] = None,
    ) -> None:
        self.data_directory = Path(data_dir if data_dir is not None else settings.data_dir)
        self.data_path = self.data_directory / (data_file or settings.data_file)
        self.backup_directory = self.data_directory / (backup_dir or settings.backup_dir)
        self.max_backups = settings.max_backups if max_backups is None else max_backups
        self.auto_backup = settings.auto_backup if auto_backup is None else auto_backup

        try:
            self._ensure_directories()
        except PersistenceError as exc:
            logger.warning("Could not initialize data directories: %s", exc)

    @classmethod
    def from_settings(cls, config: Settings) -> "DataPersistence":
        return cls(
            config.data_dir,
            data_file=config.data_file,
            backup_dir=config.backup_dir,
            max_backups=config.max_backups,
            auto_backup=config.auto_backup,
        )

    # ------------------------- Live file ------------------------- #
    def save(self, snapshot: Snapshot) -> None:
        """Write ``snapshot`` to the live file, rotating a backup first."""
        if snapshot is None:
            raise PersistenceError("Cannot save a missing snapshot")

        self._ensure_directories()
        if self.auto_backup and self.data_path.exists():
            self._create_backup()

        payload = self._encode(snapshot)
        temp_path = self.data_path.with_name(self.data_path.name + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(temp_path, self.data_path)
        except OSError as exc:
            raise PersistenceError(f"Failed to save data: {exc}") from exc

        logger.debug("Data saved to %s", self.data_path)
        self._cleanup_old_backups()

    def load(self) -> Snapshot:
        """Read the live file.

        A missing, empty or unreadable-as-JSON file yields an empty snapshot so
        startup never fails on bad data. Only OS-level read errors raise.
        """
        if not self.data_path.exists():
            logger.info("No data file at %s, starting with an empty library", self.data_path)
            return Snapshot()

        try:
            raw = self.data_path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Failed to read data file: {exc}") from exc

        if not raw.strip():
            logger.warning("Data file %s is empty, starting with an empty library", self.data_path)
            return Snapshot()

        try:
            snapshot = self._decode(raw)
        except CorruptDataError as exc:
            logger.warning("Data file %s is corrupted (%s), starting with an empty library", self.data_path, exc)
            return Snapshot()

        logger.info("Loaded %d books and %d members from %s", len(snapshot.books), len(snapshot.members), self.data_path)
        return snapshot

    def data_file_exists(self) -> bool:
        return self.data_path.exists()

    def data_file_size(self) -> int:
        try:
            return self.data_path.stat().st_size
        except OSError:
            return -1

    # ------------------------- Backups ------------------------- #
    def list_backups(self) -> List[str]:
        """Backup file names, newest first."""
        if not self.backup_directory.exists():
            return []
        try:
            names = [p.name for p in self.backup_directory.glob(self._backup_pattern()) if p.is_file()]
        except OSError as exc:
            raise PersistenceError(f"Failed to list backups: {exc}") from exc
        return sorted(names, reverse=True)

    def restore_from_backup(self, name: str) -> Snapshot:
        if not name or Path(name).name != name:
            raise PersistenceError(f"Invalid backup name: {name!r}")
        snapshot = self._read_required(self.backup_directory / name, "Backup")
        logger.info("Data restored from backup %s", name)
        return snapshot

    def _create_backup(self) -> None:
        stamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
        stem, suffix = self.data_path.stem, self.data_path.suffix
        base = f"{stem}_{stamp}"
        # Same-second saves get a zero-padded counter above any name already used
        # for this second, so name order stays chronological after cleanup.
        taken = [p.stem for p in self.backup_directory.glob(f"{base}*{suffix}")]
        if not taken:
            backup_path = self.backup_directory / f"{base}{suffix}"
        else:
            counters = [int(m.group(1)) for m in (_SAME_SECOND.match(name[len(base):]) for name in taken) if m]
            counter = max(counters, default=0) + 1
            backup_path = self.backup_directory / f"{base}_{counter:03d}{suffix}"

        try:
            shutil.copy2(self.data_path, backup_path)
        except OSError as exc:
            logger.warning("Failed to create backup %s: %s", backup_path.name, exc)
            return
        logger.debug("Backup created: %s", backup_path.name)

    def _cleanup_old_backups(self) -> None:
        try:
            backups = self.list_backups()
        except PersistenceError as exc:
            logger.warning("Failed to clean up old backups: %s", exc)
            return

        for name in backups[self.max_backups:]:
            try:
                (self.backup_directory / name).unlink()
            except OSError as exc:
                logger.warning("Failed to delete old backup %s: %s", name, exc)
                continue
            logger.debug("Deleted old backup: %s", name)

    def _backup_pattern(self) -> str:
        return f"{self.data_path.stem}_*{self.data_path.suffix}"

    # ------------------------- Import / export ------------------------- #
    def export_to(self, path: PathLike, snapshot: Snapshot) -> None:
        target = Path(path)
        try:
            target.write_text(self._encode(snapshot), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Failed to export data: {exc}") from exc
        logger.info("Data exported to %s", target)

    def import_from(self, path: PathLike) -> Snapshot:
        snapshot = self._read_required(Path(path), "Import")
        logger.info("Data imported from %s", path)
        return snapshot

    # ------------------------- Codec ------------------------- #
    def _read_required(self, path: Path, label: str) -> Snapshot:
        if not path.exists():
            raise PersistenceError(f"{label} file not found: {path.name}")
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Failed to read {label.lower()} file: {exc}") from exc
        return self._decode(raw)

    @staticmethod
    def _encode(snapshot: Snapshot) -> str:
        return json.dumps(snapshot.to_document(), indent=2, ensure_ascii=False)

    @staticmethod
    def _decode(raw: bytes) -> Snapshot:
        try:
            doc = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise CorruptDataError(f"Not UTF-8 text: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise CorruptDataError(f"Invalid JSON: {exc}") from exc
        except RecursionError as exc:
            raise CorruptDataError("JSON nested too deeply") from exc
        return Snapshot.from_document(doc)

    def _ensure_directories(self) -> None:
        try:
            self.data_directory.mkdir(parents=True, exist_ok=True)
            self.backup_directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Could not create data directories: {exc}") from exc
