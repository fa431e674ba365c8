import json
from datetime import date, datetime

import pytest

from book import Book
from history import HistoryEntry, HistoryKind
from member import Member
from persistence import CorruptDataError, DataPersistence, PersistenceError, Snapshot


@pytest.fixture
def sample_snapshot():
    dune = Book(id="B100", title="Dune", author="Herbert", isbn="ISBN1")
    emma = Book(id="B101", title="Emma", author="Austen", isbn="ISBN2", category="Classics")
    emma.check_out("M100", date(2026, 11, 1))
    paul = Member(id="M100", name="Paul", email="paul@example.com", membership_date=date(2026, 1, 5))
    paul.add_borrowed("B101")
    entry = HistoryEntry(
        kind=HistoryKind.CHECKOUT,
        member_id="M100",
        title="Emma",
        book_id="B101",
        timestamp=datetime(2026, 10, 18, 9, 30, 15, 120000),
    )
    return Snapshot(
        books={"B100": dune, "B101": emma},
        members={"M100": paul},
        history={"M100": [entry]},
        reservations={"B101": ["M101", "M102"]},
        next_book_number=102,
        next_member_number=103,
    )


@pytest.fixture
def gateway(tmp_path):
    return DataPersistence(tmp_path / "data", max_backups=5, auto_backup=True)


def test_save_then_load_round_trips(gateway, sample_snapshot):
    gateway.save(sample_snapshot)
    assert gateway.load() == sample_snapshot


def test_document_uses_named_fields(gateway, sample_snapshot):
    gateway.save(sample_snapshot)
    doc = json.loads(gateway.data_path.read_text(encoding="utf-8"))

    assert set(doc) >= {"books", "members", "history", "reservations"}
    assert doc["books"]["B101"]["currentBorrowerId"] == "M100"
    assert doc["books"]["B101"]["dueDate"] == "2026-11-01"
    assert doc["books"]["B100"]["dueDate"] is None
    assert doc["members"]["M100"]["borrowedBooks"] == ["B101"]
    assert doc["reservations"]["B101"] == ["M101", "M102"]


def test_save_leaves_no_temp_file(gateway, sample_snapshot):
    gateway.save(sample_snapshot)
    assert not gateway.data_path.with_name(gateway.data_path.name + ".tmp").exists()


def test_load_missing_file_returns_empty(gateway):
    assert gateway.load() == Snapshot()


@pytest.mark.parametrize("content", ["", "   \n", "{not json", "[1, 2, 3]", '{"books": {"B1": "oops"}}'])
def test_load_bad_file_returns_empty(gateway, content):
    gateway.data_path.write_text(content, encoding="utf-8")
    assert gateway.load().is_empty()


@pytest.mark.parametrize(
    "raw",
    [b'{"books": {"B1": {"title": "\xff\xfe"}}}', b"\xff\xfe{", b"[" * 100000],
)
def test_load_undecodable_file_returns_empty(gateway, raw):
    gateway.data_path.write_bytes(raw)
    assert gateway.load().is_empty()


def test_load_derives_availability_from_borrower(gateway):
    doc = {
        "books": {
            "B1": {"title": "Dune", "available": True, "currentBorrowerId": "M1", "dueDate": "2026-11-01"},
            "B2": {"title": "Emma", "available": "false", "dueDate": "2026-11-01"},
        },
    }
    gateway.data_path.write_text(json.dumps(doc), encoding="utf-8")

    books = gateway.load().books
    assert books["B1"].available is False
    assert books["B1"].current_borrower_id == "M1"
    assert books["B2"].available is True
    assert books["B2"].due_date is None


def test_record_key_wins_over_embedded_id(gateway):
    doc = {
        "books": {"B1": {"id": "B9", "title": "Dune"}},
        "members": {"M1": {"id": "M9", "name": "Paul"}},
    }
    gateway.data_path.write_text(json.dumps(doc), encoding="utf-8")

    snapshot = gateway.load()
    assert snapshot.books["B1"].id == "B1"
    assert snapshot.members["M1"].id == "M1"


@pytest.mark.parametrize("member", [{"name": "Paul", "borrowedBooks": "B100"}, {"name": "Paul", "active": "no"}])
def test_load_rejects_malformed_member(gateway, member):
    gateway.data_path.write_text(json.dumps({"members": {"M1": member}}), encoding="utf-8")
    assert gateway.load().is_empty()


def test_load_tolerates_unknown_and_missing_fields(gateway):
    doc = {
        "books": {"B7": {"title": "Dune", "author": "Herbert", "shelf": "A3"}},
        "members": {"M9": {"name": "Paul"}},
        "history": {"M9": ["Checked out Dune"]},
        "extra": True,
    }
    gateway.data_path.write_text(json.dumps(doc), encoding="utf-8")

    snapshot = gateway.load()

    book = snapshot.books["B7"]
    assert book.id == "B7"
    assert book.available is True
    assert book.isbn == ""
    assert snapshot.members["M9"].borrowed_books == []
    assert snapshot.reservations == {}
    # Plain text history lines from older files are kept verbatim
    assert [str(e) for e in snapshot.history["M9"]] == ["Checked out Dune"]
    assert snapshot.next_book_number == 100
    assert snapshot.next_member_number == 100


def test_counters_never_fall_below_existing_ids(gateway):
    doc = {"books": {"B150": {"title": "Dune"}}, "members": {}, "counters": {"book": 120}}
    gateway.data_path.write_text(json.dumps(doc), encoding="utf-8")

    assert gateway.load().next_book_number == 151


def test_backup_retention_keeps_five_newest(gateway, sample_snapshot):
    for _ in range(8):
        gateway.save(sample_snapshot)

    backups = gateway.list_backups()
    assert len(backups) == 5
    assert backups == sorted(backups, reverse=True)
    assert all(name.startswith("library_data_") and name.endswith(".json") for name in backups)


def test_six_saves_leave_exactly_five_backups(gateway, sample_snapshot):
    seen = []
    for _ in range(6):
        gateway.save(sample_snapshot)
        seen = sorted(set(seen) | set(gateway.list_backups()), reverse=True)

    # First save has no live file to copy, the next five each add one backup
    assert gateway.list_backups() == seen[:5]
    assert len(gateway.list_backups()) == 5


def test_no_backups_when_disabled(tmp_path, sample_snapshot):
    gateway = DataPersistence(tmp_path / "data", auto_backup=False)
    gateway.save(sample_snapshot)
    gateway.save(sample_snapshot)
    assert gateway.list_backups() == []


def test_backup_failure_does_not_abort_save(gateway, sample_snapshot, monkeypatch):
    gateway.save(sample_snapshot)

    def fail_copy(src, dst):
        raise OSError("no space left")

    monkeypatch.setattr("persistence.shutil.copy2", fail_copy)
    sample_snapshot.reservations["B100"] = ["M200"]
    gateway.save(sample_snapshot)

    assert gateway.load().reservations["B100"] == ["M200"]
    assert gateway.list_backups() == []


def test_restore_from_backup(gateway, sample_snapshot):
    gateway.save(sample_snapshot)
    changed = Snapshot(books={}, next_book_number=102, next_member_number=103)
    gateway.save(changed)

    [name] = gateway.list_backups()
    assert gateway.restore_from_backup(name) == sample_snapshot


def test_restore_missing_backup_raises(gateway):
    with pytest.raises(PersistenceError, match="not found"):
        gateway.restore_from_backup("library_data_20000101_000000.json")


def test_restore_corrupt_backup_raises(gateway):
    (gateway.backup_directory / "library_data_20000101_000000.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(CorruptDataError):
        gateway.restore_from_backup("library_data_20000101_000000.json")


def test_restore_undecodable_backup_raises(gateway, tmp_path):
    (gateway.backup_directory / "library_data_20000101_000000.json").write_bytes(b"\xff\xfe{")
    with pytest.raises(CorruptDataError):
        gateway.restore_from_backup("library_data_20000101_000000.json")

    source = tmp_path / "latin1.json"
    source.write_bytes(b'{"books": {"B1": {"title": "Caf\xe9"}}}')
    with pytest.raises(CorruptDataError):
        gateway.import_from(source)


def test_restore_rejects_paths(gateway):
    with pytest.raises(PersistenceError):
        gateway.restore_from_backup("../library_data.json")


def test_export_and_import(gateway, sample_snapshot, tmp_path):
    target = tmp_path / "export.json"
    gateway.export_to(target, sample_snapshot)

    assert gateway.import_from(target) == sample_snapshot


def test_import_missing_or_corrupt_raises(gateway, tmp_path):
    with pytest.raises(PersistenceError):
        gateway.import_from(tmp_path / "nope.json")

    bad = tmp_path / "bad.json"
    bad.write_text("", encoding="utf-8")
    with pytest.raises(CorruptDataError):
        gateway.import_from(bad)


def test_export_to_missing_directory_raises(gateway, sample_snapshot, tmp_path):
    with pytest.raises(PersistenceError):
        gateway.export_to(tmp_path / "missing" / "export.json", sample_snapshot)


def test_data_file_info(gateway, sample_snapshot):
    assert gateway.data_file_exists() is False
    assert gateway.data_file_size() == -1

    gateway.save(sample_snapshot)
    assert gateway.data_file_exists() is True
    assert gateway.data_file_size() > 0
