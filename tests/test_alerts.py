import threading
from datetime import timedelta

from alerts import DueDateAlertScanner
from conftest import TODAY


def test_scan_reports_books_inside_window(lib):
    member_id = lib.add_member("Paul", "paul@example.com")
    lib.add_book("On Shelf", "Author", "ISBN")
    book_id = lib.add_book("Dune", "Herbert", "ISBN1")
    lib.checkout(book_id, member_id)
    scanner = DueDateAlertScanner(lib, threshold_days=3)

    due = TODAY + timedelta(days=14)
    for days_left in range(0, 4):
        [alert] = scanner.scan_once(today=due - timedelta(days=days_left))
        assert alert.book_id == book_id
        assert alert.member_name == "Paul"
        assert alert.days_left == days_left
        assert str(alert) == f"ALERT: Dune is due in {days_left} days for Paul"


def test_scan_ignores_books_outside_window(lib):
    member_id = lib.add_member("Paul", "paul@example.com")
    book_id = lib.add_book("Dune", "Herbert", "ISBN1")
    lib.checkout(book_id, member_id)
    scanner = DueDateAlertScanner(lib, threshold_days=3)
    due = TODAY + timedelta(days=14)

    assert scanner.scan_once(today=due - timedelta(days=4)) == []
    # Already overdue is outside the 0..threshold window
    assert scanner.scan_once(today=due + timedelta(days=1)) == []


def test_scan_repeats_alerts_and_calls_callback(lib):
    member_id = lib.add_member("Paul", "paul@example.com")
    book_id = lib.add_book("Dune", "Herbert", "ISBN1")
    lib.checkout(book_id, member_id)
    seen = []
    scanner = DueDateAlertScanner(lib, threshold_days=3, on_alert=seen.append)
    today = TODAY + timedelta(days=13)

    scanner.scan_once(today=today)
    scanner.scan_once(today=today)

    assert [a.book_id for a in seen] == [book_id, book_id]


def test_scan_names_removed_member_by_id(lib):
    member_id = lib.add_member("Paul", "paul@example.com")
    book_id = lib.add_book("Dune", "Herbert", "ISBN1")
    lib.checkout(book_id, member_id)
    lib.remove_member(member_id)

    [alert] = DueDateAlertScanner(lib, threshold_days=3).scan_once(today=TODAY + timedelta(days=14))
    assert alert.member_name is None
    assert alert.borrower == member_id


def test_scan_uses_configured_threshold(lib):
    member_id = lib.add_member("Paul", "paul@example.com")
    book_id = lib.add_book("Dune", "Herbert", "ISBN1")
    lib.checkout(book_id, member_id)

    scanner = DueDateAlertScanner(lib)
    assert scanner.threshold_days == 3
    assert scanner.interval_seconds == 3600
    assert scanner.scan_once(today=TODAY + timedelta(days=10)) == []
    assert len(scanner.scan_once(today=TODAY + timedelta(days=11))) == 1


def test_start_runs_immediately_and_stop_halts(lib):
    member_id = lib.add_member("Paul", "paul@example.com")
    book_id = lib.add_book("Dune", "Herbert", "ISBN1")
    lib.checkout(book_id, member_id)
    lib._clock = lambda: TODAY + timedelta(days=12)

    fired = threading.Event()
    scanner = DueDateAlertScanner(lib, threshold_days=3, interval_seconds=60, on_alert=lambda a: fired.set())
    scanner.start()
    try:
        assert fired.wait(5)
        assert scanner.running
    finally:
        scanner.stop(timeout=5)

    assert not scanner.running
    # Stopping leaves the registry alone
    assert lib.get_book(book_id).current_borrower_id == member_id


def test_stop_before_start_is_safe(lib):
    scanner = DueDateAlertScanner(lib)
    scanner.stop()
    scanner.stop()
    assert not scanner.running


def test_scanner_keeps_running_after_callback_error(lib):
    member_id = lib.add_member("Paul", "paul@example.com")
    book_id = lib.add_book("Dune", "Herbert", "ISBN1")
    lib.checkout(book_id, member_id)
    lib._clock = lambda: TODAY + timedelta(days=12)
    calls = []
    second_pass = threading.Event()

    def flaky(alert):
        calls.append(alert)
        if len(calls) == 1:
            raise RuntimeError("display closed")
        second_pass.set()

    scanner = DueDateAlertScanner(lib, threshold_days=3, interval_seconds=0.05, on_alert=flaky)
    scanner.start()
    try:
        assert second_pass.wait(5)
    finally:
        scanner.stop(timeout=5)
