"""Periodic due-date alerts for borrowed books."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from library import Library

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DueDateAlert:
    book_id: str
    title: str
    member_id: str
    member_name: Optional[str]
    due_date: date
    days_left: int

    @property
    def borrower(self) -> str:
        return self.member_name or self.member_id

    def __str__(self) -> str:
        return f"ALERT: {self.title} is due in {self.days_left} days for {self.borrower}"


class DueDateAlertScanner:
    """Scans the registry on a background thread and reports books due soon.

    Nothing is remembered between runs: a book still inside the window is
    reported again on the next pass.
    """

    def __init__(
        self,
        library: Library,
        threshold_days: Optional[int] = None,
        interval_seconds: Optional[float] = None,
        on_alert: Optional[Callable[[DueDateAlert], None]] = None,
    ) -> None:
        self.library = library
        self.threshold_days = library.settings.alert_days_before if threshold_days is None else threshold_days
        self.interval_seconds = (
            library.settings.alert_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.on_alert = on_alert
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def scan_once(self, today: Optional[date] = None) -> List[DueDateAlert]:
        alerts = []
        for book, member, days_left in self.library.due_soon(self.threshold_days, today):
            alert = DueDateAlert(
                book_id=book.id,
                title=book.title,
                member_id=book.current_borrower_id or "",
                member_name=member.name if member else None,
                due_date=book.due_date,
                days_left=days_left,
            )
            logger.warning("%s", alert)
            if self.on_alert is not None:
                self.on_alert(alert)
            alerts.append(alert)
        return alerts

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="due-date-alerts", daemon=True)
        self._thread.start()
        logger.info("Due-date alerts every %ss for books due within %d days", self.interval_seconds, self.threshold_days)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.scan_once()
            except Exception:
                logger.exception("Due-date scan failed")
            if self._stop_event.wait(self.interval_seconds):
                break
