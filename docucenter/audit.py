"""Audit trail of store changes.

:class:`AuditLog` subscribes to a :class:`~docucenter.store.LibraryStore` and
records one :class:`~docucenter.models.AuditEntry` per published change. With a
``db_file`` the trail is also appended to the ``audit_log`` table and reloaded
on start.
"""

import logging
import math
import sqlite3
import threading
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .collection import create_id
from .database import append_audit_entry, initialize_database, load_audit_entries
from .models import AuditEntry, ChangeEvent, parse_date

logger = logging.getLogger(__name__)


def _counts(values) -> List[Dict[str, Any]]:
    return [{"value": value, "count": count} for value, count in Counter(values).most_common()]


class AuditLog:
    def __init__(self, db_file: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db_file = db_file
        self.failures = 0
        self._clock = clock or datetime.now
        self._lock = threading.RLock()
        self._entries: List[AuditEntry] = []
        if db_file:
            initialize_database(db_file)
            self._entries = [AuditEntry.from_dict(row) for row in load_audit_entries(db_file)]

    def __len__(self) -> int:
        return len(self._entries)

    def __call__(self, event: ChangeEvent) -> None:
        entry = AuditEntry(
            id=create_id(),
            timestamp=self._clock(),
            action=event.action,
            kind=event.kind,
            entity_id=event.entity_id,
            details=dict(event.extra),
        )
        with self._lock:
            self._entries.append(entry)
        if self.db_file:
            try:
                append_audit_entry(entry.to_dict(), self.db_file)
            except sqlite3.Error as exc:
                self.failures += 1
                logger.warning("Could not write audit entry %s %s to %s: %s", entry.action, entry.kind, self.db_file, exc)

    def entries(
        self,
        kind: Optional[str] = None,
        action: Optional[str] = None,
        start: Any = None,
        end: Any = None,
    ) -> List[AuditEntry]:
        """Matching entries, newest first. ``start`` and ``end`` are inclusive days."""
        start, end = parse_date(start), parse_date(end)
        with self._lock:
            entries = list(reversed(self._entries))
        matched = [
            entry
            for entry in entries
            if (kind is None or entry.kind == kind)
            and (action is None or entry.action == action)
            and (start is None or entry.timestamp.date() >= start)
            and (end is None or entry.timestamp.date() <= end)
        ]
        return sorted(matched, key=lambda entry: entry.timestamp, reverse=True)

    def page(self, page: int = 1, page_size: int = 100, **filters: Any) -> Dict[str, Any]:
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be >= 1.")
        entries = self.entries(**filters)
        offset = (page - 1) * page_size
        return {
            "data": [entry.to_dict() for entry in entries[offset:offset + page_size]],
            "total": len(entries),
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(len(entries) / page_size),
        }

    def stats(self, days: int = 30) -> Dict[str, Any]:
        """Totals by action and kind, plus entries per day for the last ``days`` days."""
        with self._lock:
            entries = list(self._entries)
        since: date = self._clock().date() - timedelta(days=days)
        per_day = Counter(entry.timestamp.date() for entry in entries if entry.timestamp.date() >= since)
        return {
            "total": len(entries),
            "by_action": _counts(entry.action for entry in entries),
            "by_kind": _counts(entry.kind for entry in entries),
            "recent_activity": [
                {"date": day.isoformat(), "count": per_day[day]} for day in sorted(per_day, reverse=True)
            ],
        }
