"""Report aggregations for books, loans, participants and classes.

Every report reads the store under its lock, so the figures come from one
consistent state. ``start``/``end`` bound the activity counted (loan dates and
reading-session dates), both inclusive; totals of stock and people ignore them.
"""

from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional

from .models import parse_date
from .store import LibraryStore


def _window(start: Any, end: Any):
    start, end = parse_date(start), parse_date(end)

    def contains(day: date) -> bool:
        return (start is None or day >= start) and (end is None or day <= end)

    return contains


def _top(rows: List[Dict[str, Any]], key: str, limit: int) -> List[Dict[str, Any]]:
    return sorted(rows, key=lambda row: row[key], reverse=True)[:limit]


def _grouped(values) -> List[Dict[str, Any]]:
    counts = Counter(values)
    # Unset values sort first, like SQL NULLs
    return [{"value": value, "count": counts[value]} for value in sorted(counts, key=lambda v: (v is not None, v or ""))]


def book_report(store: LibraryStore, start: Any = None, end: Any = None, limit: int = 10) -> Dict[str, Any]:
    in_window = _window(start, end)
    with store.lock:
        books = store.list_books()
        categories = store.list_categories()
        loans = [loan for loan in store.list_loans() if in_window(loan.loan_date)]
        sessions = [s for s in store.list_reading_sessions() if in_window(s.date)]

    by_id = {category.id: category for category in categories}
    loan_counts = Counter(loan.book_id for loan in loans)
    read_counts = Counter(session.book_id for session in sessions)
    shelf_counts = Counter(book.category_id for book in books)

    most_loaned = []
    most_read = []
    for book in books:
        category = by_id.get(book.category_id)
        most_loaned.append({
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "category_name": category.name if category else None,
            "category_color": category.color if category else None,
            "loan_count": loan_counts[book.id],
        })
        most_read.append({"id": book.id, "title": book.title, "author": book.author, "read_count": read_counts[book.id]})

    return {
        "most_loaned": _top(most_loaned, "loan_count", limit),
        "most_read": _top(most_read, "read_count", limit),
        "category_distribution": _top(
            [
                {"id": c.id, "name": c.name, "color": c.color, "book_count": shelf_counts[c.id]}
                for c in categories
            ],
            "book_count",
            len(categories),
        ),
        "stats": {
            "total_titles": len(books),
            "total_copies": sum(book.quantity for book in books),
            "available_copies": sum(book.available_copies for book in books),
        },
    }


def loan_report(store: LibraryStore, start: Any = None, end: Any = None, limit: int = 10) -> Dict[str, Any]:
    in_window = _window(start, end)
    with store.lock:
        all_loans = store.list_loans()
    loans = [loan for loan in all_loans if in_window(loan.loan_date)]
    returned = [loan for loan in loans if loan.status == "returned"]

    borrowers: Dict[tuple, Dict[str, Any]] = {}
    for loan in loans:
        # Walk-in loans have no borrower id; group them by name
        key = (loan.borrower_type, loan.borrower_id or loan.borrower_name)
        row = borrowers.setdefault(
            key, {"borrower_name": loan.borrower_name, "borrower_type": loan.borrower_type, "loan_count": 0}
        )
        row["loan_count"] += 1

    months = Counter(loan.loan_date.strftime("%Y-%m") for loan in loans)
    durations = [(loan.return_date - loan.loan_date).days for loan in returned]

    return {
        "stats": {
            "total": len(loans),
            "active": sum(1 for loan in all_loans if loan.status == "active"),
            "overdue": sum(1 for loan in all_loans if loan.status == "overdue"),
            "returned": len(returned),
            "avg_duration_days": round(sum(durations) / len(durations), 1) if durations else None,
        },
        "top_borrowers": _top(list(borrowers.values()), "loan_count", limit),
        "loans_by_month": [{"month": month, "count": months[month]} for month in sorted(months, reverse=True)[:12]],
    }


def participant_report(
    store: LibraryStore, start: Any = None, end: Any = None, limit: int = 10, inactive_limit: int = 20
) -> Dict[str, Any]:
    in_window = _window(start, end)
    with store.lock:
        participants = store.list_participants()
        sessions = store.list_reading_sessions()
        loans = store.list_loans()

    session_counts = Counter(s.participant_id for s in sessions if in_window(s.date))
    readers = {s.participant_id for s in sessions}
    borrowers = {loan.borrower_id for loan in loans if loan.borrower_type == "participant"}

    top_readers = [
        {"id": p.id, "name": p.full_name, "number": p.number, "session_count": session_counts[p.id]}
        for p in participants
    ]
    inactive = [
        {"id": p.id, "name": p.full_name, "number": p.number}
        for p in participants
        if p.id not in readers and p.id not in borrowers
    ]

    return {
        "stats": {"total": len(participants)},
        "by_age_range": _grouped(p.age_range for p in participants),
        "by_gender": _grouped(p.gender for p in participants),
        "top_readers": _top(top_readers, "session_count", limit),
        "inactive_participants": inactive[:inactive_limit],
    }


def class_report(store: LibraryStore, start: Any = None, end: Any = None) -> Dict[str, Any]:
    """Per-class activity, counting reading sessions and book loans of each class's current participants."""
    in_window = _window(start, end)
    with store.lock:
        classes = store.list_school_classes()
        participants = store.list_participants()
        sessions = [s for s in store.list_reading_sessions() if in_window(s.date)]
        loans = [loan for loan in store.list_loans() if in_window(loan.loan_date)]

    class_of = {p.id: p.class_id for p in participants}
    members = Counter(p.class_id for p in participants)
    session_counts = Counter(class_of.get(s.participant_id) for s in sessions)
    loan_counts = Counter(
        class_of.get(loan.borrower_id) for loan in loans if loan.borrower_type == "participant"
    )

    rows = [
        {
            "id": c.id,
            "name": c.name,
            "age_range": c.age_range,
            "monitor_name": c.monitor_name,
            "participant_count": members[c.id],
            "session_count": session_counts[c.id],
            "loan_count": loan_counts[c.id],
        }
        for c in classes
    ]
    return {
        "stats": {"total_classes": len(classes), "total_sessions": len(sessions)},
        "classes": _top(rows, "session_count", len(rows)),
    }


REPORTS = {
    "books": book_report,
    "loans": loan_report,
    "participants": participant_report,
    "classes": class_report,
}


def build_report(name: str, store: LibraryStore, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, Any]:
    try:
        report = REPORTS[name]
    except KeyError:
        raise ValueError(f"Unknown report {name!r}. Allowed: {', '.join(REPORTS)}") from None
    return report(store, start, end)
