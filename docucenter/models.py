from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

# Allowed values for the string "enum" fields.
LOAN_STATUSES = ("active", "overdue", "returned")
BOOK_BORROWER_TYPES = ("participant", "other_reader")
MATERIAL_BORROWER_TYPES = ("participant", "entity")
READER_TYPES = ("parent", "instructor", "staff", "other")
MATERIAL_CONDITIONS = ("excellent", "good", "fair", "poor")
ISSUE_TYPES = ("not_returned", "damaged", "torn", "lost")
ISSUE_STATUSES = ("open", "resolved", "written_off")
READING_TYPES = ("assignment", "research", "normal")
TASK_PRIORITIES = ("low", "medium", "high")
TASK_STATUSES = ("pending", "in_progress", "completed")
INVENTORY_TYPES = ("full", "partial")
INVENTORY_STATUSES = ("in_progress", "completed", "cancelled")
INVENTORY_ITEM_STATUSES = ("pending", "checked", "discrepancy")
GENDERS = ("M", "F")


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class Record:
    """Shared serialization for the entity dataclasses.

    ``DATE_FIELDS`` are converted to and from ISO strings. ``DERIVED_FIELDS`` are
    computed by the store on every read and are never persisted.
    """

    DATE_FIELDS: Tuple[str, ...] = ()
    DERIVED_FIELDS: Tuple[str, ...] = ()

    def to_dict(self, include_derived: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        for name in self.DATE_FIELDS:
            if data.get(name) is not None:
                data[name] = data[name].isoformat()
        if not include_derived:
            for name in self.DERIVED_FIELDS:
                data.pop(name, None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and k not in cls.DERIVED_FIELDS}
        for name in cls.DATE_FIELDS:
            if name in values:
                values[name] = parse_date(values[name])
        return cls(**values)


@dataclass(frozen=True)
class Category(Record):
    id: str
    name: str
    description: str = ""
    color: str = ""


@dataclass(frozen=True)
class Book(Record):
    DATE_FIELDS = ("created_at",)
    DERIVED_FIELDS = ("available_copies",)

    id: str
    title: str
    author: str = ""
    isbn: str = ""
    category_id: Optional[str] = None
    quantity: int = 1
    cover_url: str = ""
    created_at: Optional[date] = None
    available_copies: int = 0


@dataclass(frozen=True)
class BookIssue(Record):
    DATE_FIELDS = ("report_date", "resolved_at")

    id: str
    book_id: str
    issue_type: str = "damaged"
    quantity: int = 1
    description: str = ""
    borrower_name: Optional[str] = None
    loan_id: Optional[str] = None
    report_date: Optional[date] = None
    status: str = "open"
    resolution_notes: Optional[str] = None
    resolved_at: Optional[date] = None


@dataclass(frozen=True)
class SchoolClass(Record):
    id: str
    name: str
    age_range: str = ""
    monitor_name: Optional[str] = None


@dataclass(frozen=True)
class Participant(Record):
    id: str
    number: str
    first_name: str
    last_name: str
    class_id: Optional[str] = None
    age: Optional[int] = None
    age_range: Optional[str] = None
    gender: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class OtherReader(Record):
    id: str
    number: str
    first_name: str
    last_name: str
    reader_type: str = "other"
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Entity(Record):
    """An organization that borrows materials."""

    id: str
    name: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Material(Record):
    DERIVED_FIELDS = ("available_quantity",)

    id: str
    name: str
    quantity: int = 1
    serial_number: Optional[str] = None
    condition: str = "good"
    notes: Optional[str] = None
    available_quantity: int = 0


@dataclass(frozen=True)
class Loan(Record):
    DATE_FIELDS = ("loan_date", "due_date", "return_date")
    DERIVED_FIELDS = ("status",)

    id: str
    book_id: str
    borrower_type: str
    borrower_id: Optional[str]
    borrower_name: str
    loan_date: date
    due_date: date
    return_date: Optional[date] = None
    status: str = "active"


@dataclass(frozen=True)
class MaterialLoan(Record):
    DATE_FIELDS = ("loan_date", "due_date", "return_date")
    DERIVED_FIELDS = ("status",)

    id: str
    material_id: str
    borrower_type: str
    borrower_id: str
    borrower_name: str
    quantity: int
    loan_date: date
    due_date: date
    return_date: Optional[date] = None
    notes: Optional[str] = None
    status: str = "active"


@dataclass(frozen=True)
class ReadingSession(Record):
    DATE_FIELDS = ("date",)

    id: str
    participant_id: str
    book_id: str
    date: date
    reading_type: str = "normal"
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Task(Record):
    DATE_FIELDS = ("due_date",)

    id: str
    title: str
    description: Optional[str] = None
    priority: str = "medium"
    status: str = "pending"
    due_date: Optional[date] = None


@dataclass(frozen=True)
class InventoryItem(Record):
    book_id: str
    expected_quantity: int
    found_quantity: Optional[int] = None
    status: str = "pending"
    notes: Optional[str] = None


@dataclass(frozen=True)
class InventorySession(Record):
    DATE_FIELDS = ("start_date", "end_date")

    id: str
    name: str
    session_type: str = "full"
    status: str = "in_progress"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    items: Tuple[InventoryItem, ...] = ()

    @property
    def checked_count(self) -> int:
        return sum(1 for item in self.items if item.status != "pending")

    @property
    def discrepancy_count(self) -> int:
        return sum(1 for item in self.items if item.status == "discrepancy")

    def to_dict(self, include_derived: bool = True) -> Dict[str, Any]:
        data = super().to_dict(include_derived)
        data["items"] = [item.to_dict() for item in self.items]
        if include_derived:
            data["total_books"] = len(self.items)
            data["checked_books"] = self.checked_count
            data["discrepancy_count"] = self.discrepancy_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InventorySession":
        items = tuple(InventoryItem.from_dict(item) for item in data.get("items") or ())
        session = super().from_dict({k: v for k, v in data.items() if k != "items"})
        return replace(session, items=items)


@dataclass(frozen=True)
class ActivityRecord:
    """One row of the dashboard's recent activity feed."""

    kind: str
    record_id: str
    title: str
    borrower_name: str
    loan_date: date
    status: str
    return_date: Optional[date] = None

    @property
    def event_date(self) -> date:
        return self.return_date or self.loan_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "record_id": self.record_id,
            "title": self.title,
            "borrower_name": self.borrower_name,
            "loan_date": self.loan_date.isoformat(),
            "status": self.status,
            "return_date": self.return_date.isoformat() if self.return_date else None,
        }


@dataclass(frozen=True)
class LibraryStats:
    total_books: int
    available_books: int
    active_loans: int
    overdue_loans: int
    total_participants: int
    books_this_week: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class ChangeEvent:
    """Published to store subscribers after a successful mutation."""

    action: str
    kind: str
    entity_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditEntry:
    """One line of the audit trail, written for every published change."""

    id: str
    timestamp: datetime
    action: str
    kind: str
    entity_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "kind": self.kind,
            "entity_id": self.entity_id,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            action=data["action"],
            kind=data["kind"],
            entity_id=data.get("entity_id"),
            details=data.get("details") or {},
        )
