import logging
import threading
from dataclasses import fields, replace
from datetime import date, timedelta
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .collection import Collection, create_id
from .errors import AlreadyReturned, DuplicateKey, HasActiveDependents, InvalidTransition, NotFound
from .models import (
    BOOK_BORROWER_TYPES,
    GENDERS,
    INVENTORY_TYPES,
    ISSUE_STATUSES,
    ISSUE_TYPES,
    LOAN_STATUSES,
    MATERIAL_BORROWER_TYPES,
    MATERIAL_CONDITIONS,
    READER_TYPES,
    READING_TYPES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    ActivityRecord,
    Book,
    BookIssue,
    Category,
    ChangeEvent,
    Entity,
    InventoryItem,
    InventorySession,
    LibraryStats,
    Loan,
    Material,
    MaterialLoan,
    OtherReader,
    Participant,
    ReadingSession,
    Record,
    SchoolClass,
    Task,
    parse_date,
)

logger = logging.getLogger(__name__)

# Entity kind -> record class. Order is the order collections are exported in.
KINDS: Dict[str, type] = {
    "category": Category,
    "book": Book,
    "book_issue": BookIssue,
    "school_class": SchoolClass,
    "participant": Participant,
    "other_reader": OtherReader,
    "entity": Entity,
    "material": Material,
    "loan": Loan,
    "material_loan": MaterialLoan,
    "reading_session": ReadingSession,
    "task": Task,
    "inventory_session": InventorySession,
}

Listener = Callable[[ChangeEvent], None]


def derive_status(return_date: Optional[date], due_date: date, today: date) -> str:
    """Status of a loan as seen on ``today``. Never stored."""
    if return_date is not None:
        return "returned"
    if due_date < today:
        return "overdue"
    return "active"


def _require_text(value: Any, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} cannot be empty.")


def _require_choice(value: Any, choices: Tuple[str, ...], field_name: str) -> None:
    if value not in choices:
        raise ValueError(f"Invalid {field_name} {value!r}. Allowed: {', '.join(choices)}")


def _require_count(value: Any, field_name: str, minimum: int = 0) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{field_name} must be an integer >= {minimum}.")


def _synchronized(method):
    """Run a store method while holding the store lock."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock:
            return method(self, *args, **kwargs)

    return wrapper


class LibraryStore:
    """In-memory owner of every library collection.

    All reads return frozen snapshots and all writes go through the methods
    below. A mutation validates everything before touching a collection, so it
    either applies completely or raises a :class:`~docucenter.errors.LibraryError`
    (or ``ValueError`` for malformed input) and leaves the store unchanged.

    ``today`` is the clock used for loan dates and overdue derivation; tests pass
    a fixed date.

    Every public method runs under ``lock`` (a re-entrant lock), so one store can
    be shared by the API worker threads. Hold ``lock`` yourself to read several
    queries from one consistent state.
    """

    def __init__(self, today: Optional[Callable[[], date]] = None, max_active_loans: Optional[int] = 3) -> None:
        self._today = today or date.today
        self.max_active_loans = max_active_loans
        self.lock = threading.RLock()
        self._collections: Dict[str, Collection] = {kind: Collection(kind) for kind in KINDS}
        self._listeners: List[Listener] = []

    def today(self) -> date:
        return self._today()

    # ------------------------- Change publication ------------------------- #
    @_synchronized
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every successful mutation. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with self.lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, action: str, kind: str, entity_id: Optional[str] = None, **extra: Any) -> None:
        logger.info("%s %s %s", action, kind, entity_id or "")
        event = ChangeEvent(action=action, kind=kind, entity_id=entity_id, extra=extra)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # A failing observer must not undo an applied mutation.
                logger.exception("Change listener %r failed for %s %s", listener, action, kind)

    # ------------------------- Generic helpers ------------------------- #
    def _require(self, kind: str, entity_id: Optional[str]) -> Record:
        record = self._collections[kind].get(entity_id)
        if record is None:
            raise NotFound(kind, entity_id)
        return record

    @staticmethod
    def _editable_fields(cls: type, owned: Iterable[str]) -> set:
        return {f.name for f in fields(cls)} - {"id"} - set(cls.DERIVED_FIELDS) - set(owned)

    @staticmethod
    def _coerce_dates(cls: type, values: Dict[str, Any]) -> Dict[str, Any]:
        for name in cls.DATE_FIELDS:
            if name in values:
                values[name] = parse_date(values[name])
        return values

    def _build(self, kind: str, values: Dict[str, Any], owned: Iterable[str] = ()) -> Record:
        cls = KINDS[kind]
        unknown = set(values) - self._editable_fields(cls, owned)
        if unknown:
            raise ValueError(f"Unknown or read-only field(s) for {kind}: {', '.join(sorted(unknown))}")
        try:
            return cls(id=create_id(), **self._coerce_dates(cls, dict(values)))
        except TypeError as exc:
            raise ValueError(f"Missing required field(s) for {kind}: {exc}") from exc

    def _patch(self, kind: str, entity_id: str, changes: Dict[str, Any], owned: Iterable[str] = ()) -> Tuple[Record, Record]:
        current = self._require(kind, entity_id)
        cls = KINDS[kind]
        if not changes:
            raise ValueError("Nothing to update.")
        unknown = set(changes) - self._editable_fields(cls, owned)
        if unknown:
            raise ValueError(f"Unknown or read-only field(s) for {kind}: {', '.join(sorted(unknown))}")
        return current, replace(current, **self._coerce_dates(cls, dict(changes)))

    def _insert(self, kind: str, record: Record) -> Record:
        self._collections[kind].put(record.id, record)
        self._publish("create", kind, record.id)
        return self._snapshot(kind, record)

    def _replace(self, kind: str, record: Record, action: str = "update") -> Record:
        self._collections[kind].put(record.id, record)
        self._publish(action, kind, record.id)
        return self._snapshot(kind, record)

    def _delete(self, kind: str, entity_id: str) -> None:
        self._require(kind, entity_id)
        count = self.count_active_dependents(kind, entity_id)
        if count:
            logger.info("Refused delete of %s %s: %d active dependents", kind, entity_id, count)
            raise HasActiveDependents(kind, entity_id, count)
        self._collections[kind].remove(entity_id)
        self._publish("delete", kind, entity_id)

    def _snapshot(self, kind: str, record: Record) -> Record:
        """Attach the derived fields to a stored record."""
        today = self.today()
        if kind == "book":
            return replace(record, available_copies=self.available_copies(record.id))
        if kind == "material":
            return replace(record, available_quantity=self.available_quantity(record.id))
        if kind in ("loan", "material_loan"):
            return replace(record, status=derive_status(record.return_date, record.due_date, today))
        return record

    def _get(self, kind: str, entity_id: Optional[str]) -> Optional[Record]:
        record = self._collections[kind].get(entity_id)
        return self._snapshot(kind, record) if record is not None else None

    def _list(self, kind: str) -> List[Record]:
        return [self._snapshot(kind, record) for record in self._collections[kind]]

    # ------------------------- Referential-integrity guard ------------------------- #
    @_synchronized
    def count_active_dependents(self, kind: str, entity_id: str) -> int:
        """Number of live records that block deleting ``kind``/``entity_id``."""
        if kind == "school_class":
            return self._collections["participant"].count(lambda p: p.class_id == entity_id)
        if kind == "category":
            return self._collections["book"].count(lambda b: b.category_id == entity_id)
        if kind == "book":
            return self._collections["loan"].count(lambda l: l.book_id == entity_id and l.return_date is None)
        if kind == "material":
            return self._collections["material_loan"].count(
                lambda l: l.material_id == entity_id and l.return_date is None
            )
        if kind == "entity":
            return self._collections["material_loan"].count(
                lambda l: l.borrower_type == "entity" and l.borrower_id == entity_id and l.return_date is None
            )
        if kind == "participant":
            book_loans = self._open_book_loans("participant", entity_id)
            material_loans = self._collections["material_loan"].count(
                lambda l: l.borrower_type == "participant" and l.borrower_id == entity_id and l.return_date is None
            )
            return book_loans + material_loans
        if kind == "other_reader":
            return self._open_book_loans("other_reader", entity_id)
        return 0

    def _open_book_loans(self, borrower_type: str, borrower_id: str) -> int:
        return self._collections["loan"].count(
            lambda l: l.borrower_type == borrower_type and l.borrower_id == borrower_id and l.return_date is None
        )

    # ------------------------- Categories ------------------------- #
    @_synchronized
    def add_category(self, **values: Any) -> Category:
        category = self._build("category", values)
        _require_text(category.name, "Category name")
        return self._insert("category", category)

    @_synchronized
    def update_category(self, category_id: str, **changes: Any) -> Category:
        _, category = self._patch("category", category_id, changes)
        _require_text(category.name, "Category name")
        return self._replace("category", category)

    @_synchronized
    def delete_category(self, category_id: str) -> None:
        self._delete("category", category_id)

    @_synchronized
    def get_category_by_id(self, category_id: str) -> Optional[Category]:
        return self._get("category", category_id)

    @_synchronized
    def list_categories(self) -> List[Category]:
        return self._list("category")

    # ------------------------- Books ------------------------- #
    def _validate_book(self, book: Book) -> None:
        _require_text(book.title, "Title")
        _require_count(book.quantity, "Quantity")
        if book.category_id is not None:
            self._require("category", book.category_id)

    @_synchronized
    def add_book(self, **values: Any) -> Book:
        values.setdefault("created_at", self.today())
        book = self._build("book", values)
        self._validate_book(book)
        return self._insert("book", book)

    @_synchronized
    def update_book(self, book_id: str, **changes: Any) -> Book:
        _, book = self._patch("book", book_id, changes, owned=("created_at",))
        self._validate_book(book)
        on_loan = self.count_active_dependents("book", book_id)
        if book.quantity < on_loan:
            raise InvalidTransition(f"Cannot set quantity to {book.quantity}: {on_loan} copies are on loan.")
        return self._replace("book", book)

    @_synchronized
    def delete_book(self, book_id: str) -> None:
        self._delete("book", book_id)

    @_synchronized
    def get_book_by_id(self, book_id: str) -> Optional[Book]:
        return self._get("book", book_id)

    @_synchronized
    def list_books(self) -> List[Book]:
        return self._list("book")

    @_synchronized
    def available_copies(self, book_id: str) -> int:
        book = self._require("book", book_id)
        return book.quantity - self.count_active_dependents("book", book_id)

    # ------------------------- Book issues ------------------------- #
    def _validate_issue(self, issue: BookIssue) -> None:
        self._require("book", issue.book_id)
        _require_choice(issue.issue_type, ISSUE_TYPES, "issue type")
        _require_count(issue.quantity, "Quantity", minimum=1)
        if issue.loan_id is not None:
            self._require("loan", issue.loan_id)

    @_synchronized
    def add_book_issue(self, **values: Any) -> BookIssue:
        values.setdefault("report_date", self.today())
        issue = self._build("book_issue", values, owned=("status", "resolved_at", "resolution_notes"))
        self._validate_issue(issue)
        return self._insert("book_issue", issue)

    @_synchronized
    def update_book_issue(self, issue_id: str, **changes: Any) -> BookIssue:
        _, issue = self._patch("book_issue", issue_id, changes, owned=("status", "resolved_at"))
        self._validate_issue(issue)
        return self._replace("book_issue", issue)

    @_synchronized
    def resolve_book_issue(self, issue_id: str, status: str = "resolved", resolution_notes: Optional[str] = None) -> BookIssue:
        issue = self._require("book_issue", issue_id)
        if status not in ISSUE_STATUSES or status == "open":
            raise ValueError(f"Invalid resolution status {status!r}.")
        if issue.status != "open":
            raise InvalidTransition(f"Book issue {issue_id} is already {issue.status}.")
        resolved = replace(issue, status=status, resolution_notes=resolution_notes, resolved_at=self.today())
        return self._replace("book_issue", resolved, action="resolve")

    @_synchronized
    def delete_book_issue(self, issue_id: str) -> None:
        self._delete("book_issue", issue_id)

    @_synchronized
    def get_book_issue_by_id(self, issue_id: str) -> Optional[BookIssue]:
        return self._get("book_issue", issue_id)

    @_synchronized
    def list_book_issues(self) -> List[BookIssue]:
        return self._list("book_issue")

    @_synchronized
    def open_issue_count(self) -> int:
        return self._collections["book_issue"].count(lambda i: i.status == "open")

    # ------------------------- Classes ------------------------- #
    @_synchronized
    def add_school_class(self, **values: Any) -> SchoolClass:
        school_class = self._build("school_class", values)
        _require_text(school_class.name, "Class name")
        return self._insert("school_class", school_class)

    @_synchronized
    def update_school_class(self, class_id: str, **changes: Any) -> SchoolClass:
        _, school_class = self._patch("school_class", class_id, changes)
        _require_text(school_class.name, "Class name")
        return self._replace("school_class", school_class)

    @_synchronized
    def delete_school_class(self, class_id: str) -> None:
        self._delete("school_class", class_id)

    @_synchronized
    def get_school_class_by_id(self, class_id: str) -> Optional[SchoolClass]:
        return self._get("school_class", class_id)

    @_synchronized
    def list_school_classes(self) -> List[SchoolClass]:
        return self._list("school_class")

    @_synchronized
    def participant_count(self, class_id: str) -> int:
        self._require("school_class", class_id)
        return self.count_active_dependents("school_class", class_id)

    # ------------------------- Readers ------------------------- #
    def _check_reader_number(self, kind: str, reader: Record) -> None:
        _require_text(reader.number, "Reader number")
        for other in self._collections[kind]:
            if other.id != reader.id and other.number == reader.number:
                raise DuplicateKey("number", reader.number)

    def _validate_participant(self, participant: Participant) -> None:
        _require_text(participant.first_name, "First name")
        _require_text(participant.last_name, "Last name")
        if participant.class_id is not None:
            self._require("school_class", participant.class_id)
        if participant.gender is not None:
            _require_choice(participant.gender, GENDERS, "gender")
        self._check_reader_number("participant", participant)

    @_synchronized
    def add_participant(self, **values: Any) -> Participant:
        participant = self._build("participant", values)
        self._validate_participant(participant)
        return self._insert("participant", participant)

    @_synchronized
    def update_participant(self, participant_id: str, **changes: Any) -> Participant:
        _, participant = self._patch("participant", participant_id, changes)
        self._validate_participant(participant)
        return self._replace("participant", participant)

    @_synchronized
    def delete_participant(self, participant_id: str) -> None:
        self._delete("participant", participant_id)

    @_synchronized
    def get_participant_by_id(self, participant_id: str) -> Optional[Participant]:
        return self._get("participant", participant_id)

    @_synchronized
    def list_participants(self, class_id: Optional[str] = None) -> List[Participant]:
        participants = self._list("participant")
        if class_id is not None:
            participants = [p for p in participants if p.class_id == class_id]
        return participants

    @_synchronized
    def transfer_participants(self, from_class_id: str, to_class_id: Optional[str]) -> int:
        """Move every participant of one class to another (or to no class)."""
        self._require("school_class", from_class_id)
        if to_class_id is not None:
            self._require("school_class", to_class_id)
        moved = self._collections["participant"].filter(lambda p: p.class_id == from_class_id)
        if not moved:
            return 0
        for participant in moved:
            self._collections["participant"].put(participant.id, replace(participant, class_id=to_class_id))
        self._publish("transfer", "participant", None, from_class_id=from_class_id, to_class_id=to_class_id, count=len(moved))
        return len(moved)

    def _validate_other_reader(self, reader: OtherReader) -> None:
        _require_text(reader.first_name, "First name")
        _require_text(reader.last_name, "Last name")
        _require_choice(reader.reader_type, READER_TYPES, "reader type")
        self._check_reader_number("other_reader", reader)

    @_synchronized
    def add_other_reader(self, **values: Any) -> OtherReader:
        reader = self._build("other_reader", values)
        self._validate_other_reader(reader)
        return self._insert("other_reader", reader)

    @_synchronized
    def update_other_reader(self, reader_id: str, **changes: Any) -> OtherReader:
        _, reader = self._patch("other_reader", reader_id, changes)
        self._validate_other_reader(reader)
        return self._replace("other_reader", reader)

    @_synchronized
    def delete_other_reader(self, reader_id: str) -> None:
        self._delete("other_reader", reader_id)

    @_synchronized
    def get_other_reader_by_id(self, reader_id: str) -> Optional[OtherReader]:
        return self._get("other_reader", reader_id)

    @_synchronized
    def list_other_readers(self) -> List[OtherReader]:
        return self._list("other_reader")

    # ------------------------- Entities (organizations) ------------------------- #
    @_synchronized
    def add_entity(self, **values: Any) -> Entity:
        entity = self._build("entity", values)
        _require_text(entity.name, "Entity name")
        return self._insert("entity", entity)

    @_synchronized
    def update_entity(self, entity_id: str, **changes: Any) -> Entity:
        _, entity = self._patch("entity", entity_id, changes)
        _require_text(entity.name, "Entity name")
        return self._replace("entity", entity)

    @_synchronized
    def delete_entity(self, entity_id: str) -> None:
        self._delete("entity", entity_id)

    @_synchronized
    def get_entity_by_id(self, entity_id: str) -> Optional[Entity]:
        return self._get("entity", entity_id)

    @_synchronized
    def list_entities(self) -> List[Entity]:
        return self._list("entity")

    # ------------------------- Materials ------------------------- #
    def _validate_material(self, material: Material) -> None:
        _require_text(material.name, "Material name")
        _require_count(material.quantity, "Quantity")
        _require_choice(material.condition, MATERIAL_CONDITIONS, "condition")

    def _loaned_quantity(self, material_id: str) -> int:
        return sum(
            loan.quantity
            for loan in self._collections["material_loan"]
            if loan.material_id == material_id and loan.return_date is None
        )

    @_synchronized
    def add_material(self, **values: Any) -> Material:
        material = self._build("material", values)
        self._validate_material(material)
        return self._insert("material", material)

    @_synchronized
    def update_material(self, material_id: str, **changes: Any) -> Material:
        _, material = self._patch("material", material_id, changes)
        self._validate_material(material)
        loaned = self._loaned_quantity(material_id)
        if material.quantity < loaned:
            raise InvalidTransition(f"Cannot set quantity to {material.quantity}: {loaned} units are on loan.")
        return self._replace("material", material)

    @_synchronized
    def delete_material(self, material_id: str) -> None:
        self._delete("material", material_id)

    @_synchronized
    def get_material_by_id(self, material_id: str) -> Optional[Material]:
        return self._get("material", material_id)

    @_synchronized
    def list_materials(self) -> List[Material]:
        return self._list("material")

    @_synchronized
    def available_quantity(self, material_id: str) -> int:
        material = self._require("material", material_id)
        return material.quantity - self._loaned_quantity(material_id)

    # ------------------------- Book loans ------------------------- #
    def _resolve_borrower(self, borrower_type: str, borrower_id: str) -> str:
        kind = {"participant": "participant", "other_reader": "other_reader", "entity": "entity"}[borrower_type]
        borrower = self._require(kind, borrower_id)
        return borrower.name if kind == "entity" else borrower.full_name

    @_synchronized
    def create_loan(
        self,
        book_id: str,
        borrower_id: Optional[str],
        due_date: Any,
        borrower_type: str = "participant",
        borrower_name: Optional[str] = None,
        loan_date: Any = None,
    ) -> Loan:
        """Lend one copy of a book.

        A loan without ``borrower_id`` is recorded against ``borrower_name`` only.
        """
        book = self._require("book", book_id)
        _require_choice(borrower_type, BOOK_BORROWER_TYPES, "borrower type")
        if borrower_id is not None:
            name = self._resolve_borrower(borrower_type, borrower_id)
            borrower_name = borrower_name or name
        else:
            _require_text(borrower_name, "Borrower name")
        loan_date = parse_date(loan_date) or self.today()
        due_date = parse_date(due_date)
        if due_date is None:
            raise ValueError("Due date is required.")
        if due_date < loan_date:
            raise InvalidTransition("Due date cannot be before the loan date.")
        if self.available_copies(book.id) < 1:
            raise InvalidTransition(f"No copies available for {book.title!r}.")
        if borrower_id is not None and self.max_active_loans:
            open_loans = self._open_book_loans(borrower_type, borrower_id)
            if open_loans >= self.max_active_loans:
                raise InvalidTransition(f"Borrower has reached the maximum loan limit ({self.max_active_loans}).")

        loan = Loan(
            id=create_id(),
            book_id=book.id,
            borrower_type=borrower_type,
            borrower_id=borrower_id,
            borrower_name=borrower_name,
            loan_date=loan_date,
            due_date=due_date,
        )
        return self._insert("loan", loan)

    @_synchronized
    def return_loan(self, loan_id: str) -> Loan:
        loan = self._require("loan", loan_id)
        if loan.return_date is not None:
            raise AlreadyReturned(loan_id)
        return self._replace("loan", replace(loan, return_date=self.today()), action="return")

    @_synchronized
    def renew_loan(self, loan_id: str, new_due_date: Any) -> Loan:
        loan = self._require("loan", loan_id)
        return self._replace("loan", self._renewed(loan, new_due_date), action="renew")

    @_synchronized
    def delete_loan(self, loan_id: str) -> None:
        loan = self._require("loan", loan_id)
        if loan.return_date is None:
            raise InvalidTransition("Cannot delete an active loan. Return the book first.")
        self._delete("loan", loan_id)

    @_synchronized
    def get_loan_by_id(self, loan_id: str) -> Optional[Loan]:
        return self._get("loan", loan_id)

    @_synchronized
    def list_loans(self, status: Optional[str] = None) -> List[Loan]:
        loans = self._list("loan")
        if status is not None:
            _require_choice(status, LOAN_STATUSES, "status")
            loans = [loan for loan in loans if loan.status == status]
        return loans

    def _renewed(self, loan, new_due_date: Any):
        if loan.return_date is not None:
            raise AlreadyReturned(loan.id)
        new_due_date = parse_date(new_due_date)
        if new_due_date is None or new_due_date <= loan.due_date:
            raise InvalidTransition(
                f"New due date must be after the current due date ({loan.due_date.isoformat()})."
            )
        return replace(loan, due_date=new_due_date)

    # ------------------------- Material loans ------------------------- #
    @_synchronized
    def create_material_loan(
        self,
        material_id: str,
        borrower_id: str,
        quantity: int,
        due_date: Any,
        borrower_type: str = "participant",
        notes: Optional[str] = None,
        loan_date: Any = None,
    ) -> MaterialLoan:
        material = self._require("material", material_id)
        _require_choice(borrower_type, MATERIAL_BORROWER_TYPES, "borrower type")
        borrower_name = self._resolve_borrower(borrower_type, borrower_id)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidTransition("Quantity must be at least 1.")
        loan_date = parse_date(loan_date) or self.today()
        due_date = parse_date(due_date)
        if due_date is None:
            raise ValueError("Due date is required.")
        if due_date < loan_date:
            raise InvalidTransition("Due date cannot be before the loan date.")
        available = self.available_quantity(material.id)
        if quantity > available:
            raise InvalidTransition(f"Only {available} available.")

        loan = MaterialLoan(
            id=create_id(),
            material_id=material.id,
            borrower_type=borrower_type,
            borrower_id=borrower_id,
            borrower_name=borrower_name,
            quantity=quantity,
            loan_date=loan_date,
            due_date=due_date,
            notes=notes,
        )
        return self._insert("material_loan", loan)

    @_synchronized
    def return_material_loan(self, loan_id: str) -> MaterialLoan:
        loan = self._require("material_loan", loan_id)
        if loan.return_date is not None:
            raise AlreadyReturned(loan_id)
        return self._replace("material_loan", replace(loan, return_date=self.today()), action="return")

    @_synchronized
    def renew_material_loan(self, loan_id: str, new_due_date: Any) -> MaterialLoan:
        loan = self._require("material_loan", loan_id)
        return self._replace("material_loan", self._renewed(loan, new_due_date), action="renew")

    @_synchronized
    def delete_material_loan(self, loan_id: str) -> None:
        loan = self._require("material_loan", loan_id)
        if loan.return_date is None:
            raise InvalidTransition("Cannot delete an active loan. Return the material first.")
        self._delete("material_loan", loan_id)

    @_synchronized
    def get_material_loan_by_id(self, loan_id: str) -> Optional[MaterialLoan]:
        return self._get("material_loan", loan_id)

    @_synchronized
    def list_material_loans(self, status: Optional[str] = None) -> List[MaterialLoan]:
        loans = self._list("material_loan")
        if status is not None:
            _require_choice(status, LOAN_STATUSES, "status")
            loans = [loan for loan in loans if loan.status == status]
        return loans

    # ------------------------- Reading sessions ------------------------- #
    def _validate_reading_session(self, session: ReadingSession) -> None:
        self._require("participant", session.participant_id)
        self._require("book", session.book_id)
        _require_choice(session.reading_type, READING_TYPES, "reading type")
        if session.duration_minutes is not None:
            _require_count(session.duration_minutes, "Duration")

    @_synchronized
    def add_reading_session(self, **values: Any) -> ReadingSession:
        values.setdefault("date", self.today())
        session = self._build("reading_session", values)
        self._validate_reading_session(session)
        return self._insert("reading_session", session)

    @_synchronized
    def update_reading_session(self, session_id: str, **changes: Any) -> ReadingSession:
        _, session = self._patch("reading_session", session_id, changes)
        self._validate_reading_session(session)
        return self._replace("reading_session", session)

    @_synchronized
    def delete_reading_session(self, session_id: str) -> None:
        self._delete("reading_session", session_id)

    @_synchronized
    def get_reading_session_by_id(self, session_id: str) -> Optional[ReadingSession]:
        return self._get("reading_session", session_id)

    @_synchronized
    def list_reading_sessions(self) -> List[ReadingSession]:
        return self._list("reading_session")

    # ------------------------- Tasks ------------------------- #
    def _validate_task(self, task: Task) -> None:
        _require_text(task.title, "Title")
        _require_choice(task.priority, TASK_PRIORITIES, "priority")
        _require_choice(task.status, TASK_STATUSES, "status")

    @_synchronized
    def add_task(self, **values: Any) -> Task:
        task = self._build("task", values)
        self._validate_task(task)
        return self._insert("task", task)

    @_synchronized
    def update_task(self, task_id: str, **changes: Any) -> Task:
        _, task = self._patch("task", task_id, changes)
        self._validate_task(task)
        return self._replace("task", task)

    @_synchronized
    def delete_task(self, task_id: str) -> None:
        self._delete("task", task_id)

    @_synchronized
    def get_task_by_id(self, task_id: str) -> Optional[Task]:
        return self._get("task", task_id)

    @_synchronized
    def list_tasks(self) -> List[Task]:
        return self._list("task")

    # ------------------------- Inventory ------------------------- #
    @_synchronized
    def start_inventory(
        self,
        name: str,
        session_type: str = "full",
        book_ids: Optional[List[str]] = None,
        notes: Optional[str] = None,
    ) -> InventorySession:
        """Open a stock check with one pending item per book.

        A ``partial`` session covers only ``book_ids``.
        """
        _require_text(name, "Inventory name")
        _require_choice(session_type, INVENTORY_TYPES, "session type")
        if session_type == "partial":
            if not book_ids:
                raise ValueError("A partial inventory needs at least one book.")
            books = [self._require("book", book_id) for book_id in dict.fromkeys(book_ids)]
        else:
            books = self._collections["book"].values()
        items = tuple(InventoryItem(book_id=book.id, expected_quantity=book.quantity) for book in books)
        session = InventorySession(
            id=create_id(),
            name=name,
            session_type=session_type,
            start_date=self.today(),
            notes=notes,
            items=items,
        )
        return self._insert("inventory_session", session)

    def _open_inventory(self, session_id: str) -> InventorySession:
        session = self._require("inventory_session", session_id)
        if session.status != "in_progress":
            raise InvalidTransition(f"Inventory session {session_id} is {session.status}.")
        return session

    @_synchronized
    def check_inventory_item(
        self, session_id: str, book_id: str, found_quantity: int, notes: Optional[str] = None
    ) -> InventorySession:
        session = self._open_inventory(session_id)
        _require_count(found_quantity, "Found quantity")
        items = list(session.items)
        for index, item in enumerate(items):
            if item.book_id == book_id:
                status = "checked" if found_quantity == item.expected_quantity else "discrepancy"
                items[index] = replace(item, found_quantity=found_quantity, status=status, notes=notes)
                break
        else:
            raise NotFound("inventory_item", book_id)
        return self._replace("inventory_session", replace(session, items=tuple(items)), action="check")

    @_synchronized
    def complete_inventory(self, session_id: str) -> InventorySession:
        session = self._open_inventory(session_id)
        completed = replace(session, status="completed", end_date=self.today())
        return self._replace("inventory_session", completed, action="complete")

    @_synchronized
    def cancel_inventory(self, session_id: str) -> InventorySession:
        session = self._open_inventory(session_id)
        return self._replace("inventory_session", replace(session, status="cancelled"), action="cancel")

    @_synchronized
    def update_inventory_session(self, session_id: str, **changes: Any) -> InventorySession:
        _, session = self._patch(
            "inventory_session", session_id, changes,
            owned=("session_type", "status", "start_date", "end_date", "items"),
        )
        _require_text(session.name, "Inventory name")
        return self._replace("inventory_session", session)

    @_synchronized
    def delete_inventory_session(self, session_id: str) -> None:
        self._delete("inventory_session", session_id)

    @_synchronized
    def get_inventory_session_by_id(self, session_id: str) -> Optional[InventorySession]:
        return self._get("inventory_session", session_id)

    @_synchronized
    def list_inventory_sessions(self) -> List[InventorySession]:
        return self._list("inventory_session")

    # ------------------------- Queries ------------------------- #
    @_synchronized
    def count_overdue(self) -> int:
        today = self.today()
        return sum(
            1
            for kind in ("loan", "material_loan")
            for loan in self._collections[kind]
            if derive_status(loan.return_date, loan.due_date, today) == "overdue"
        )

    @_synchronized
    def category_distribution(self) -> List[Tuple[str, int]]:
        """(category_id, book_count) in category order, empty categories omitted."""
        counts: Dict[str, int] = {}
        for book in self._collections["book"]:
            if book.category_id is not None:
                counts[book.category_id] = counts.get(book.category_id, 0) + 1
        return [
            (category.id, counts[category.id])
            for category in self._collections["category"]
            if counts.get(category.id)
        ]

    @_synchronized
    def recent_activity(self, limit: int = 5) -> List[ActivityRecord]:
        """Latest loan events, newest first (return date if returned, else loan date)."""
        today = self.today()
        records: List[ActivityRecord] = []
        for loan in self._collections["loan"]:
            book = self._collections["book"].get(loan.book_id)
            records.append(ActivityRecord(
                kind="loan",
                record_id=loan.id,
                title=book.title if book else "Unknown Book",
                borrower_name=loan.borrower_name,
                loan_date=loan.loan_date,
                status=derive_status(loan.return_date, loan.due_date, today),
                return_date=loan.return_date,
            ))
        for loan in self._collections["material_loan"]:
            material = self._collections["material"].get(loan.material_id)
            records.append(ActivityRecord(
                kind="material_loan",
                record_id=loan.id,
                title=material.name if material else "Unknown Material",
                borrower_name=loan.borrower_name,
                loan_date=loan.loan_date,
                status=derive_status(loan.return_date, loan.due_date, today),
                return_date=loan.return_date,
            ))
        # Newest records first among equal dates; sorted() is stable.
        records.reverse()
        records = sorted(records, key=lambda r: r.event_date, reverse=True)
        return records[:max(limit, 0)]

    @_synchronized
    def loans_due_soon(self, days: int = 3) -> List[Loan]:
        """Unreturned book loans due within ``days`` days and not yet overdue."""
        today = self.today()
        horizon = today + timedelta(days=days)
        due = [loan for loan in self.list_loans() if loan.status == "active" and loan.due_date <= horizon]
        return sorted(due, key=lambda loan: loan.due_date)

    @_synchronized
    def get_stats(self) -> LibraryStats:
        loans = self.list_loans()
        week_ago = self.today() - timedelta(days=7)
        books = self._collections["book"].values()
        return LibraryStats(
            total_books=sum(book.quantity for book in books),
            available_books=sum(self.available_copies(book.id) for book in books),
            active_loans=sum(1 for loan in loans if loan.status == "active"),
            overdue_loans=sum(1 for loan in loans if loan.status == "overdue"),
            total_participants=len(self._collections["participant"]),
            books_this_week=sum(1 for loan in loans if loan.loan_date >= week_ago),
        )

    # ------------------------- Snapshot import/export ------------------------- #
    @_synchronized
    def export_records(self) -> Dict[str, List[Dict[str, Any]]]:
        """Every stored record as plain dicts, derived fields excluded."""
        return {
            kind: [record.to_dict(include_derived=False) for record in collection]
            for kind, collection in self._collections.items()
        }

    @_synchronized
    def load_records(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        """Replace all collections with previously exported records."""
        loaded = {kind: [KINDS[kind].from_dict(row) for row in data.get(kind, [])] for kind in KINDS}
        for kind, records in loaded.items():
            collection = self._collections[kind]
            collection.clear()
            for record in records:
                collection.put(record.id, record)
        logger.info("Loaded %d records", sum(len(records) for records in loaded.values()))
