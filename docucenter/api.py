import datetime as dt
import logging
import threading
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from .audit import AuditLog
from .config import settings
from .database import load_store
from .errors import DuplicateKey, LibraryError, NotFound
from .reports import REPORTS, build_report
from .store import LibraryStore

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_store: Optional[LibraryStore] = None
_audit_log: Optional[AuditLog] = None


def _init_state() -> None:
    """Create the process-wide store and audit log exactly once."""
    global _store, _audit_log
    with _init_lock:
        if _store is not None:
            return
        if settings.db_file:
            logger.info("Loading library store from %s", settings.db_file)
            store = load_store(settings.db_file, max_active_loans=settings.max_active_loans)
        else:
            store = LibraryStore(max_active_loans=settings.max_active_loans)
        _audit_log = AuditLog(settings.db_file)
        store.subscribe(_audit_log)
        _store = store


def get_store() -> LibraryStore:
    """Process-wide store, loaded from ``settings.db_file`` when one is configured."""
    if _store is None:
        _init_state()
    return _store


def get_audit_log() -> AuditLog:
    if _audit_log is None:
        _init_state()
    return _audit_log


app = FastAPI(title=f"{settings.app_name} API", version=settings.app_version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---
def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(404, exc)


@app.exception_handler(DuplicateKey)
async def duplicate_key_handler(request: Request, exc: DuplicateKey):
    return _error(409, exc)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    logger.debug("%s %s refused: %s", request.method, request.url.path, exc)
    body = {"message": str(exc)}
    count = getattr(exc, "count", None)
    if count is not None:
        body["count"] = count
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(400, exc)


# --- Security ---
admin_pin_header = APIKeyHeader(name="X-Admin-PIN", auto_error=False)
guest_pin_header = APIKeyHeader(name="X-Guest-PIN", auto_error=False)


def require_reader(
    admin_pin: Optional[str] = Security(admin_pin_header),
    guest_pin: Optional[str] = Security(guest_pin_header),
) -> str:
    """Admin or guest access, for read-only routes."""
    if admin_pin and admin_pin == settings.admin_pin:
        return "admin"
    if guest_pin and guest_pin in settings.guest_pins:
        return "guest"
    raise HTTPException(status_code=401, detail="Authentication required")


def require_admin(admin_pin: Optional[str] = Security(admin_pin_header)) -> str:
    if admin_pin and admin_pin == settings.admin_pin:
        return "admin"
    raise HTTPException(status_code=403, detail="Admin access required")


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(exclude_unset=True)


def _no_content() -> Response:
    return Response(status_code=204)


# --- Models ---
class PinModel(BaseModel):
    pin: str


class CategoryModel(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None


class BookModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    category_id: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    cover_url: Optional[str] = None


class SchoolClassModel(BaseModel):
    name: Optional[str] = None
    age_range: Optional[str] = None
    monitor_name: Optional[str] = None


class TransferModel(BaseModel):
    to_class_id: Optional[str] = None


class ParticipantModel(BaseModel):
    number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    class_id: Optional[str] = None
    age: Optional[int] = None
    age_range: Optional[str] = None
    gender: Optional[str] = None


class OtherReaderModel(BaseModel):
    number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    reader_type: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


class EntityModel(BaseModel):
    name: Optional[str] = None
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


class MaterialModel(BaseModel):
    name: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    serial_number: Optional[str] = None
    condition: Optional[str] = None
    notes: Optional[str] = None


class LoanCreateModel(BaseModel):
    book_id: str
    borrower_id: Optional[str] = None
    borrower_type: str = "participant"
    borrower_name: Optional[str] = None
    due_date: date


class MaterialLoanCreateModel(BaseModel):
    material_id: str
    borrower_id: str
    borrower_type: str = "participant"
    quantity: int = 1
    due_date: date
    notes: Optional[str] = None


class RenewModel(BaseModel):
    due_date: date


class ReadingSessionModel(BaseModel):
    participant_id: Optional[str] = None
    book_id: Optional[str] = None
    date: Optional[dt.date] = None
    reading_type: Optional[str] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None


class TaskModel(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[date] = None


class InventoryCreateModel(BaseModel):
    name: str
    session_type: str = "full"
    book_ids: Optional[List[str]] = None
    notes: Optional[str] = None


class InventoryCheckModel(BaseModel):
    found_quantity: int = Field(ge=0)
    notes: Optional[str] = None


class BookIssueModel(BaseModel):
    book_id: Optional[str] = None
    issue_type: Optional[str] = None
    quantity: Optional[int] = None
    description: Optional[str] = None
    borrower_name: Optional[str] = None
    loan_id: Optional[str] = None


class ResolveIssueModel(BaseModel):
    status: str = "resolved"
    resolution_notes: Optional[str] = None


class StatsModel(BaseModel):
    total_books: int
    available_books: int
    active_loans: int
    overdue_loans: int
    total_participants: int
    books_this_week: int


# --- Health & auth ---
@app.get("/api/health")
def health(store: LibraryStore = Depends(get_store)):
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "total_books": len(store.list_books()),
        "version": settings.app_version,
    }


@app.post("/api/auth/verify-admin")
def verify_admin(payload: PinModel):
    valid = payload.pin == settings.admin_pin
    return {"valid": valid, "message": "PIN accepted" if valid else "Invalid PIN"}


@app.post("/api/auth/verify-guest")
def verify_guest(payload: PinModel):
    valid = payload.pin in settings.guest_pins
    return {"valid": valid, "message": "PIN accepted" if valid else "Invalid PIN"}


# --- Categories ---
@app.get("/api/categories", dependencies=[Depends(require_reader)])
def list_categories(store: LibraryStore = Depends(get_store)):
    return [c.to_dict() for c in store.list_categories()]


@app.get("/api/categories/{category_id}", dependencies=[Depends(require_reader)])
def get_category(category_id: str, store: LibraryStore = Depends(get_store)):
    category = store.get_category_by_id(category_id)
    if category is None:
        raise NotFound("category", category_id)
    return category.to_dict()


@app.post("/api/categories", status_code=201, dependencies=[Depends(require_admin)])
def create_category(payload: CategoryModel, store: LibraryStore = Depends(get_store)):
    return store.add_category(**_dump(payload)).to_dict()


@app.put("/api/categories/{category_id}", dependencies=[Depends(require_admin)])
def update_category(category_id: str, payload: CategoryModel, store: LibraryStore = Depends(get_store)):
    return store.update_category(category_id, **_dump(payload)).to_dict()


@app.delete("/api/categories/{category_id}", dependencies=[Depends(require_admin)])
def delete_category(category_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_category(category_id)
    return _no_content()


# --- Books ---
@app.get("/api/books", dependencies=[Depends(require_reader)])
def list_books(category_id: Optional[str] = Query(None), store: LibraryStore = Depends(get_store)):
    books = store.list_books()
    if category_id:
        books = [b for b in books if b.category_id == category_id]
    return [b.to_dict() for b in books]


@app.get("/api/books/{book_id}", dependencies=[Depends(require_reader)])
def get_book(book_id: str, store: LibraryStore = Depends(get_store)):
    book = store.get_book_by_id(book_id)
    if book is None:
        raise NotFound("book", book_id)
    return book.to_dict()


@app.post("/api/books", status_code=201, dependencies=[Depends(require_admin)])
def create_book(payload: BookModel, store: LibraryStore = Depends(get_store)):
    return store.add_book(**_dump(payload)).to_dict()


@app.put("/api/books/{book_id}", dependencies=[Depends(require_admin)])
def update_book(book_id: str, payload: BookModel, store: LibraryStore = Depends(get_store)):
    return store.update_book(book_id, **_dump(payload)).to_dict()


@app.delete("/api/books/{book_id}", dependencies=[Depends(require_admin)])
def delete_book(book_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_book(book_id)
    return _no_content()


# --- Book issues ---
@app.get("/api/book-issues", dependencies=[Depends(require_reader)])
def list_book_issues(status: Optional[str] = Query(None), store: LibraryStore = Depends(get_store)):
    issues = store.list_book_issues()
    if status:
        issues = [i for i in issues if i.status == status]
    return [i.to_dict() for i in issues]


@app.post("/api/book-issues", status_code=201, dependencies=[Depends(require_admin)])
def create_book_issue(payload: BookIssueModel, store: LibraryStore = Depends(get_store)):
    return store.add_book_issue(**_dump(payload)).to_dict()


@app.put("/api/book-issues/{issue_id}/resolve", dependencies=[Depends(require_admin)])
def resolve_book_issue(issue_id: str, payload: ResolveIssueModel, store: LibraryStore = Depends(get_store)):
    return store.resolve_book_issue(issue_id, payload.status, payload.resolution_notes).to_dict()


@app.delete("/api/book-issues/{issue_id}", dependencies=[Depends(require_admin)])
def delete_book_issue(issue_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_book_issue(issue_id)
    return _no_content()


# --- Classes ---
@app.get("/api/classes", dependencies=[Depends(require_reader)])
def list_classes(store: LibraryStore = Depends(get_store)):
    return [
        {**c.to_dict(), "participant_count": store.participant_count(c.id)}
        for c in store.list_school_classes()
    ]


@app.get("/api/classes/{class_id}", dependencies=[Depends(require_reader)])
def get_class(class_id: str, store: LibraryStore = Depends(get_store)):
    school_class = store.get_school_class_by_id(class_id)
    if school_class is None:
        raise NotFound("school_class", class_id)
    return {**school_class.to_dict(), "participant_count": store.participant_count(class_id)}


@app.get("/api/classes/{class_id}/participants", dependencies=[Depends(require_reader)])
def list_class_participants(class_id: str, store: LibraryStore = Depends(get_store)):
    if store.get_school_class_by_id(class_id) is None:
        raise NotFound("school_class", class_id)
    return [p.to_dict() for p in store.list_participants(class_id=class_id)]


@app.post("/api/classes", status_code=201, dependencies=[Depends(require_admin)])
def create_class(payload: SchoolClassModel, store: LibraryStore = Depends(get_store)):
    return store.add_school_class(**_dump(payload)).to_dict()


@app.put("/api/classes/{class_id}", dependencies=[Depends(require_admin)])
def update_class(class_id: str, payload: SchoolClassModel, store: LibraryStore = Depends(get_store)):
    return store.update_school_class(class_id, **_dump(payload)).to_dict()


@app.post("/api/classes/{class_id}/transfer", dependencies=[Depends(require_admin)])
def transfer_class(class_id: str, payload: TransferModel, store: LibraryStore = Depends(get_store)):
    moved = store.transfer_participants(class_id, payload.to_class_id)
    return {"moved": moved}


@app.delete("/api/classes/{class_id}", dependencies=[Depends(require_admin)])
def delete_class(class_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_school_class(class_id)
    return _no_content()


# --- Participants ---
@app.get("/api/participants", dependencies=[Depends(require_reader)])
def list_participants(class_id: Optional[str] = Query(None), store: LibraryStore = Depends(get_store)):
    return [p.to_dict() for p in store.list_participants(class_id=class_id)]


@app.get("/api/participants/{participant_id}", dependencies=[Depends(require_reader)])
def get_participant(participant_id: str, store: LibraryStore = Depends(get_store)):
    participant = store.get_participant_by_id(participant_id)
    if participant is None:
        raise NotFound("participant", participant_id)
    return participant.to_dict()


@app.post("/api/participants", status_code=201, dependencies=[Depends(require_admin)])
def create_participant(payload: ParticipantModel, store: LibraryStore = Depends(get_store)):
    return store.add_participant(**_dump(payload)).to_dict()


@app.put("/api/participants/{participant_id}", dependencies=[Depends(require_admin)])
def update_participant(participant_id: str, payload: ParticipantModel, store: LibraryStore = Depends(get_store)):
    return store.update_participant(participant_id, **_dump(payload)).to_dict()


@app.delete("/api/participants/{participant_id}", dependencies=[Depends(require_admin)])
def delete_participant(participant_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_participant(participant_id)
    return _no_content()


# --- Other readers ---
@app.get("/api/other-readers", dependencies=[Depends(require_reader)])
def list_other_readers(store: LibraryStore = Depends(get_store)):
    return [r.to_dict() for r in store.list_other_readers()]


@app.post("/api/other-readers", status_code=201, dependencies=[Depends(require_admin)])
def create_other_reader(payload: OtherReaderModel, store: LibraryStore = Depends(get_store)):
    return store.add_other_reader(**_dump(payload)).to_dict()


@app.put("/api/other-readers/{reader_id}", dependencies=[Depends(require_admin)])
def update_other_reader(reader_id: str, payload: OtherReaderModel, store: LibraryStore = Depends(get_store)):
    return store.update_other_reader(reader_id, **_dump(payload)).to_dict()


@app.delete("/api/other-readers/{reader_id}", dependencies=[Depends(require_admin)])
def delete_other_reader(reader_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_other_reader(reader_id)
    return _no_content()


# --- Loans ---
@app.get("/api/loans", dependencies=[Depends(require_reader)])
def list_loans(status: Optional[str] = Query(None), store: LibraryStore = Depends(get_store)):
    return [loan.to_dict() for loan in store.list_loans(status=status)]


@app.get("/api/loans/{loan_id}", dependencies=[Depends(require_reader)])
def get_loan(loan_id: str, store: LibraryStore = Depends(get_store)):
    loan = store.get_loan_by_id(loan_id)
    if loan is None:
        raise NotFound("loan", loan_id)
    return loan.to_dict()


@app.post("/api/loans", status_code=201, dependencies=[Depends(require_admin)])
def create_loan(payload: LoanCreateModel, store: LibraryStore = Depends(get_store)):
    loan = store.create_loan(
        payload.book_id,
        payload.borrower_id,
        payload.due_date,
        borrower_type=payload.borrower_type,
        borrower_name=payload.borrower_name,
    )
    return loan.to_dict()


@app.post("/api/loans/{loan_id}/return", dependencies=[Depends(require_admin)])
def return_loan(loan_id: str, store: LibraryStore = Depends(get_store)):
    return store.return_loan(loan_id).to_dict()


@app.post("/api/loans/{loan_id}/renew", dependencies=[Depends(require_admin)])
def renew_loan(loan_id: str, payload: RenewModel, store: LibraryStore = Depends(get_store)):
    return store.renew_loan(loan_id, payload.due_date).to_dict()


@app.delete("/api/loans/{loan_id}", dependencies=[Depends(require_admin)])
def delete_loan(loan_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_loan(loan_id)
    return _no_content()


# --- Materials, entities and material loans ---
# Fixed paths are registered before /api/materials/{material_id}.
@app.get("/api/materials/entities", dependencies=[Depends(require_reader)])
def list_entities(store: LibraryStore = Depends(get_store)):
    return [e.to_dict() for e in store.list_entities()]


@app.post("/api/materials/entities", status_code=201, dependencies=[Depends(require_admin)])
def create_entity(payload: EntityModel, store: LibraryStore = Depends(get_store)):
    return store.add_entity(**_dump(payload)).to_dict()


@app.put("/api/materials/entities/{entity_id}", dependencies=[Depends(require_admin)])
def update_entity(entity_id: str, payload: EntityModel, store: LibraryStore = Depends(get_store)):
    return store.update_entity(entity_id, **_dump(payload)).to_dict()


@app.delete("/api/materials/entities/{entity_id}", dependencies=[Depends(require_admin)])
def delete_entity(entity_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_entity(entity_id)
    return _no_content()


@app.get("/api/materials/loans", dependencies=[Depends(require_reader)])
def list_material_loans(status: Optional[str] = Query(None), store: LibraryStore = Depends(get_store)):
    return [loan.to_dict() for loan in store.list_material_loans(status=status)]


@app.post("/api/materials/loans", status_code=201, dependencies=[Depends(require_admin)])
def create_material_loan(payload: MaterialLoanCreateModel, store: LibraryStore = Depends(get_store)):
    loan = store.create_material_loan(
        payload.material_id,
        payload.borrower_id,
        payload.quantity,
        payload.due_date,
        borrower_type=payload.borrower_type,
        notes=payload.notes,
    )
    return loan.to_dict()


@app.post("/api/materials/loans/{loan_id}/return", dependencies=[Depends(require_admin)])
def return_material_loan(loan_id: str, store: LibraryStore = Depends(get_store)):
    return store.return_material_loan(loan_id).to_dict()


@app.post("/api/materials/loans/{loan_id}/renew", dependencies=[Depends(require_admin)])
def renew_material_loan(loan_id: str, payload: RenewModel, store: LibraryStore = Depends(get_store)):
    return store.renew_material_loan(loan_id, payload.due_date).to_dict()


@app.delete("/api/materials/loans/{loan_id}", dependencies=[Depends(require_admin)])
def delete_material_loan(loan_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_material_loan(loan_id)
    return _no_content()


@app.get("/api/materials", dependencies=[Depends(require_reader)])
def list_materials(store: LibraryStore = Depends(get_store)):
    return [m.to_dict() for m in store.list_materials()]


@app.get("/api/materials/{material_id}", dependencies=[Depends(require_reader)])
def get_material(material_id: str, store: LibraryStore = Depends(get_store)):
    material = store.get_material_by_id(material_id)
    if material is None:
        raise NotFound("material", material_id)
    return material.to_dict()


@app.post("/api/materials", status_code=201, dependencies=[Depends(require_admin)])
def create_material(payload: MaterialModel, store: LibraryStore = Depends(get_store)):
    return store.add_material(**_dump(payload)).to_dict()


@app.put("/api/materials/{material_id}", dependencies=[Depends(require_admin)])
def update_material(material_id: str, payload: MaterialModel, store: LibraryStore = Depends(get_store)):
    return store.update_material(material_id, **_dump(payload)).to_dict()


@app.delete("/api/materials/{material_id}", dependencies=[Depends(require_admin)])
def delete_material(material_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_material(material_id)
    return _no_content()


# --- Reading sessions ---
@app.get("/api/reading-sessions", dependencies=[Depends(require_reader)])
def list_reading_sessions(store: LibraryStore = Depends(get_store)):
    return [s.to_dict() for s in store.list_reading_sessions()]


@app.post("/api/reading-sessions", status_code=201, dependencies=[Depends(require_admin)])
def create_reading_session(payload: ReadingSessionModel, store: LibraryStore = Depends(get_store)):
    return store.add_reading_session(**_dump(payload)).to_dict()


@app.put("/api/reading-sessions/{session_id}", dependencies=[Depends(require_admin)])
def update_reading_session(session_id: str, payload: ReadingSessionModel, store: LibraryStore = Depends(get_store)):
    return store.update_reading_session(session_id, **_dump(payload)).to_dict()


@app.delete("/api/reading-sessions/{session_id}", dependencies=[Depends(require_admin)])
def delete_reading_session(session_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_reading_session(session_id)
    return _no_content()


# --- Tasks ---
@app.get("/api/tasks", dependencies=[Depends(require_reader)])
def list_tasks(store: LibraryStore = Depends(get_store)):
    return [t.to_dict() for t in store.list_tasks()]


@app.post("/api/tasks", status_code=201, dependencies=[Depends(require_admin)])
def create_task(payload: TaskModel, store: LibraryStore = Depends(get_store)):
    return store.add_task(**_dump(payload)).to_dict()


@app.put("/api/tasks/{task_id}", dependencies=[Depends(require_admin)])
def update_task(task_id: str, payload: TaskModel, store: LibraryStore = Depends(get_store)):
    return store.update_task(task_id, **_dump(payload)).to_dict()


@app.delete("/api/tasks/{task_id}", dependencies=[Depends(require_admin)])
def delete_task(task_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_task(task_id)
    return _no_content()


# --- Inventory ---
@app.get("/api/inventory", dependencies=[Depends(require_reader)])
def list_inventory_sessions(store: LibraryStore = Depends(get_store)):
    return [s.to_dict() for s in store.list_inventory_sessions()]


@app.get("/api/inventory/{session_id}", dependencies=[Depends(require_reader)])
def get_inventory_session(session_id: str, store: LibraryStore = Depends(get_store)):
    session = store.get_inventory_session_by_id(session_id)
    if session is None:
        raise NotFound("inventory_session", session_id)
    return session.to_dict()


@app.post("/api/inventory", status_code=201, dependencies=[Depends(require_admin)])
def start_inventory(payload: InventoryCreateModel, store: LibraryStore = Depends(get_store)):
    session = store.start_inventory(payload.name, payload.session_type, payload.book_ids, payload.notes)
    return session.to_dict()


@app.put("/api/inventory/{session_id}/items/{book_id}", dependencies=[Depends(require_admin)])
def check_inventory_item(
    session_id: str, book_id: str, payload: InventoryCheckModel, store: LibraryStore = Depends(get_store)
):
    return store.check_inventory_item(session_id, book_id, payload.found_quantity, payload.notes).to_dict()


@app.post("/api/inventory/{session_id}/complete", dependencies=[Depends(require_admin)])
def complete_inventory(session_id: str, store: LibraryStore = Depends(get_store)):
    return store.complete_inventory(session_id).to_dict()


@app.post("/api/inventory/{session_id}/cancel", dependencies=[Depends(require_admin)])
def cancel_inventory(session_id: str, store: LibraryStore = Depends(get_store)):
    return store.cancel_inventory(session_id).to_dict()


@app.delete("/api/inventory/{session_id}", dependencies=[Depends(require_admin)])
def delete_inventory_session(session_id: str, store: LibraryStore = Depends(get_store)):
    store.delete_inventory_session(session_id)
    return _no_content()


# --- Dashboard ---
@app.get("/api/dashboard/stats", response_model=StatsModel, dependencies=[Depends(require_reader)])
def dashboard_stats(store: LibraryStore = Depends(get_store)):
    return store.get_stats().to_dict()


@app.get("/api/dashboard/overdue-count", dependencies=[Depends(require_reader)])
def dashboard_overdue_count(store: LibraryStore = Depends(get_store)):
    return {"overdue": store.count_overdue()}


@app.get("/api/dashboard/category-distribution", dependencies=[Depends(require_reader)])
def dashboard_category_distribution(store: LibraryStore = Depends(get_store)):
    result = []
    for category_id, count in store.category_distribution():
        category = store.get_category_by_id(category_id)
        result.append({
            "category_id": category_id,
            "name": category.name,
            "color": category.color,
            "book_count": count,
        })
    return result


@app.get("/api/dashboard/recent-activity", dependencies=[Depends(require_reader)])
def dashboard_recent_activity(
    limit: int = Query(settings.recent_activity_limit, ge=0, le=100),
    store: LibraryStore = Depends(get_store),
):
    return [record.to_dict() for record in store.recent_activity(limit)]


@app.get("/api/dashboard/due-soon", dependencies=[Depends(require_reader)])
def dashboard_due_soon(
    days: int = Query(settings.due_soon_days, ge=0),
    store: LibraryStore = Depends(get_store),
):
    return [loan.to_dict() for loan in store.loans_due_soon(days)]


# --- Audit log ---
@app.get("/api/audit-log", dependencies=[Depends(require_admin)])
def list_audit_log(
    kind: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    audit_log: AuditLog = Depends(get_audit_log),
):
    return audit_log.page(page=page, page_size=page_size, kind=kind, action=action, start=start_date, end=end_date)


@app.get("/api/audit-log/stats", dependencies=[Depends(require_admin)])
def audit_log_stats(days: int = Query(30, ge=1, le=365), audit_log: AuditLog = Depends(get_audit_log)):
    return audit_log.stats(days)


# --- Reports ---
@app.get("/api/reports/{name}", dependencies=[Depends(require_reader)])
def get_report(
    name: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    store: LibraryStore = Depends(get_store),
):
    if name not in REPORTS:
        raise HTTPException(status_code=404, detail=f"Unknown report {name!r}")
    return build_report(name, store, start_date, end_date)
