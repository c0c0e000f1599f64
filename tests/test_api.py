from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from docucenter.api import app, get_audit_log, get_store
from docucenter.audit import AuditLog
from docucenter.config import settings

ADMIN = {"X-Admin-PIN": "9999"}
GUEST = {"X-Guest-PIN": "0000"}


@pytest.fixture
def client(library, monkeypatch):
    monkeypatch.setattr(settings, "admin_pin", "9999")
    monkeypatch.setattr(settings, "guest_pins", ["0000"])
    audit_log = AuditLog()
    library["store"].subscribe(audit_log)
    app.dependency_overrides[get_store] = lambda: library["store"]
    app.dependency_overrides[get_audit_log] = lambda: audit_log
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["total_books"] == 1


def test_verify_pins(client):
    assert client.post("/api/auth/verify-admin", json={"pin": "9999"}).json()["valid"] is True
    assert client.post("/api/auth/verify-admin", json={"pin": "1111"}).json()["valid"] is False
    assert client.post("/api/auth/verify-guest", json={"pin": "0000"}).json()["valid"] is True


def test_reads_require_a_pin(client):
    assert client.get("/api/books").status_code == 401
    assert client.get("/api/books", headers=GUEST).status_code == 200
    assert client.get("/api/books", headers=ADMIN).status_code == 200


def test_writes_require_admin(client):
    response = client.post("/api/books", headers=GUEST, json={"title": "Holes"})
    assert response.status_code == 403


def test_book_crud(client, library):
    response = client.post("/api/books", headers=ADMIN, json={"title": "Holes", "quantity": 2})
    assert response.status_code == 201
    book = response.json()
    assert book["available_copies"] == 2

    response = client.put(f"/api/books/{book['id']}", headers=ADMIN, json={"author": "Louis Sachar"})
    assert response.json()["author"] == "Louis Sachar"
    assert response.json()["title"] == "Holes"

    assert client.delete(f"/api/books/{book['id']}", headers=ADMIN).status_code == 204
    response = client.get(f"/api/books/{book['id']}", headers=ADMIN)
    assert response.status_code == 404
    assert "not found" in response.json()["message"]


def test_books_filtered_by_category(client, library):
    client.post("/api/books", headers=ADMIN, json={"title": "Loose"})
    response = client.get("/api/books", headers=GUEST, params={"category_id": library["category"].id})
    assert [b["title"] for b in response.json()] == ["Wonder"]


def test_empty_title_is_bad_request(client):
    response = client.post("/api/books", headers=ADMIN, json={"title": ""})
    assert response.status_code == 400
    assert "Title" in response.json()["message"]


def test_duplicate_reader_number_is_conflict(client):
    payload = {"number": "1000", "first_name": "Ava", "last_name": "Anderson"}
    response = client.post("/api/participants", headers=ADMIN, json=payload)
    assert response.status_code == 409


def test_guarded_delete_reports_count(client, library):
    response = client.delete(f"/api/classes/{library['class'].id}", headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["count"] == 3


def test_classes_include_participant_count(client, library):
    response = client.get("/api/classes", headers=GUEST)
    assert response.json()[0]["participant_count"] == 3

    response = client.get(f"/api/classes/{library['class'].id}/participants", headers=GUEST)
    assert len(response.json()) == 3


def test_transfer_class(client, library):
    target = client.post("/api/classes", headers=ADMIN, json={"name": "Grade 4A"}).json()
    response = client.post(
        f"/api/classes/{library['class'].id}/transfer", headers=ADMIN, json={"to_class_id": target["id"]}
    )
    assert response.json() == {"moved": 3}
    assert client.delete(f"/api/classes/{library['class'].id}", headers=ADMIN).status_code == 204


def test_loan_lifecycle(client, library, clock):
    emma = library["participants"][0]
    due = (clock() + timedelta(days=7)).isoformat()
    response = client.post(
        "/api/loans", headers=ADMIN, json={"book_id": library["book"].id, "borrower_id": emma.id, "due_date": due}
    )
    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "active"
    assert loan["borrower_name"] == "Emma Reader"

    new_due = (clock() + timedelta(days=21)).isoformat()
    response = client.post(f"/api/loans/{loan['id']}/renew", headers=ADMIN, json={"due_date": new_due})
    assert response.json()["due_date"] == new_due

    response = client.post(f"/api/loans/{loan['id']}/return", headers=ADMIN)
    assert response.json()["status"] == "returned"

    response = client.post(f"/api/loans/{loan['id']}/return", headers=ADMIN)
    assert response.status_code == 400
    assert "already been returned" in response.json()["message"]


def test_loan_without_copies_is_refused(client, library, clock):
    due = (clock() + timedelta(days=7)).isoformat()
    for reader in library["participants"][:2]:
        client.post("/api/loans", headers=ADMIN, json={"book_id": library["book"].id, "borrower_id": reader.id, "due_date": due})

    response = client.post(
        "/api/loans",
        headers=ADMIN,
        json={"book_id": library["book"].id, "borrower_id": library["participants"][2].id, "due_date": due},
    )
    assert response.status_code == 400
    assert "No copies available" in response.json()["message"]


def test_loans_status_filter(client, library, clock):
    store = library["store"]
    store.create_loan(library["book"].id, library["participants"][0].id, clock() + timedelta(days=1))
    clock.advance(2)

    assert len(client.get("/api/loans", headers=GUEST, params={"status": "overdue"}).json()) == 1
    assert client.get("/api/loans", headers=GUEST, params={"status": "lost"}).status_code == 400


def test_material_loans(client, library, clock):
    material = client.post("/api/materials", headers=ADMIN, json={"name": "Projector", "quantity": 2}).json()
    entity = client.post("/api/materials/entities", headers=ADMIN, json={"name": "Parents Association"}).json()
    due = (clock() + timedelta(days=7)).isoformat()

    response = client.post(
        "/api/materials/loans",
        headers=ADMIN,
        json={"material_id": material["id"], "borrower_id": entity["id"], "borrower_type": "entity", "quantity": 2, "due_date": due},
    )
    assert response.status_code == 201
    assert client.get(f"/api/materials/{material['id']}", headers=GUEST).json()["available_quantity"] == 0

    loan_id = response.json()["id"]
    assert client.delete(f"/api/materials/entities/{entity['id']}", headers=ADMIN).status_code == 400
    client.post(f"/api/materials/loans/{loan_id}/return", headers=ADMIN)
    assert client.get("/api/materials/loans", headers=GUEST, params={"status": "returned"}).json()[0]["id"] == loan_id


def test_inventory_routes(client, library):
    session = client.post("/api/inventory", headers=ADMIN, json={"name": "Spring"}).json()
    assert session["total_books"] == 1

    response = client.put(
        f"/api/inventory/{session['id']}/items/{library['book'].id}", headers=ADMIN, json={"found_quantity": 2}
    )
    assert response.json()["checked_books"] == 1

    response = client.post(f"/api/inventory/{session['id']}/complete", headers=ADMIN)
    assert response.json()["status"] == "completed"


def test_dashboard(client, library, clock):
    store = library["store"]
    store.create_loan(library["book"].id, library["participants"][0].id, clock() + timedelta(days=1))

    stats = client.get("/api/dashboard/stats", headers=GUEST).json()
    assert stats["active_loans"] == 1
    assert stats["available_books"] == 1

    assert client.get("/api/dashboard/overdue-count", headers=GUEST).json() == {"overdue": 0}

    distribution = client.get("/api/dashboard/category-distribution", headers=GUEST).json()
    assert distribution == [
        {"category_id": library["category"].id, "name": "Adventure", "color": "hsl(262, 83%, 58%)", "book_count": 1}
    ]

    activity = client.get("/api/dashboard/recent-activity", headers=GUEST, params={"limit": 3}).json()
    assert activity[0]["title"] == "Wonder"

    assert len(client.get("/api/dashboard/due-soon", headers=GUEST).json()) == 1


def test_audit_log_is_admin_only(client):
    assert client.get("/api/audit-log").status_code == 403
    assert client.get("/api/audit-log", headers=GUEST).status_code == 403
    assert client.get("/api/audit-log/stats", headers=GUEST).status_code == 403


def test_audit_log_lists_changes(client):
    book = client.post("/api/books", headers=ADMIN, json={"title": "Holes", "quantity": 1}).json()
    client.put(f"/api/books/{book['id']}", headers=ADMIN, json={"author": "Louis Sachar"})
    client.post("/api/tasks", headers=ADMIN, json={"title": "Label shelves"})

    body = client.get("/api/audit-log", headers=ADMIN, params={"kind": "book"}).json()
    assert body["total"] == 2
    assert [row["action"] for row in body["data"]] == ["update", "create"]
    assert body["data"][0]["entity_id"] == book["id"]

    body = client.get("/api/audit-log", headers=ADMIN, params={"page_size": 1, "page": 2}).json()
    assert body["total"] == 3
    assert body["total_pages"] == 3
    assert len(body["data"]) == 1

    assert client.get("/api/audit-log", headers=ADMIN, params={"page": 0}).status_code == 422

    stats = client.get("/api/audit-log/stats", headers=ADMIN).json()
    assert stats["total"] == 3
    assert {"value": "book", "count": 2} in stats["by_kind"]
    assert sum(day["count"] for day in stats["recent_activity"]) == 3


def test_reports(client, library, clock):
    store = library["store"]
    store.create_loan(library["book"].id, library["participants"][0].id, clock() + timedelta(days=7))

    response = client.get("/api/reports/books", headers=GUEST)
    assert response.status_code == 200
    assert response.json()["most_loaned"][0]["loan_count"] == 1
    assert response.json()["stats"]["available_copies"] == 1

    loans = client.get("/api/reports/loans", headers=GUEST).json()
    assert loans["stats"]["active"] == 1

    after = client.get("/api/reports/loans", headers=GUEST, params={"start_date": "2024-12-11"}).json()
    assert after["stats"]["total"] == 0

    classes = client.get("/api/reports/classes", headers=GUEST).json()
    assert classes["classes"][0]["loan_count"] == 1
    participants = client.get("/api/reports/participants", headers=GUEST).json()
    assert participants["stats"]["total"] == 3


def test_report_errors(client):
    assert client.get("/api/reports/books").status_code == 401
    assert client.get("/api/reports/tasks", headers=GUEST).status_code == 404
    assert client.get("/api/reports/books", headers=GUEST, params={"start_date": "soon"}).status_code == 422
