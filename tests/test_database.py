import sqlite3
from datetime import timedelta

from docucenter import database
from docucenter.database import SQLiteSync, initialize_database, load_records, load_store


def test_initialize_creates_records_table(db_file):
    initialize_database(db_file)
    conn = database.get_db_connection(db_file)
    try:
        tables = [row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")]
    finally:
        conn.close()
    assert "records" in tables


def test_changes_survive_reload(db_file, clock):
    store = load_store(db_file, today=clock)
    category = store.add_category(name="Adventure")
    book = store.add_book(title="Wonder", category_id=category.id, quantity=2)
    reader = store.add_participant(number="1000", first_name="Emma", last_name="Reader")
    loan = store.create_loan(book.id, reader.id, clock() + timedelta(days=7))
    store.add_task(title="Second", priority="low")
    store.add_task(title="First", priority="high")

    reloaded = load_store(db_file, today=clock)

    assert reloaded.get_book_by_id(book.id).available_copies == 1
    assert reloaded.get_loan_by_id(loan.id).due_date == loan.due_date
    assert reloaded.get_loan_by_id(loan.id).status == "active"
    assert [t.title for t in reloaded.list_tasks()] == ["Second", "First"]
    assert reloaded.list_categories() == store.list_categories()


def test_derived_fields_are_not_stored(db_file, clock):
    store = load_store(db_file, today=clock)
    book = store.add_book(title="Holes", quantity=3)

    stored = load_records(db_file)["book"][0]

    assert stored["id"] == book.id
    assert "available_copies" not in stored


def test_inventory_items_round_trip(db_file, clock):
    store = load_store(db_file, today=clock)
    book = store.add_book(title="Holes", quantity=3)
    session = store.start_inventory("Spring")
    store.check_inventory_item(session.id, book.id, 2)

    reloaded = load_store(db_file, today=clock).get_inventory_session_by_id(session.id)

    assert reloaded.items[0].found_quantity == 2
    assert reloaded.items[0].status == "discrepancy"


def test_failed_write_keeps_in_memory_state(tmp_path, db_file, clock, caplog):
    store = load_store(db_file, today=clock)
    sync = SQLiteSync(store, db_file)
    store.subscribe(sync)
    # A directory cannot be opened as a database
    sync.db_file = str(tmp_path)

    category = store.add_category(name="Science")

    assert sync.failures == 1
    assert store.get_category_by_id(category.id) is not None
    assert "Could not persist" in caplog.text


def test_unknown_kinds_are_skipped(db_file):
    initialize_database(db_file)
    conn = sqlite3.connect(db_file)
    with conn:
        conn.execute(
            "INSERT INTO records (kind, id, position, payload) VALUES (?, ?, ?, ?)",
            ("spaceship", "x", 0, "{}"),
        )
    conn.close()

    records = load_records(db_file)

    assert "spaceship" not in records
    assert records["book"] == []
