import dataclasses

import pytest

from docucenter.collection import Collection, create_id
from docucenter.errors import DuplicateKey, NotFound


def test_create_id_is_unique():
    ids = {create_id() for _ in range(1000)}
    assert len(ids) == 1000


def test_collection_keeps_insertion_order_on_replace():
    collection = Collection("thing")
    collection.put("a", 1)
    collection.put("b", 2)
    collection.put("a", 3)
    assert collection.values() == [3, 2]
    assert collection.get("a") == 3
    assert collection.get(None) is None
    assert "b" in collection
    assert collection.remove("b") == 2
    assert len(collection) == 1


def test_add_list_and_get(store):
    assert store.list_books() == []

    book = store.add_book(title="Ulysses", author="James Joyce", quantity=3)

    assert book.id
    assert store.get_book_by_id(book.id).title == "Ulysses"
    assert store.get_book_by_id(book.id).available_copies == 3
    assert len(store.list_books()) == 1
    assert store.get_book_by_id("missing") is None


def test_add_sets_created_at_to_today(store, clock):
    book = store.add_book(title="Dog Man")
    assert book.created_at == clock()


def test_list_preserves_insertion_order_across_updates(store):
    first = store.add_category(name="Adventure")
    second = store.add_category(name="Fantasy")
    third = store.add_category(name="Science")

    store.update_category(first.id, name="Adventures")

    assert [c.id for c in store.list_categories()] == [first.id, second.id, third.id]
    assert store.list_categories()[0].name == "Adventures"


def test_update_is_partial_and_keeps_id(store):
    book = store.add_book(title="Old Title", author="Old Author")

    updated = store.update_book(book.id, title="New Title")

    assert updated.id == book.id
    assert updated.title == "New Title"
    assert updated.author == "Old Author"


def test_update_rejects_id_and_derived_fields(store):
    book = store.add_book(title="Wonder")

    with pytest.raises(ValueError, match="id"):
        store.update_book(book.id, id="other")
    with pytest.raises(ValueError, match="available_copies"):
        store.update_book(book.id, available_copies=10)
    with pytest.raises(ValueError, match="Nothing to update"):
        store.update_book(book.id)


def test_update_unknown_id_raises_not_found(store):
    with pytest.raises(NotFound):
        store.update_book("nonexistent", title="New Title")


def test_delete_unknown_id_raises_not_found(store):
    with pytest.raises(NotFound):
        store.delete_task("nonexistent")


def test_add_rejects_unknown_fields_and_missing_required(store):
    with pytest.raises(ValueError, match="pages"):
        store.add_book(title="Wonder", pages=300)
    with pytest.raises(ValueError):
        store.add_book(author="Nobody")
    with pytest.raises(ValueError, match="Title"):
        store.add_book(title="   ")
    assert store.list_books() == []


def test_add_book_with_unknown_category_is_refused(store):
    with pytest.raises(NotFound):
        store.add_book(title="Wonder", category_id="missing")
    assert store.list_books() == []


def test_snapshots_are_immutable(store):
    book = store.add_book(title="Wonder", quantity=2)
    with pytest.raises(dataclasses.FrozenInstanceError):
        book.quantity = 10
    assert store.get_book_by_id(book.id).quantity == 2


def test_list_returns_a_copy(store):
    store.add_task(title="Label new books")
    tasks = store.list_tasks()
    tasks.clear()
    assert len(store.list_tasks()) == 1


def test_duplicate_participant_number(library):
    store = library["store"]
    with pytest.raises(DuplicateKey) as excinfo:
        store.add_participant(number="1000", first_name="Ava", last_name="Anderson")
    assert excinfo.value.value == "1000"
    assert len(store.list_participants()) == 3


def test_duplicate_number_on_update(library):
    store = library["store"]
    emma, liam, _ = library["participants"]
    with pytest.raises(DuplicateKey):
        store.update_participant(liam.id, number=emma.number)
    # Re-saving a participant with its own number is fine
    assert store.update_participant(emma.id, number=emma.number, first_name="Emmy").first_name == "Emmy"


def test_reader_numbers_are_unique_per_collection(library):
    store = library["store"]
    # An other reader may reuse a participant's number
    reader = store.add_other_reader(number="1000", first_name="Paul", last_name="Parent", reader_type="parent")
    assert reader.number == "1000"
    with pytest.raises(DuplicateKey):
        store.add_other_reader(number="1000", first_name="Sam", last_name="Staff", reader_type="staff")


def test_invalid_choice_values(store):
    with pytest.raises(ValueError, match="reader type"):
        store.add_other_reader(number="1", first_name="A", last_name="B", reader_type="alien")
    with pytest.raises(ValueError, match="priority"):
        store.add_task(title="Shelve", priority="urgent")
    with pytest.raises(ValueError, match="condition"):
        store.add_material(name="Projector", condition="broken")


def test_participant_class_must_exist(store):
    with pytest.raises(NotFound):
        store.add_participant(number="1", first_name="A", last_name="B", class_id="missing")


def test_dates_are_parsed_from_iso_strings(store):
    task = store.add_task(title="Inventory", due_date="2024-12-31")
    assert task.due_date.isoformat() == "2024-12-31"


def test_subscribers_receive_change_events(store):
    events = []
    unsubscribe = store.subscribe(events.append)

    category = store.add_category(name="Comics")
    store.update_category(category.id, color="blue")
    store.delete_category(category.id)
    unsubscribe()
    store.add_category(name="Science")

    assert [(e.action, e.kind, e.entity_id) for e in events] == [
        ("create", "category", category.id),
        ("update", "category", category.id),
        ("delete", "category", category.id),
    ]


def test_failed_mutation_publishes_nothing(store):
    events = []
    store.subscribe(events.append)
    with pytest.raises(ValueError):
        store.add_category(name="")
    assert events == []


def test_failing_listener_does_not_undo_mutation(store):
    def broken(event):
        raise RuntimeError("listener down")

    store.subscribe(broken)
    category = store.add_category(name="Mystery")
    assert store.get_category_by_id(category.id) is not None
