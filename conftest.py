from datetime import date, timedelta

import pytest

from docucenter.store import LibraryStore

TODAY = date(2024, 12, 10)


class FakeClock:
    """Settable 'today' for the store."""

    def __init__(self, current: date = TODAY) -> None:
        self.current = current

    def __call__(self) -> date:
        return self.current

    def advance(self, days: int) -> None:
        self.current = self.current + timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    # Each test gets its own in-memory store pinned to TODAY
    return LibraryStore(today=clock)


@pytest.fixture
def library(store):
    """A store with a category, a two-copy book, a class and three participants."""
    category = store.add_category(name="Adventure", color="hsl(262, 83%, 58%)")
    book = store.add_book(title="Wonder", author="R.J. Palacio", category_id=category.id, quantity=2)
    school_class = store.add_school_class(name="Grade 3A", age_range="8-9")
    readers = [
        store.add_participant(number=str(1000 + i), first_name=name, last_name="Reader", class_id=school_class.id)
        for i, name in enumerate(["Emma", "Liam", "Olivia"])
    ]
    return {
        "store": store,
        "category": category,
        "book": book,
        "class": school_class,
        "participants": readers,
    }


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")
