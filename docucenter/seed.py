from datetime import timedelta

from .store import LibraryStore

CATEGORIES = [
    ("Adventure", "Exciting adventure stories", "hsl(262, 83%, 58%)"),
    ("Fantasy", "Magical worlds and creatures", "hsl(174, 72%, 40%)"),
    ("Science", "Learn about the world", "hsl(25, 95%, 53%)"),
    ("Mystery", "Solve the puzzle", "hsl(340, 75%, 55%)"),
    ("Comics", "Graphic novels and comics", "hsl(200, 80%, 50%)"),
]

# (title, author, isbn, category name, quantity)
BOOKS = [
    ("The Magic Treehouse", "Mary Pope Osborne", "978-0679824114", "Adventure", 5),
    ("Harry Potter and the Sorcerer's Stone", "J.K. Rowling", "978-0439708180", "Fantasy", 8),
    ("Diary of a Wimpy Kid", "Jeff Kinney", "978-0810993136", "Comics", 10),
    ("The One and Only Ivan", "Katherine Applegate", "978-0061992254", "Adventure", 4),
    ("Wonder", "R.J. Palacio", "978-0375869020", "Adventure", 6),
    ("Percy Jackson: The Lightning Thief", "Rick Riordan", "978-0786838653", "Fantasy", 7),
    ("National Geographic Kids Encyclopedia", "National Geographic", "978-1426325427", "Science", 3),
    ("The Wild Robot", "Peter Brown", "978-0316381994", "Science", 5),
    ("Cam Jansen Mystery Series", "David A. Adler", "978-0142400203", "Mystery", 6),
    ("Dog Man", "Dav Pilkey", "978-0545581608", "Comics", 12),
    ("Charlotte's Web", "E.B. White", "978-0064400558", "Adventure", 4),
    ("The Chronicles of Narnia", "C.S. Lewis", "978-0066238500", "Fantasy", 5),
]

CLASSES = [
    ("Grade 3A", "8-9", "Mrs. Johnson"),
    ("Grade 3B", "8-9", "Mr. Smith"),
    ("Grade 4A", "9-10", "Mrs. Davis"),
    ("Grade 4B", "9-10", "Mr. Wilson"),
]

# (number, first name, last name, class name)
PARTICIPANTS = [
    ("1234", "Emma", "Wilson", "Grade 3A"),
    ("2345", "Liam", "Brown", "Grade 3A"),
    ("3456", "Olivia", "Garcia", "Grade 3B"),
    ("4567", "Noah", "Martinez", "Grade 4A"),
    ("5678", "Ava", "Anderson", "Grade 4B"),
]


def seed_demo_data(store: LibraryStore) -> None:
    """Fill an empty store with demo categories, books, readers and loans."""
    today = store.today()
    categories = {
        name: store.add_category(name=name, description=description, color=color).id
        for name, description, color in CATEGORIES
    }
    books = [
        store.add_book(title=title, author=author, isbn=isbn, category_id=categories[category], quantity=quantity)
        for title, author, isbn, category, quantity in BOOKS
    ]
    classes = {
        name: store.add_school_class(name=name, age_range=age_range, monitor_name=monitor).id
        for name, age_range, monitor in CLASSES
    }
    participants = [
        store.add_participant(number=number, first_name=first, last_name=last, class_id=classes[class_name])
        for number, first, last, class_name in PARTICIPANTS
    ]

    # One loan on time, one overdue, one due soon and one already returned.
    store.create_loan(books[0].id, participants[0].id, today + timedelta(days=10), loan_date=today - timedelta(days=4))
    store.create_loan(books[1].id, participants[1].id, today - timedelta(days=2), loan_date=today - timedelta(days=16))
    store.create_loan(books[5].id, participants[2].id, today + timedelta(days=2), loan_date=today - timedelta(days=12))
    returned = store.create_loan(
        books[2].id, participants[3].id, today - timedelta(days=1), loan_date=today - timedelta(days=15)
    )
    store.return_loan(returned.id)

    projector = store.add_material(name="Projector", quantity=2, serial_number="PJ-001", condition="good")
    school = store.add_entity(name="Parents Association", contact_person="Mrs. Johnson")
    store.create_material_loan(projector.id, school.id, 1, today + timedelta(days=7), borrower_type="entity")

    store.add_task(title="Label new books", priority="high")
    store.add_reading_session(participant_id=participants[4].id, book_id=books[9].id, reading_type="normal")
