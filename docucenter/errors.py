"""Domain errors raised by the library store.

Each error carries the data a front end needs to build its own message, so
callers can catch :class:`LibraryError` and show ``str(exc)`` directly.
"""

from typing import Optional


class LibraryError(Exception):
    """Base class for every expected, recoverable store failure."""


class NotFound(LibraryError, LookupError):
    def __init__(self, kind: str, entity_id: Optional[str]) -> None:
        self.kind = kind
        self.entity_id = entity_id
        label = kind.replace("_", " ").capitalize()
        super().__init__(f"{label} {entity_id} not found.")


class HasActiveDependents(LibraryError):
    """Delete refused because live records still reference the entity."""

    def __init__(self, kind: str, entity_id: str, count: int) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.count = count
        label = kind.replace("_", " ")
        noun = "dependent" if count == 1 else "dependents"
        super().__init__(f"Cannot delete {label} {entity_id}: it has {count} active {noun}.")


class AlreadyReturned(LibraryError):
    def __init__(self, loan_id: str) -> None:
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} has already been returned.")


class InvalidTransition(LibraryError):
    pass


class DuplicateKey(LibraryError):
    def __init__(self, field: str, value: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"A reader with {field} {value!r} already exists.")
