"""Docucenter - school library management core

This package contains:
- Domain store: collections, integrity guard, loan lifecycle and queries (store.py)
- Entity models (models.py) and domain errors (errors.py)
- SQLite snapshot persistence (database.py)
- Audit trail (audit.py) and report aggregations (reports.py)
- HTTP API (api.py) and its client (api_client.py)
- CLI interface (cli.py)
"""

from .errors import AlreadyReturned, DuplicateKey, HasActiveDependents, InvalidTransition, LibraryError, NotFound
from .store import LibraryStore, derive_status

__all__ = [
    "LibraryStore",
    "derive_status",
    "LibraryError",
    "NotFound",
    "HasActiveDependents",
    "AlreadyReturned",
    "InvalidTransition",
    "DuplicateKey",
]
