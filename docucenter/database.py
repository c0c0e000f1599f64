import json
import logging
import os
import sqlite3
import tempfile
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .models import ChangeEvent
from .store import KINDS, LibraryStore

# Make sure .env values are visible before DATABASE_FILE is computed.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override)
# 2) per-process temp file
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or os.path.join(
    tempfile.gettempdir(), f"docucenter_{os.getpid()}.db"
)


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database."""
    conn = sqlite3.connect(db_file or DATABASE_FILE)
    conn.row_factory = sqlite3.Row
    return conn


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the records and audit_log tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS records (
                kind TEXT NOT NULL,
                id TEXT NOT NULL,
                position INTEGER NOT NULL,
                payload TEXT NOT NULL,
                PRIMARY KEY (kind, id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_records_kind ON records (kind, position)")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                action TEXT NOT NULL,
                kind TEXT NOT NULL,
                entity_id TEXT,
                details TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def save_records(records: Dict[str, List[Dict[str, Any]]], db_file: Optional[str] = None) -> None:
    """Replace the stored snapshot with ``records`` in one transaction."""
    conn = get_db_connection(db_file)
    try:
        with conn:
            conn.execute("DELETE FROM records")
            conn.executemany(
                "INSERT INTO records (kind, id, position, payload) VALUES (?, ?, ?, ?)",
                [
                    (kind, row["id"], position, json.dumps(row, ensure_ascii=False))
                    for kind, rows in records.items()
                    for position, row in enumerate(rows)
                ],
            )
    finally:
        conn.close()


def load_records(db_file: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Read the stored snapshot, grouped by kind and in insertion order."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.execute("SELECT kind, payload FROM records ORDER BY kind, position")
        records: Dict[str, List[Dict[str, Any]]] = {kind: [] for kind in KINDS}
        for row in cursor.fetchall():
            if row["kind"] not in records:
                logger.warning("Skipping records of unknown kind %r", row["kind"])
                continue
            records[row["kind"]].append(json.loads(row["payload"]))
        return records
    finally:
        conn.close()


def append_audit_entry(entry: Dict[str, Any], db_file: Optional[str] = None) -> None:
    conn = get_db_connection(db_file)
    try:
        with conn:
            conn.execute(
                "INSERT INTO audit_log (id, timestamp, action, kind, entity_id, details) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry["id"],
                    entry["timestamp"],
                    entry["action"],
                    entry["kind"],
                    entry["entity_id"],
                    json.dumps(entry["details"], ensure_ascii=False, default=str),
                ),
            )
    finally:
        conn.close()


def load_audit_entries(db_file: Optional[str] = None) -> List[Dict[str, Any]]:
    """Stored audit entries in the order they were written."""
    conn = get_db_connection(db_file)
    try:
        rows = conn.execute("SELECT * FROM audit_log ORDER BY rowid").fetchall()
        return [{**dict(row), "details": json.loads(row["details"])} for row in rows]
    finally:
        conn.close()


class SQLiteSync:
    """Store listener that mirrors every change into SQLite.

    Writes happen after the in-memory mutation has been applied; a failed write is
    logged and the store keeps running on its in-memory state.
    """

    def __init__(self, store: LibraryStore, db_file: Optional[str] = None) -> None:
        self.store = store
        self.db_file = db_file or DATABASE_FILE
        self.failures = 0
        initialize_database(self.db_file)

    def __call__(self, event: ChangeEvent) -> None:
        try:
            save_records(self.store.export_records(), self.db_file)
        except sqlite3.Error as exc:
            self.failures += 1
            logger.warning("Could not persist %s %s to %s: %s", event.action, event.kind, self.db_file, exc)


def load_store(db_file: Optional[str] = None, **store_kwargs: Any) -> LibraryStore:
    """Build a store from ``db_file`` and keep it synchronised with the file."""
    db_file = db_file or DATABASE_FILE
    initialize_database(db_file)
    store = LibraryStore(**store_kwargs)
    store.load_records(load_records(db_file))
    store.subscribe(SQLiteSync(store, db_file))
    return store
