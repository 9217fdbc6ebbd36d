import itertools
import json
import logging
import os
import secrets
import sqlite3
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    USERS = "users"
    HOUSES = "houses"
    BOOKINGS = "bookings"
    JOBS = "jobs"
    CLEANERS = "cleaners"
    NOTIFICATIONS = "notifications"
    CONVERSATIONS = "conversations"
    MESSAGES = "messages"
    REVIEWS = "reviews"
    TRANSACTIONS = "transactions"
    PROMO_CODES = "promo_codes"
    SETTINGS = "settings"


COLLECTION_NAMES = {item.value for item in Collection}

ID_PREFIXES = {
    "users": "user",
    "houses": "house",
    "bookings": "booking",
    "jobs": "job",
    "cleaners": "cleaner",
    "notifications": "notification",
    "conversations": "conv",
    "messages": "msg",
    "reviews": "review",
    "transactions": "txn",
    "promo_codes": "promo",
    "settings": "setting",
}


class StoreError(ValueError):
    """Base class for user-visible store errors."""


class StoreValidationError(StoreError):
    pass


class DocumentNotFoundError(StoreError):
    pass


class StoreConflictError(StoreError):
    pass


class StorePermissionError(StoreError):
    pass


_id_counter = itertools.count(1)
_id_lock = Lock()


def generate_id(prefix: str = "") -> str:
    with _id_lock:
        sequence = next(_id_counter)
    stamp = int(time.time() * 1000)
    suffix = f"{sequence:x}{secrets.token_hex(3)}"
    return f"{prefix}-{stamp}-{suffix}" if prefix else f"{stamp}-{suffix}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _collection_name(collection: Any) -> str:
    name = collection.value if isinstance(collection, Collection) else str(collection)
    if name not in COLLECTION_NAMES:
        raise StoreValidationError(f"Unknown collection: {name}")
    return name


def _decode(raw: str, name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Skipping unreadable document %s/%s", name, doc_id)
        return None
    return parsed if isinstance(parsed, dict) else None


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


class DocumentStore:
    """Collection-scoped JSON documents kept in a single sqlite table.

    Every write commits before returning, so a read issued after a write
    call completes always observes it. There is no multi-document
    atomicity; ``conditional_update`` is the only read-check-write primitive.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        id TEXT NOT NULL,
                        data_json TEXT NOT NULL,
                        PRIMARY KEY (collection, id)
                    )
                    """
                )
                conn.commit()

    def _read(self, conn: sqlite3.Connection, name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            "SELECT data_json FROM documents WHERE collection = ? AND id = ?",
            (name, doc_id),
        ).fetchone()
        if not row:
            return None
        return _decode(row["data_json"], name, doc_id)

    def _write(self, conn: sqlite3.Connection, name: str, doc_id: str, doc: Dict[str, Any]) -> None:
        conn.execute(
            """
            INSERT INTO documents (collection, id, data_json) VALUES (?, ?, ?)
            ON CONFLICT(collection, id) DO UPDATE SET data_json = excluded.data_json
            """,
            (name, doc_id, json.dumps(doc)),
        )

    def generate_id(self, prefix: str = "") -> str:
        return generate_id(prefix)

    def add_doc(self, collection: Any, data: Dict[str, Any]) -> str:
        name = _collection_name(collection)
        doc_id = str(data.get("id") or generate_id(ID_PREFIXES[name]))
        now = utc_now()
        doc = {**data, "id": doc_id, "created_at": data.get("created_at") or now, "updated_at": now}
        with self._lock:
            with self._connect() as conn:
                if self._read(conn, name, doc_id) is not None:
                    raise StoreConflictError(f"Document {doc_id} already exists in {name}")
                self._write(conn, name, doc_id, doc)
                conn.commit()
        return doc_id

    def set_doc(self, collection: Any, doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        name = _collection_name(collection)
        now = utc_now()
        with self._lock:
            with self._connect() as conn:
                existing = self._read(conn, name, doc_id)
                created_at = existing.get("created_at") if existing else data.get("created_at")
                doc = {**data, "id": doc_id, "created_at": created_at or now, "updated_at": now}
                self._write(conn, name, doc_id, doc)
                conn.commit()
        return doc

    def update_doc(self, collection: Any, doc_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        name = _collection_name(collection)
        with self._lock:
            with self._connect() as conn:
                existing = self._read(conn, name, doc_id)
                if existing is None:
                    raise DocumentNotFoundError(f"Document {doc_id} not found in {name}")
                doc = {
                    **existing,
                    **partial,
                    "id": doc_id,
                    "created_at": existing.get("created_at"),
                    "updated_at": utc_now(),
                }
                self._write(conn, name, doc_id, doc)
                conn.commit()
        return doc

    def conditional_update(
        self,
        collection: Any,
        doc_id: str,
        updates: Dict[str, Any],
        condition: Dict[str, Any],
    ) -> Tuple[bool, Optional[Dict[str, Any]]]:
        name = _collection_name(collection)
        with self._lock:
            with self._connect() as conn:
                existing = self._read(conn, name, doc_id)
                if existing is None:
                    return False, None
                for key, expected in condition.items():
                    if not _strict_equals(existing.get(key), expected):
                        return False, existing
                doc = {
                    **existing,
                    **updates,
                    "id": doc_id,
                    "created_at": existing.get("created_at"),
                    "updated_at": utc_now(),
                }
                self._write(conn, name, doc_id, doc)
                conn.commit()
        return True, doc

    def get_doc(self, collection: Any, doc_id: str) -> Optional[Dict[str, Any]]:
        name = _collection_name(collection)
        with self._lock:
            with self._connect() as conn:
                return self._read(conn, name, doc_id)

    def get_docs(self, collection: Any) -> List[Dict[str, Any]]:
        name = _collection_name(collection)
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT id, data_json FROM documents WHERE collection = ?",
                    (name,),
                ).fetchall()
        docs = [_decode(row["data_json"], name, row["id"]) for row in rows]
        return [doc for doc in docs if doc is not None]

    def query_docs(self, collection: Any, field: str, value: Any) -> List[Dict[str, Any]]:
        return [doc for doc in self.get_docs(collection) if field in doc and _strict_equals(doc[field], value)]

    def delete_doc(self, collection: Any, doc_id: str) -> bool:
        name = _collection_name(collection)
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND id = ?",
                    (name, doc_id),
                )
                conn.commit()
                return cursor.rowcount > 0

    def clear_collection(self, collection: Any) -> None:
        name = _collection_name(collection)
        with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM documents WHERE collection = ?", (name,))
                conn.commit()

    def clear_database(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM documents")
                conn.commit()

    def export_database(self) -> Dict[str, List[Dict[str, Any]]]:
        return {item.value: self.get_docs(item) for item in Collection}

    def import_database(self, snapshot: Dict[str, List[Dict[str, Any]]]) -> None:
        with self._lock:
            with self._connect() as conn:
                for name, docs in snapshot.items():
                    if name not in COLLECTION_NAMES:
                        continue
                    conn.execute("DELETE FROM documents WHERE collection = ?", (name,))
                    for doc in docs or []:
                        if not isinstance(doc, dict) or not doc.get("id"):
                            raise StoreValidationError(f"Snapshot record in {name} is missing an id")
                        self._write(conn, name, str(doc["id"]), doc)
                conn.commit()


default_db = str(Path(__file__).resolve().parents[2] / "data" / "goswish.sqlite3")
document_store = DocumentStore(db_path=os.getenv("GOSWISH_DB_PATH", default_db))
