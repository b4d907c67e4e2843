"""
Document Store

Per-profile record collections plus global key-value settings. The pipeline
only talks to the ``DocumentStore`` interface; the in-memory store backs
tests and single-process use, the SQL store backs the API.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .database import get_db_context, get_engine, init_schema

logger = logging.getLogger(__name__)

TRANSACTIONS = "transactions"
# Settled cancellation pairs, kept so re-uploads of either half deduplicate.
CANCELLED_PAIRS = "cancelled_pairs"


class DocumentStore(ABC):
    """Storage interface for profile collections and global settings."""

    @abstractmethod
    def get_all(self, profile_id: str, collection: str) -> list[dict]:
        """Return every record of a profile collection."""

    @abstractmethod
    def replace_all(self, profile_id: str, collection: str, records: list[dict]) -> None:
        """Atomically clear a collection and write the given records."""

    @abstractmethod
    def batch_upsert(self, profile_id: str, collection: str, records: list[dict]) -> None:
        """Insert or overwrite records keyed by their ``id``."""

    @abstractmethod
    def batch_delete(self, profile_id: str, collection: str, ids: list[str]) -> int:
        """Delete records by id; returns the number removed."""

    @abstractmethod
    def delete_all(self, profile_id: str, collection: str) -> int:
        """Delete a whole collection; returns the number removed."""

    @abstractmethod
    def get_settings(self, name: str) -> dict[str, Any]:
        """Return a global key-value table."""

    @abstractmethod
    def set_setting(self, name: str, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete_setting(self, name: str, key: str) -> bool:
        pass

    @abstractmethod
    def clear_settings(self, name: str) -> int:
        pass


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe dictionary-backed store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._collections: dict[tuple[str, str], dict[str, dict]] = {}
        self._settings: dict[str, dict[str, Any]] = {}

    def get_all(self, profile_id: str, collection: str) -> list[dict]:
        with self._lock:
            records = self._collections.get((profile_id, collection), {})
            return [dict(r) for r in records.values()]

    def replace_all(self, profile_id: str, collection: str, records: list[dict]) -> None:
        with self._lock:
            self._collections[(profile_id, collection)] = {r["id"]: dict(r) for r in records}

    def batch_upsert(self, profile_id: str, collection: str, records: list[dict]) -> None:
        with self._lock:
            target = self._collections.setdefault((profile_id, collection), {})
            for record in records:
                target[record["id"]] = dict(record)

    def batch_delete(self, profile_id: str, collection: str, ids: list[str]) -> int:
        with self._lock:
            target = self._collections.get((profile_id, collection), {})
            removed = 0
            for doc_id in ids:
                if target.pop(doc_id, None) is not None:
                    removed += 1
            return removed

    def delete_all(self, profile_id: str, collection: str) -> int:
        with self._lock:
            return len(self._collections.pop((profile_id, collection), {}))

    def get_settings(self, name: str) -> dict[str, Any]:
        with self._lock:
            return dict(self._settings.get(name, {}))

    def set_setting(self, name: str, key: str, value: Any) -> None:
        with self._lock:
            self._settings.setdefault(name, {})[key] = value

    def delete_setting(self, name: str, key: str) -> bool:
        with self._lock:
            return self._settings.get(name, {}).pop(key, None) is not None

    def clear_settings(self, name: str) -> int:
        with self._lock:
            return len(self._settings.pop(name, {}))


class SqlDocumentStore(DocumentStore):
    """SQLAlchemy-backed store (PostgreSQL in production, SQLite in tests)."""

    def __init__(self, engine: Engine | None = None, create_schema: bool = True):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine; the shared DATABASE_URL engine if omitted
            create_schema: Create the ledger tables when missing
        """
        self.engine = engine or get_engine()
        if create_schema:
            init_schema(self.engine)

    def _upsert(self, db, profile_id: str, collection: str, records: list[dict]) -> None:
        for record in records:
            db.execute(
                text(
                    "INSERT INTO ledger_documents (profile_id, collection, doc_id, payload) "
                    "VALUES (:profile_id, :collection, :doc_id, :payload) "
                    "ON CONFLICT (profile_id, collection, doc_id) "
                    "DO UPDATE SET payload = excluded.payload"
                ),
                {
                    "profile_id": profile_id,
                    "collection": collection,
                    "doc_id": record["id"],
                    "payload": json.dumps(record, ensure_ascii=False),
                },
            )

    def get_all(self, profile_id: str, collection: str) -> list[dict]:
        with get_db_context(self.engine) as db:
            result = db.execute(
                text(
                    "SELECT payload FROM ledger_documents "
                    "WHERE profile_id = :profile_id AND collection = :collection"
                ),
                {"profile_id": profile_id, "collection": collection},
            )
            return [json.loads(row[0]) for row in result.fetchall()]

    def replace_all(self, profile_id: str, collection: str, records: list[dict]) -> None:
        with get_db_context(self.engine) as db:
            try:
                db.execute(
                    text(
                        "DELETE FROM ledger_documents "
                        "WHERE profile_id = :profile_id AND collection = :collection"
                    ),
                    {"profile_id": profile_id, "collection": collection},
                )
                self._upsert(db, profile_id, collection, records)
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.debug(f"Replaced {collection} for {profile_id}: {len(records)} records")

    def batch_upsert(self, profile_id: str, collection: str, records: list[dict]) -> None:
        if not records:
            return
        with get_db_context(self.engine) as db:
            try:
                self._upsert(db, profile_id, collection, records)
                db.commit()
            except Exception:
                db.rollback()
                raise

    def batch_delete(self, profile_id: str, collection: str, ids: list[str]) -> int:
        removed = 0
        with get_db_context(self.engine) as db:
            for doc_id in ids:
                result = db.execute(
                    text(
                        "DELETE FROM ledger_documents WHERE profile_id = :profile_id "
                        "AND collection = :collection AND doc_id = :doc_id"
                    ),
                    {"profile_id": profile_id, "collection": collection, "doc_id": doc_id},
                )
                removed += result.rowcount or 0
            db.commit()
        return removed

    def delete_all(self, profile_id: str, collection: str) -> int:
        with get_db_context(self.engine) as db:
            result = db.execute(
                text(
                    "DELETE FROM ledger_documents "
                    "WHERE profile_id = :profile_id AND collection = :collection"
                ),
                {"profile_id": profile_id, "collection": collection},
            )
            db.commit()
            return result.rowcount or 0

    def get_settings(self, name: str) -> dict[str, Any]:
        with get_db_context(self.engine) as db:
            result = db.execute(
                text("SELECT setting_key, setting_value FROM ledger_settings WHERE name = :name"),
                {"name": name},
            )
            return {row[0]: json.loads(row[1]) for row in result.fetchall()}

    def set_setting(self, name: str, key: str, value: Any) -> None:
        with get_db_context(self.engine) as db:
            db.execute(
                text(
                    "INSERT INTO ledger_settings (name, setting_key, setting_value) "
                    "VALUES (:name, :key, :value) "
                    "ON CONFLICT (name, setting_key) "
                    "DO UPDATE SET setting_value = excluded.setting_value"
                ),
                {"name": name, "key": key, "value": json.dumps(value, ensure_ascii=False)},
            )
            db.commit()

    def delete_setting(self, name: str, key: str) -> bool:
        with get_db_context(self.engine) as db:
            result = db.execute(
                text("DELETE FROM ledger_settings WHERE name = :name AND setting_key = :key"),
                {"name": name, "key": key},
            )
            db.commit()
            return (result.rowcount or 0) > 0

    def clear_settings(self, name: str) -> int:
        with get_db_context(self.engine) as db:
            result = db.execute(
                text("DELETE FROM ledger_settings WHERE name = :name"),
                {"name": name},
            )
            db.commit()
            return result.rowcount or 0
