"""SQLite-backed entity storage for generated models.

Each collection is one table holding the entity payload as JSON. Entities of
several models can share a collection; their ``_type`` column tells them
apart. Fields the storage schema marks as OBJECT_ID are also written to an
``entity_references`` index so reverse lookups do not have to scan payloads.

The per-model capability set (create, retrieve, update, delete, search) is
ModelCollection, obtained with EntityStore.bind(model). Writes run the
model's lifecycle hooks first; a hook failure (e.g. SchemaValidationError)
aborts the write before any SQL is executed.
"""

from __future__ import annotations

import json
import logging
import os
import re
import secrets
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from schema import Model
from schema.builder import CREATED_FIELD, TYPE_FIELD, UPDATED_FIELD
from schema.validation import normalize_instance, strip_metadata

logger = logging.getLogger(__name__)

ID_FIELD = "_id"
OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
_FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_@][A-Za-z0-9_@.-]*$")


def new_object_id() -> str:
    """Return a new 24 hex character id (4 byte timestamp + 8 random bytes)."""
    return f"{int(time.time()) & 0xFFFFFFFF:08x}{secrets.token_hex(8)}"


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))


def table_name_for(collection_name: str) -> str:
    """Return a safe SQLite table name for a collection."""
    return "collection_" + re.sub(r"[^0-9A-Za-z_]", "_", collection_name)


def _reference_values(entity: Dict[str, Any], field: str) -> List[str]:
    node: Any = entity
    for part in field.split("."):
        if not isinstance(node, dict):
            return []
        node = node.get(part)
    if isinstance(node, str):
        return [node]
    if isinstance(node, list):
        return [value for value in node if isinstance(value, str)]
    return []


class EntityStore:
    """Persistent entity storage backed by SQLite."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, mode=0o755, exist_ok=True)
        self._ensured: set = set()
        self._lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS entity_references (
                        collection TEXT NOT NULL,
                        entity_id TEXT NOT NULL,
                        field TEXT NOT NULL,
                        target_id TEXT NOT NULL,
                        PRIMARY KEY (collection, entity_id, field, target_id)
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_references_target "
                    "ON entity_references(target_id)"
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize entity database {self.db_path}: {e}")
            raise

    def ensure_collection(self, model: Model) -> str:
        """Create the table backing a model's collection if it does not exist.

        Returns:
            The table name
        """
        table = table_name_for(model.collection_name)
        with self._lock:
            if table in self._ensured:
                return table
            try:
                with self._transaction() as conn:
                    conn.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS "{table}" (
                            id TEXT PRIMARY KEY,
                            type TEXT NOT NULL,
                            payload TEXT NOT NULL,
                            created_at TEXT NOT NULL,
                            updated_at TEXT NOT NULL
                        )
                        """
                    )
                    conn.execute(f'CREATE INDEX IF NOT EXISTS "idx_{table}_type" ON "{table}"(type)')
            except sqlite3.Error as e:
                logger.error(f"Failed to create collection {model.collection_name}: {e}")
                raise
            self._ensured.add(table)
        logger.debug(f"Collection '{model.collection_name}' ready (table {table})")
        return table

    def bind(self, model: Model) -> "ModelCollection":
        """Return the capability set for ``model``."""
        self.ensure_collection(model)
        return ModelCollection(self, model)

    # =====================================================================
    # Row level operations used by ModelCollection
    # =====================================================================

    def insert(self, model: Model, entity: Dict[str, Any]) -> None:
        table = table_name_for(model.collection_name)
        entity_id = entity[ID_FIELD]
        try:
            with self._transaction() as conn:
                conn.execute(
                    f'INSERT INTO "{table}" (id, type, payload, created_at, updated_at) VALUES (?, ?, ?, ?, ?)',
                    (entity_id, model.name, json.dumps(entity),
                     entity.get(CREATED_FIELD, ""), entity.get(UPDATED_FIELD, "")),
                )
                self._write_references(conn, model, entity)
        except sqlite3.Error as e:
            logger.error(f"Failed to store {model.name} {entity_id}: {e}")
            raise

    def replace(self, model: Model, entity: Dict[str, Any]) -> None:
        table = table_name_for(model.collection_name)
        entity_id = entity[ID_FIELD]
        try:
            with self._transaction() as conn:
                conn.execute(
                    f'UPDATE "{table}" SET payload = ?, updated_at = ? WHERE id = ?',
                    (json.dumps(entity), entity.get(UPDATED_FIELD, ""), entity_id),
                )
                self._write_references(conn, model, entity)
        except sqlite3.Error as e:
            logger.error(f"Failed to update {model.name} {entity_id}: {e}")
            raise

    def fetch(self, model: Model, entity_id: str) -> Optional[Dict[str, Any]]:
        table = table_name_for(model.collection_name)
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    f'SELECT payload FROM "{table}" WHERE id = ? AND type = ?',
                    (entity_id, model.name),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read {model.name} {entity_id}: {e}")
            raise
        if row is None:
            return None
        return json.loads(row["payload"])

    def remove(self, model: Model, entity_id: str) -> bool:
        table = table_name_for(model.collection_name)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    f'DELETE FROM "{table}" WHERE id = ? AND type = ?',
                    (entity_id, model.name),
                )
                conn.execute(
                    "DELETE FROM entity_references WHERE collection = ? AND entity_id = ?",
                    (model.collection_name, entity_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete {model.name} {entity_id}: {e}")
            raise

    def find(self, model: Model, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        table = table_name_for(model.collection_name)
        clauses = ["type = ?"]
        params: List[Any] = [model.name]
        for field, value in filters.items():
            if not _FIELD_NAME_PATTERN.match(field):
                raise ValueError(f"Invalid search field: {field!r}")
            clauses.append("json_extract(payload, ?) = ?")
            params.extend([f'$."{field}"', value])

        query = f'SELECT payload FROM "{table}" WHERE {" AND ".join(clauses)} ORDER BY created_at, id'
        try:
            with self._transaction() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to search {model.name}: {e}")
            raise

        results = []
        for row in rows:
            try:
                results.append(json.loads(row["payload"]))
            except json.JSONDecodeError:
                logger.error(f"Invalid payload JSON in collection {model.collection_name}")
        return results

    def find_references(self, target_id: str) -> List[Dict[str, str]]:
        """Return every stored reference pointing at ``target_id``."""
        try:
            with self._transaction() as conn:
                rows = conn.execute(
                    "SELECT collection, entity_id, field FROM entity_references "
                    "WHERE target_id = ? ORDER BY collection, entity_id, field",
                    (target_id,),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to list references to {target_id}: {e}")
            raise
        return [
            {"collection": row["collection"], "entity_id": row["entity_id"], "field": row["field"]}
            for row in rows
        ]

    def _write_references(self, conn: sqlite3.Connection, model: Model, entity: Dict[str, Any]) -> None:
        entity_id = entity[ID_FIELD]
        conn.execute(
            "DELETE FROM entity_references WHERE collection = ? AND entity_id = ?",
            (model.collection_name, entity_id),
        )
        for field in model.reference_fields():
            for target_id in _reference_values(entity, field):
                conn.execute(
                    "INSERT OR IGNORE INTO entity_references (collection, entity_id, field, target_id) "
                    "VALUES (?, ?, ?, ?)",
                    (model.collection_name, entity_id, field, target_id),
                )


class ModelCollection:
    """Create, retrieve, update, delete and search entities of one model."""

    def __init__(self, store: EntityStore, model: Model):
        self.store = store
        self.model = model

    @property
    def name(self) -> str:
        return self.model.collection_name

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and store a new entity.

        Raises:
            SchemaValidationError: If the entity does not match the model schema;
                nothing is stored in that case
        """
        entity = strip_metadata(normalize_instance(dict(data)))
        entity.pop(ID_FIELD, None)
        self.model.run_hooks("pre_create", entity)

        entity[ID_FIELD] = new_object_id()
        self.store.insert(self.model, entity)
        logger.info(f"Created {self.model.name} {entity[ID_FIELD]} in {self.name}")
        return entity

    def retrieve(self, entity_id: str) -> Optional[Dict[str, Any]]:
        if not is_object_id(entity_id):
            return None
        return self.store.fetch(self.model, entity_id)

    def update(self, entity_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Replace an entity's content, keeping its id, type and creation time.

        Returns:
            The stored entity, or None if it does not exist

        Raises:
            SchemaValidationError: If the new content is invalid; the stored
                entity is left unchanged
        """
        existing = self.retrieve(entity_id)
        if existing is None:
            return None

        changes = strip_metadata(normalize_instance(dict(data)))
        changes[ID_FIELD] = existing[ID_FIELD]
        changes[TYPE_FIELD] = existing.get(TYPE_FIELD, self.model.name)
        changes[CREATED_FIELD] = existing.get(CREATED_FIELD)
        self.model.run_hooks("pre_update", changes)

        self.store.replace(self.model, changes)
        logger.info(f"Updated {self.model.name} {entity_id} in {self.name}")
        return changes

    def delete(self, entity_id: str) -> bool:
        existing = self.retrieve(entity_id)
        if existing is None:
            return False
        self.model.run_hooks("pre_delete", existing)
        removed = self.store.remove(self.model, entity_id)
        if removed:
            logger.info(f"Deleted {self.model.name} {entity_id} from {self.name}")
        return removed

    def search(self, **filters: Any) -> List[Dict[str, Any]]:
        """Return entities of this model whose top-level fields equal ``filters``."""
        return self.store.find(self.model, filters)
