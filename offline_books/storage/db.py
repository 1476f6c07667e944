"""
Database connection management.

Owns the SQLite file behind the record store. Every store is a table keyed by
the store's primary key field, with one column per indexed field and the full
record serialized as JSON in a ``body`` column.
"""

import json
import logging
import sqlite3
import threading
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from offline_books.config.loader import DEFAULT_DB_PATH

from .errors import ConstraintError, EngineError, StoreError, ValidationError
from .schema import BODY_COLUMN, DEFAULT_SCHEMA, SchemaRegistry, StoreSchema

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection in WAL mode.

    Transactions are managed explicitly (``isolation_level=None``) so that a
    read-write transaction can take the write lock up front.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection in autocommit mode
    """
    path = Path(db_path)
    conn = sqlite3.connect(
        str(path), timeout=30.0, isolation_level=None, check_same_thread=False
    )
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def generate_id() -> str:
    """Random 128-bit identifier formatted as a UUID string."""
    return str(uuid.uuid4())


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _index_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float)):
        return value
    return json.dumps(value, sort_keys=True)


class TransactionMode(str, Enum):
    """Transaction scope over a single store."""
    READONLY = "readonly"
    READWRITE = "readwrite"


class ObjectStore:
    """Handle on one store inside an active transaction.

    Only valid for the duration of the ``run_transaction`` call that created it.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        schema: StoreSchema,
        mode: TransactionMode,
    ):
        self._conn = conn
        self.schema = schema
        self.mode = mode
        self._table = _quote(schema.name)
        self._key = _quote(schema.key_path)
        self._columns = [schema.key_path, *schema.index_fields, BODY_COLUMN]

    @property
    def name(self) -> str:
        return self.schema.name

    def _require_write(self) -> None:
        if self.mode is not TransactionMode.READWRITE:
            raise EngineError(
                f"Store '{self.name}' is opened in a read-only transaction"
            )

    def _row(self, record: Dict[str, Any]) -> List[Any]:
        if not isinstance(record, dict):
            raise ValidationError(f"Records in '{self.name}' must be objects")
        key = record.get(self.schema.key_path)
        if not isinstance(key, str) or not key:
            raise ValidationError(
                f"Record is missing its key field '{self.schema.key_path}'"
            )
        try:
            body = json.dumps(record)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Record '{key}' is not serializable: {e}") from e
        values = [key]
        values.extend(_index_value(record.get(f)) for f in self.schema.index_fields)
        values.append(body)
        return values

    def _write(self, verb: str, record: Dict[str, Any]) -> str:
        self._require_write()
        values = self._row(record)
        columns = ", ".join(_quote(c) for c in self._columns)
        placeholders = ", ".join("?" for _ in self._columns)
        self._conn.execute(
            f"{verb} INTO {self._table} ({columns}) VALUES ({placeholders})",
            values,
        )
        return values[0]

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._conn.execute(
            f"SELECT {BODY_COLUMN} FROM {self._table} WHERE {self._key} = ?",
            (key,),
        ).fetchone()
        return json.loads(row[0]) if row else None

    def get_all(self) -> List[Dict[str, Any]]:
        cursor = self._conn.execute(f"SELECT {BODY_COLUMN} FROM {self._table}")
        return [json.loads(row[0]) for row in cursor.fetchall()]

    def get_all_by_index(self, index_name: str, value: Any) -> List[Dict[str, Any]]:
        """Records whose indexed field equals ``value``."""
        try:
            index = self.schema.get_index(index_name)
        except KeyError as e:
            raise EngineError(e.args[0]) from e
        cursor = self._conn.execute(
            f"SELECT {BODY_COLUMN} FROM {self._table} "
            f"WHERE {_quote(index.key_path)} = ?",
            (_index_value(value),),
        )
        return [json.loads(row[0]) for row in cursor.fetchall()]

    def count(self) -> int:
        return self._conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()[0]

    def add(self, record: Dict[str, Any]) -> str:
        """Insert a record; fails if its key already exists.

        Raises:
            ConstraintError: If the key is already present
        """
        try:
            return self._write("INSERT", record)
        except sqlite3.IntegrityError as e:
            raise ConstraintError(
                f"Key '{record.get(self.schema.key_path)}' already exists "
                f"in store '{self.name}'"
            ) from e

    def put(self, record: Dict[str, Any]) -> str:
        """Insert a record or overwrite the one with the same key."""
        return self._write("INSERT OR REPLACE", record)

    def delete(self, key: str) -> None:
        self._require_write()
        self._conn.execute(f"DELETE FROM {self._table} WHERE {self._key} = ?", (key,))

    def clear(self) -> None:
        self._require_write()
        self._conn.execute(f"DELETE FROM {self._table}")


class StorageEngine:
    """Single owner of the local database.

    The engine is created explicitly and handed to the repositories that use
    it. ``open`` and ``close`` are idempotent; any transaction on a closed
    engine opens it first. Each thread gets its own SQLite connection:
    read-only transactions never wait on each other (WAL), read-write
    transactions take SQLite's write lock when they begin.
    """

    def __init__(
        self,
        db_path: Union[str, Path] = DEFAULT_DB_PATH,
        schema: SchemaRegistry = DEFAULT_SCHEMA,
    ):
        self.db_path = str(db_path)
        self.schema = schema
        self._open_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._generation = 0
        self._opened = False

    def __enter__(self) -> "StorageEngine":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> "StorageEngine":
        """Open the database and run the schema upgrade if needed.

        Concurrent first calls open the file once.

        Raises:
            EngineError: If the database cannot be opened or upgraded
        """
        if self._opened:
            return self
        with self._open_lock:
            if self._opened:
                return self
            try:
                conn = self._connect()
                self._upgrade(conn)
            except (sqlite3.Error, OSError) as e:
                self._close_connections()
                raise EngineError(
                    f"Failed to open database '{self.db_path}': {e}"
                ) from e
            self._local.conn = (self._generation, conn)
            self._opened = True
            logger.info(
                "Opened %s (schema %s v%d)",
                self.db_path, self.schema.name, self.schema.version,
            )
        return self

    def close(self) -> None:
        """Close every connection. Safe to call more than once."""
        with self._open_lock:
            if not self._opened and not self._connections:
                return
            self._close_connections()
            self._opened = False
            logger.debug("Closed %s", self.db_path)

    def erase_all(self) -> None:
        """Close the engine and delete the database file.

        Destructive; meant for tests and full resets.
        """
        self.close()
        for suffix in ("", "-wal", "-shm"):
            try:
                Path(self.db_path + suffix).unlink(missing_ok=True)
            except OSError as e:
                raise EngineError(f"Failed to delete '{self.db_path}{suffix}': {e}") from e
        logger.info("Erased database %s", self.db_path)

    def generate_id(self) -> str:
        return generate_id()

    def stored_version(self) -> int:
        """Schema version recorded in the database file."""
        return self._connection().execute("PRAGMA user_version").fetchone()[0]

    def run_transaction(
        self,
        store_name: str,
        mode: Union[TransactionMode, str],
        operation: Callable[[ObjectStore], T],
    ) -> T:
        """Apply ``operation`` to one store inside an atomic transaction.

        The transaction commits when ``operation`` returns and rolls back if it
        raises. Earlier committed transactions are never touched.

        Args:
            store_name: Name of a store in the schema
            mode: ``readonly`` or ``readwrite``
            operation: Callable receiving the ``ObjectStore`` handle

        Returns:
            Whatever ``operation`` returns

        Raises:
            EngineError: If the store is unknown or SQLite fails
            StoreError: Any store error raised by ``operation``
        """
        try:
            mode = TransactionMode(mode)
        except ValueError as e:
            raise EngineError(f"Unknown transaction mode: {mode}") from e
        try:
            store_schema = self.schema.get_store(store_name)
        except KeyError as e:
            raise EngineError(e.args[0]) from e

        conn = self._connection()
        begin = "BEGIN IMMEDIATE" if mode is TransactionMode.READWRITE else "BEGIN"
        try:
            conn.execute(begin)
        except sqlite3.Error as e:
            raise EngineError(f"Failed to begin transaction on '{store_name}': {e}") from e

        try:
            result = operation(ObjectStore(conn, store_schema, mode))
            conn.execute("COMMIT")
        except StoreError:
            self._rollback(conn)
            raise
        except sqlite3.Error as e:
            self._rollback(conn)
            raise EngineError(f"Transaction on '{store_name}' failed: {e}") from e
        except Exception:
            self._rollback(conn)
            raise
        logger.debug("%s transaction on %s committed", mode.value, store_name)
        return result

    def _connect(self) -> sqlite3.Connection:
        conn = get_connection(self.db_path)
        with self._registry_lock:
            self._connections.append(conn)
        return conn

    def _connection(self) -> sqlite3.Connection:
        self.open()
        cached = getattr(self._local, "conn", None)
        if cached is not None and cached[0] == self._generation:
            return cached[1]
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise EngineError(f"Failed to connect to '{self.db_path}': {e}") from e
        self._local.conn = (self._generation, conn)
        return conn

    def _close_connections(self) -> None:
        with self._registry_lock:
            connections, self._connections = self._connections, []
            self._generation += 1
        for conn in connections:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def _upgrade(self, conn: sqlite3.Connection) -> None:
        current = conn.execute("PRAGMA user_version").fetchone()[0]
        if current >= self.schema.version:
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            # Another process may have upgraded while we waited for the lock
            current = conn.execute("PRAGMA user_version").fetchone()[0]
            if current < self.schema.version:
                for store in self.schema.stores:
                    self._create_store(conn, store)
                conn.execute(f"PRAGMA user_version = {int(self.schema.version)}")
                logger.info(
                    "Upgraded %s from schema v%d to v%d",
                    self.db_path, current, self.schema.version,
                )
            conn.execute("COMMIT")
        except Exception:
            self._rollback(conn)
            raise

    @staticmethod
    def _create_store(conn: sqlite3.Connection, store: StoreSchema) -> None:
        """Create a store's table, columns and indexes where missing."""
        table = _quote(store.name)
        columns = [f"{_quote(store.key_path)} TEXT PRIMARY KEY"]
        columns.extend(_quote(f) for f in store.index_fields)
        columns.append(f"{BODY_COLUMN} TEXT NOT NULL")
        conn.execute(f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(columns)})")

        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
        for field_name in store.index_fields:
            if field_name in existing:
                continue
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {_quote(field_name)}")
            conn.execute(
                f"UPDATE {table} SET {_quote(field_name)} = "
                f"json_extract({BODY_COLUMN}, ?)",
                ('$."' + field_name + '"',),
            )

        for index in store.indexes:
            unique = "UNIQUE " if index.unique else ""
            index_name = _quote(f"idx_{store.name}_{index.name}")
            conn.execute(
                f"CREATE {unique}INDEX IF NOT EXISTS {index_name} "
                f"ON {table} ({_quote(index.key_path)})"
            )
