"""
SQLite repository: sole owner of the database file and its in-memory handle.

The whole database lives in an in-memory connection. After every committed
mutation the complete snapshot is serialized and written back to disk, so the
file on disk is always a consistent image of the last successful write.
"""

import logging
import os
import sqlite3
import tempfile
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from pathlib import Path
from typing import Any

import pydantic

from increading.domain.errors import PersistenceError, ValidationError
from increading.domain.rows import ROW_MODELS

logger = logging.getLogger(__name__)

Primitive = str | int | float | bool | bytes | Enum | None

_READ_ACTIONS = {sqlite3.SQLITE_SELECT, sqlite3.SQLITE_READ, sqlite3.SQLITE_FUNCTION}

# Pragmas that only report on the schema or the file
_READ_PRAGMAS = {
    "table_info",
    "table_xinfo",
    "table_list",
    "index_list",
    "index_info",
    "index_xinfo",
    "foreign_key_list",
    "foreign_key_check",
    "integrity_check",
    "quick_check",
    "database_list",
}


@dataclass(frozen=True)
class MutationResult:
    rowcount: int
    lastrowid: int | None


def coerce_params(params: Sequence[Any]) -> list[Any]:
    """
    Convert host values to SQLite-bindable primitives.

    booleans become 0/1, enums become their value; everything else is passed
    through unchanged.
    """
    coerced = []
    for param in params:
        if isinstance(param, bool):
            coerced.append(int(param))
        elif isinstance(param, Enum):
            coerced.append(param.value)
        else:
            coerced.append(param)
    return coerced


def _bundled_schema() -> str:
    return resources.files("increading.infrastructure.db").joinpath("schema.sql").read_text(
        encoding="utf-8"
    )


class SQLiteRepository:
    """
    Executes parameterized SQL against a single embedded database.

    Use ``await SQLiteRepository.start(path)`` rather than the constructor.
    """

    def __init__(self, db_path: Path, schema_path: Path | None = None):
        self.db_path = db_path
        self.schema_path = schema_path
        self._conn: sqlite3.Connection | None = None
        self._in_transaction = False

    @classmethod
    async def start(cls, db_path: Path, schema_path: Path | None = None) -> "SQLiteRepository":
        """
        Load the database file, or create it from the schema when loading fails.
        """
        repo = cls(Path(db_path), schema_path)
        if not repo._load_db():
            await repo.init_db()
        return repo

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("Database was not initialized on repository")
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute a read and return its rows keyed by column name."""
        logger.debug(f"query: {sql} params={list(params)}")
        cursor = self._execute(sql, params)
        if cursor.description is None:
            return []
        columns = [col[0] for col in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    async def query_typed(
        self, table: str, sql: str, params: Sequence[Any] = ()
    ) -> list[pydantic.BaseModel]:
        """Execute a read and validate every row against ``table``'s row model."""
        rows = await self.query(sql, params)
        return [self.decode_row(table, row) for row in rows]

    async def query_read_only(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        """
        Execute a user-supplied statement with every write denied.

        An authorizer is installed on the connection for the duration of the call,
        so writes hidden behind a CTE or a PRAGMA assignment are refused as well.
        Raises ValidationError when the statement needs anything beyond reading.
        """
        denied: list[str] = []

        def authorize(action, arg1, arg2, db_name, trigger):
            if action in _READ_ACTIONS:
                return sqlite3.SQLITE_OK
            if action == sqlite3.SQLITE_PRAGMA:
                # A pragma with no argument reports its value without changing it.
                if arg2 is None or arg1.lower() in _READ_PRAGMAS:
                    return sqlite3.SQLITE_OK
            denied.append(arg1 or str(action))
            return sqlite3.SQLITE_DENY

        self.conn.set_authorizer(authorize)
        try:
            return await self.query(sql, params)
        except PersistenceError as e:
            if denied:
                raise ValidationError(
                    f"Only read queries are allowed; denied: {', '.join(denied)}"
                ) from e
            raise
        finally:
            self.conn.set_authorizer(None)

    def decode_row(self, table: str, row: dict[str, Any]) -> Any:
        model = ROW_MODELS.get(table)
        if model is None:
            raise PersistenceError(f"Unknown table {table!r}")
        try:
            return model.model_validate(row)
        except pydantic.ValidationError as e:
            logger.error(f"Malformed {table} row {row!r}: {e}")
            raise PersistenceError(f"Malformed {table} row: {e}") from e

    async def mutate(self, sql: str, params: Sequence[Any] = ()) -> MutationResult:
        """
        Execute a write. Outside a transaction the snapshot is saved immediately.
        """
        logger.debug(f"mutate: {sql} params={list(params)}")
        cursor = self._execute(sql, params)
        result = MutationResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)
        if not self._in_transaction:
            await self.save()
        return result

    def _execute(self, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, coerce_params(params))
        except sqlite3.Error as e:
            logger.error(f"Statement failed: {e} | sql={sql} params={list(params)}")
            raise PersistenceError(str(e)) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SQLiteRepository"]:
        """
        Group several mutations: all of them commit and are saved once, or none do.

        Nested use joins the outer transaction.
        """
        if self._in_transaction:
            yield self
            return

        self.conn.execute("BEGIN")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self.conn.execute("ROLLBACK")
            logger.warning("Transaction rolled back")
            raise
        else:
            self.conn.execute("COMMIT")
        finally:
            self._in_transaction = False
        await self.save()

    # ------------------------------------------------------------------
    # Durability
    # ------------------------------------------------------------------

    async def save(self) -> None:
        """Overwrite the database file with a snapshot of the in-memory database."""
        data = self.conn.serialize()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.db_path.name}.", dir=self.db_path.parent
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp_name, self.db_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error(f"Failed to save database to {self.db_path}: {e}")
            raise PersistenceError(f"Failed to save database: {e}") from e

    async def init_db(self) -> sqlite3.Connection:
        """Create a fresh database from the schema script and persist it."""
        try:
            if self.schema_path is not None:
                schema = Path(self.schema_path).read_text(encoding="utf-8")
            else:
                schema = _bundled_schema()
        except OSError as e:
            raise PersistenceError(f"Could not read schema: {e}") from e

        conn = self._connect()
        try:
            conn.executescript(schema)
        except sqlite3.Error as e:
            conn.close()
            raise PersistenceError(f"Malformed schema: {e}") from e

        self._conn = conn
        await self.save()
        logger.info(f"Initialized database at {self.db_path}")
        return conn

    def _load_db(self) -> bool:
        """
        Attempt to load a pre-existing database from disk.

        A corrupt file, or one missing any required table, is moved aside so
        the fresh database does not destroy it.
        """
        if not self.db_path.exists():
            return False

        conn = self._connect()
        try:
            conn.deserialize(self.db_path.read_bytes())
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        except (OSError, sqlite3.Error) as e:
            conn.close()
            logger.warning(f"Could not load database {self.db_path}: {e}")
            self._quarantine()
            return False

        missing = set(ROW_MODELS) - tables
        if missing:
            conn.close()
            logger.warning(f"Database {self.db_path} is missing tables {sorted(missing)}")
            self._quarantine()
            return False

        conn.execute("PRAGMA foreign_keys = ON")
        self._conn = conn
        logger.info(f"Loaded database {self.db_path}")
        return True

    def _quarantine(self) -> None:
        target = self.db_path.with_name(f"{self.db_path.name}.corrupt-{int(time.time())}")
        try:
            self.db_path.replace(target)
            logger.warning(f"Moved unreadable database to {target}")
        except OSError as e:
            logger.error(f"Could not move unreadable database aside: {e}")

    @staticmethod
    def _connect() -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly.
        # Calls are serialized by the caller, so the handle may hop threads.
        conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def get_schema(self, table: str) -> str | None:
        rows = await self.query("SELECT sql FROM sqlite_master WHERE name = ?1", [table])
        if not rows:
            logger.warning(f"No schema found for table {table}")
            return None
        return rows[0]["sql"]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
