"""
graph-dal — unit of work

Purpose
- Carry the open connection, the acting user and the transaction scope that
  every repository and the graph persister run against.

What is included in this file
- ``UnitOfWork``: statement execution primitives (execute, scalar, query),
  identity-returning insert, caller-side ``transaction()`` with savepoints,
  per-type repository registry.
- ``connect_sqlite``: configured sqlite3 connection factory.

Functional requirements
- Repositories and the persister never begin, commit or roll back; only the
  caller does, through ``transaction()``.
- Driver exceptions are logged where they surface and re-raised unchanged.

Non-functional requirements
- One instance per logical unit of work; not shared across threads.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
from collections.abc import Iterator, Mapping
from contextlib import closing, contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Protocol, TypeVar

from graph_dal.constants import DEFAULT_ACTING_USER
from graph_dal.errors import ExecutionError
from graph_dal.persistence.dialect import Dialect, configure_dialect, resolve_dialect

if TYPE_CHECKING:
    from graph_dal.config import PersistenceSettings
    from graph_dal.domain.entities import Entity
    from graph_dal.persistence.repository import Repository

RowValue = Any
Row = dict[str, RowValue]
TEntity = TypeVar("TEntity", bound="Entity")

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000

_UNIT_OF_WORK_SEQUENCE = itertools.count(1)

logger = logging.getLogger(__name__)


class DBAPICursor(Protocol):
    description: Any
    rowcount: int

    def execute(self, operation: str, parameters: Any = ..., /) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> Any: ...

    def nextset(self) -> Any: ...

    def close(self) -> Any: ...


class DBAPIConnection(Protocol):
    def cursor(self) -> Any: ...

    def commit(self) -> Any: ...

    def rollback(self) -> Any: ...


class UnitOfWork:
    """Connection, acting user and transaction scope for one logical unit of work."""

    def __init__(
        self,
        connection: DBAPIConnection,
        *,
        user: str = DEFAULT_ACTING_USER,
        dialect: Dialect | None = None,
    ) -> None:
        if not isinstance(user, str) or not user.strip():
            raise ValueError("user must be a non-empty string")
        self._connection = connection
        self._user = user.strip()
        self._dialect = dialect
        self._repositories: dict[type, Repository[Any]] = {}
        self._transaction_depth = 0
        self._savepoint_counter = 0
        self._name = f"uow-{next(_UNIT_OF_WORK_SEQUENCE)}"

    @classmethod
    def from_settings(
        cls,
        settings: PersistenceSettings,
        *,
        connection: DBAPIConnection | None = None,
        user: str | None = None,
    ) -> UnitOfWork:
        """Build a unit of work from loaded settings.

        Without an explicit ``connection`` a sqlite database is opened at
        ``settings.database_path``. A configured dialect is bound before use.
        """

        if settings.dialect is not None:
            configure_dialect(settings.dialect)
        if connection is None:
            connection = connect_sqlite(
                settings.database_path,
                busy_timeout_ms=settings.busy_timeout_ms,
            )
        return cls(connection, user=user or settings.default_user)

    @property
    def name(self) -> str:
        """Process-unique label used as the ``unit_of_work`` log correlation field."""
        return self._name

    @property
    def connection(self) -> DBAPIConnection:
        return self._connection

    @property
    def user(self) -> str:
        return self._user

    @property
    def dialect(self) -> Dialect:
        if self._dialect is None:
            self._dialect = resolve_dialect(self._connection)
        return self._dialect

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def repository(self, entity_type: type[TEntity]) -> Repository[TEntity]:
        """Return the repository registered for ``entity_type``, creating it on first use."""

        existing = self._repositories.get(entity_type)
        if existing is not None:
            return existing

        from graph_dal.persistence.repository import Repository

        created: Repository[TEntity] = Repository(entity_type, self)
        self._repositories[entity_type] = created
        return created

    def register(self, repository: Repository[Any]) -> None:
        """Register a custom repository so ``repository()`` hands it out for its type."""
        self._repositories[repository.entity_type] = repository

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """Run statements atomically; nested scopes become savepoints."""

        if self._transaction_depth > 0:
            savepoint = self._next_savepoint_name()
            self._run(f"SAVEPOINT {savepoint}", ()).close()
            self._transaction_depth += 1
            try:
                yield self
            except Exception:
                self._run(f"ROLLBACK TO SAVEPOINT {savepoint}", ()).close()
                self._run(f"RELEASE SAVEPOINT {savepoint}", ()).close()
                raise
            else:
                self._run(f"RELEASE SAVEPOINT {savepoint}", ()).close()
            finally:
                self._transaction_depth -= 1
            return

        # sqlite in autocommit mode needs an explicit BEGIN; other drivers open one implicitly.
        if self.dialect.name == "sqlite" and not getattr(self._connection, "in_transaction", False):
            self._run("BEGIN", ()).close()
        self._transaction_depth = 1
        try:
            yield self
        except Exception:
            logger.warning("rolling back unit of work for user %s", self._user)
            self._connection.rollback()
            raise
        else:
            self._connection.commit()
        finally:
            self._transaction_depth = 0

    def execute(self, template: str, params: Mapping[str, object] | None = None) -> int:
        """Execute a parameterized statement and return the affected row count."""

        sql, bound = self.dialect.compile(template, params or {})
        with closing(self._run(sql, bound)) as cursor:
            return int(cursor.rowcount)

    def execute_scalar(self, template: str, params: Mapping[str, object] | None = None) -> object:
        """Execute a statement and return the first column of its first row."""

        sql, bound = self.dialect.compile(template, params or {})
        with closing(self._run(sql, bound)) as cursor:
            row = cursor.fetchone()
            return None if row is None else row[0]

    def query_all(self, template: str, params: Mapping[str, object] | None = None) -> list[Row]:
        """Run a query and return rows as column-name dictionaries."""

        sql, bound = self.dialect.compile(template, params or {})
        with closing(self._run(sql, bound)) as cursor:
            names = _column_names(cursor)
            return [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]

    def query_one(self, template: str, params: Mapping[str, object] | None = None) -> Row | None:
        sql, bound = self.dialect.compile(template, params or {})
        with closing(self._run(sql, bound)) as cursor:
            names = _column_names(cursor)
            row = cursor.fetchone()
            return None if row is None else dict(zip(names, row, strict=True))

    def execute_insert(self, template: str, params: Mapping[str, object]) -> int:
        """Execute an INSERT and return the identity it generated.

        The identity statement runs on the same cursor right after the insert,
        or in the same batch for dialects whose identity is batch-scoped.
        """

        dialect = self.dialect
        sql, bound = dialect.compile(template, params)
        if dialect.identity_in_batch:
            batch = f"{sql.rstrip().rstrip(';')}; {dialect.last_insert_id_sql};"
            with closing(self._run(batch, bound)) as cursor:
                while cursor.description is None and cursor.nextset():
                    pass
                row = cursor.fetchone()
        else:
            with closing(self._run(sql, bound)) as cursor:
                self._execute_on(cursor, dialect.last_insert_id_sql, ())
                row = cursor.fetchone()

        if row is None or row[0] is None:
            message = f"insert produced no generated identity: {template.strip()}"
            logger.error(message)
            raise ExecutionError(message)
        return int(row[0])

    def close(self) -> None:
        close = getattr(self._connection, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> UnitOfWork:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.close()

    def _run(self, sql: str, params: object) -> DBAPICursor:
        cursor = self._connection.cursor()
        try:
            self._execute_on(cursor, sql, params)
        except Exception:
            cursor.close()
            raise
        return cursor

    def _execute_on(self, cursor: DBAPICursor, sql: str, params: object) -> None:
        logger.debug("executing SQL", extra={"sql": sql})
        try:
            cursor.execute(sql, params)
        except Exception:
            logger.exception("SQL execution failed", extra={"sql": sql})
            raise

    def _next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"graph_dal_sp_{self._savepoint_counter}"


def connect_sqlite(
    path: str | Path,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> sqlite3.Connection:
    """Open a sqlite3 connection in autocommit mode with foreign keys enforced.

    Transactions are opened explicitly by ``UnitOfWork.transaction()``.
    """

    if busy_timeout_ms < 0:
        raise ValueError("busy_timeout_ms must be >= 0")
    target = str(path)
    if target != ":memory:":
        Path(target).expanduser().parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        target,
        timeout=busy_timeout_ms / 1000.0,
        isolation_level=None,
    )
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
    if target != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


def _column_names(cursor: DBAPICursor) -> list[str]:
    description = cursor.description or ()
    return [str(column[0]) for column in description]


__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "DBAPIConnection",
    "Row",
    "UnitOfWork",
    "connect_sqlite",
]
