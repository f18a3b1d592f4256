"""
graph-dal — SQL dialect adapter

Purpose
- Map a DB-API connection to the vendor dialect used to render SQL and to
  fetch the last generated identity.

What is included in this file
- ``Dialect``: identity statement, paramstyle, identifier quoting, null-safe
  comparison and value adaptation for one vendor.
- Process-wide dialect state: ``resolve_dialect``, ``configure_dialect``,
  ``reset_dialect``, ``last_insert_id_statement``.
- ``Dialect.compile`` rendering ``:name`` markers into the driver paramstyle.

Functional requirements
- The first vendor resolved (or configured) is bound for the process lifetime.
- A connection of a different known vendor is rejected, never mis-detected.
"""

from __future__ import annotations

import logging
import re
import sys
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Final, Literal, TypeAlias, TypeVar, cast

from graph_dal.errors import ExecutionError, UnsupportedDialectError

ParamStyle: TypeAlias = Literal["named", "pyformat", "qmark", "format"]
CompiledParams: TypeAlias = dict[str, object] | tuple[object, ...]
TError = TypeVar("TError", bound=Exception)

PARAMSTYLES: Final[tuple[ParamStyle, ...]] = ("named", "pyformat", "qmark", "format")

_PARAM_MARKER: Final[re.Pattern[str]] = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Dialect:
    """SQL rendering rules for one database vendor."""

    name: str
    last_insert_id_sql: str
    paramstyle: ParamStyle
    differs_template: str
    quote_open: str = '"'
    quote_close: str = '"'
    identity_in_batch: bool = False
    temporal_as_text: bool = False

    def quote(self, identifier: str) -> str:
        escaped = identifier.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def differs(self, column: str, param: str) -> str:
        """Null-safe "column value differs from parameter" predicate."""
        return self.differs_template.format(column=self.quote(column), param=f":{param}")

    def adapt(self, value: object) -> object:
        """Convert a python value into something the driver can bind."""

        if isinstance(value, Enum):
            return value.value
        if isinstance(value, bytearray):
            return bytes(value)
        if self.temporal_as_text:
            if isinstance(value, (datetime, date, time)):
                return value.isoformat()
            if isinstance(value, Decimal):
                return str(value)
        return value

    def compile(self, template: str, params: Mapping[str, object]) -> tuple[str, CompiledParams]:
        """Render ``:name`` markers in ``template`` into this dialect's paramstyle.

        Sequence values (other than ``str``/``bytes``) expand into a
        parenthesized placeholder list so ``IN :ids`` works for any driver.
        """

        named: dict[str, object] = {}
        positional: list[object] = []
        source = template
        if self.paramstyle in ("pyformat", "format"):
            source = template.replace("%", "%%")

        def _placeholder(name: str, value: object) -> str:
            adapted = self.adapt(value)
            if self.paramstyle == "named":
                named[name] = adapted
                return f":{name}"
            if self.paramstyle == "pyformat":
                named[name] = adapted
                return f"%({name})s"
            positional.append(adapted)
            return "?" if self.paramstyle == "qmark" else "%s"

        def _substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in params:
                raise _logged(ExecutionError(f"missing SQL parameter {name!r}"))
            value = params[name]
            if _is_expandable(value):
                items = list(cast("Iterable[object]", value))
                if not items:
                    raise _logged(
                        ExecutionError(f"SQL parameter {name!r} expands to an empty list")
                    )
                rendered = ", ".join(
                    _placeholder(f"{name}_{index}", item) for index, item in enumerate(items)
                )
                return f"({rendered})"
            return _placeholder(name, value)

        sql = _PARAM_MARKER.sub(_substitute, source)
        if self.paramstyle in ("named", "pyformat"):
            return sql, named
        return sql, tuple(positional)


_MYSQL: Final[Dialect] = Dialect(
    name="mysql",
    last_insert_id_sql="SELECT LAST_INSERT_ID()",
    paramstyle="pyformat",
    differs_template="NOT ({column} <=> {param})",
    quote_open="`",
    quote_close="`",
)
_SQLITE: Final[Dialect] = Dialect(
    name="sqlite",
    last_insert_id_sql="SELECT last_insert_rowid()",
    paramstyle="named",
    differs_template="{column} IS NOT {param}",
    temporal_as_text=True,
)
_SQLSERVER: Final[Dialect] = Dialect(
    name="sqlserver",
    last_insert_id_sql="SELECT SCOPE_IDENTITY()",
    paramstyle="qmark",
    differs_template=(
        "(({column} <> {param}) OR ({column} IS NULL AND {param} IS NOT NULL) "
        "OR ({column} IS NOT NULL AND {param} IS NULL))"
    ),
    quote_open="[",
    quote_close="]",
    identity_in_batch=True,
)
_POSTGRES: Final[Dialect] = Dialect(
    name="postgres",
    last_insert_id_sql="SELECT LASTVAL()",
    paramstyle="pyformat",
    differs_template="{column} IS DISTINCT FROM {param}",
)

# Checked in order against the lowercased "<module>.<qualname>" of the connection type.
_VENDOR_PATTERNS: Final[tuple[tuple[tuple[str, ...], Dialect], ...]] = (
    (("mysql", "mariadb"), _MYSQL),
    (("sqlite",), _SQLITE),
    (("sqlserver", "sqlclient", "pyodbc", "pymssql"), _SQLSERVER),
    (("npgsql", "postgres", "psycopg"), _POSTGRES),
)

DIALECTS: Final[dict[str, Dialect]] = {dialect.name: dialect for _, dialect in _VENDOR_PATTERNS}

_DIALECT_LOCK = threading.Lock()
_ACTIVE_DIALECT: Dialect | None = None
_VENDOR_BY_TYPE: dict[type, str | None] = {}


def connection_type_name(connection: object) -> str:
    connection_type = type(connection)
    return f"{connection_type.__module__}.{connection_type.__qualname__}".lower()


def detect_vendor(connection: object) -> str | None:
    """Return the vendor name matching ``connection``'s implementation, if any."""

    connection_type = type(connection)
    if connection_type in _VENDOR_BY_TYPE:
        return _VENDOR_BY_TYPE[connection_type]

    type_name = connection_type_name(connection)
    vendor: str | None = None
    for patterns, dialect in _VENDOR_PATTERNS:
        if any(pattern in type_name for pattern in patterns):
            vendor = dialect.name
            break
    _VENDOR_BY_TYPE[connection_type] = vendor
    return vendor


def resolve_dialect(connection: object) -> Dialect:
    """Return the process dialect, binding it from ``connection`` on first use."""

    global _ACTIVE_DIALECT
    with _DIALECT_LOCK:
        vendor = detect_vendor(connection)
        active = _ACTIVE_DIALECT
        if active is not None:
            if vendor is not None and vendor != active.name:
                raise _logged(
                    UnsupportedDialectError(
                        f"process is bound to dialect {active.name!r}; "
                        f"refusing {connection_type_name(connection)} ({vendor})"
                    )
                )
            return active

        if vendor is None:
            raise _logged(
                UnsupportedDialectError(
                    f"database type {connection_type_name(connection)} is not supported"
                )
            )
        resolved = _with_driver_paramstyle(DIALECTS[vendor], connection)
        _ACTIVE_DIALECT = resolved
        return resolved


def configure_dialect(name: str, *, paramstyle: ParamStyle | None = None) -> Dialect:
    """Explicitly bind the process dialect by vendor name."""

    global _ACTIVE_DIALECT
    key = name.strip().lower()
    if key not in DIALECTS:
        allowed = ", ".join(sorted(DIALECTS))
        raise _logged(
            UnsupportedDialectError(f"unknown dialect {name!r}; expected one of: {allowed}")
        )
    dialect = DIALECTS[key]
    if paramstyle is not None:
        if paramstyle not in PARAMSTYLES:
            raise _logged(UnsupportedDialectError(f"unsupported paramstyle {paramstyle!r}"))
        dialect = replace(dialect, paramstyle=paramstyle)

    with _DIALECT_LOCK:
        if _ACTIVE_DIALECT is not None and _ACTIVE_DIALECT.name != dialect.name:
            raise _logged(
                UnsupportedDialectError(
                    f"process is already bound to dialect {_ACTIVE_DIALECT.name!r}"
                )
            )
        _ACTIVE_DIALECT = dialect
        return dialect


def active_dialect() -> Dialect | None:
    with _DIALECT_LOCK:
        return _ACTIVE_DIALECT


def reset_dialect() -> None:
    """Forget the bound dialect and the per-type vendor cache."""

    global _ACTIVE_DIALECT
    with _DIALECT_LOCK:
        _ACTIVE_DIALECT = None
        _VENDOR_BY_TYPE.clear()


def last_insert_id_statement(connection: object) -> str:
    """SQL fragment fetching the identity generated by the last insert."""

    return resolve_dialect(connection).last_insert_id_sql


def _with_driver_paramstyle(dialect: Dialect, connection: object) -> Dialect:
    root_module = type(connection).__module__.split(".", 1)[0]
    driver = sys.modules.get(root_module)
    paramstyle = getattr(driver, "paramstyle", None)
    # sqlite3 advertises qmark but also accepts named markers.
    if dialect.name == "sqlite" or paramstyle not in PARAMSTYLES:
        return dialect
    return replace(dialect, paramstyle=paramstyle)


def _logged(error: TError) -> TError:
    logger.error("%s", error)
    return error


def _is_expandable(value: object) -> bool:
    return isinstance(value, (Sequence, set, frozenset)) and not isinstance(
        value, (str, bytes, bytearray)
    )


__all__ = [
    "DIALECTS",
    "PARAMSTYLES",
    "CompiledParams",
    "Dialect",
    "ParamStyle",
    "active_dialect",
    "configure_dialect",
    "connection_type_name",
    "detect_vendor",
    "last_insert_id_statement",
    "reset_dialect",
    "resolve_dialect",
]
