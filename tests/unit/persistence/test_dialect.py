"""Dialect detection, process binding and SQL template compilation."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from graph_dal.errors import ExecutionError, UnsupportedDialectError
from graph_dal.persistence.dialect import (
    DIALECTS,
    active_dialect,
    configure_dialect,
    detect_vendor,
    last_insert_id_statement,
    reset_dialect,
    resolve_dialect,
)

from . import Priority


def _fake_connection(module: str, name: str = "Connection") -> object:
    return type(name, (), {"__module__": module})()


@pytest.mark.parametrize(
    ("module", "name", "expected"),
    [
        ("pymysql.connections", "Connection", "SELECT LAST_INSERT_ID()"),
        ("mariadb.connections", "Connection", "SELECT LAST_INSERT_ID()"),
        ("sqlite3", "Connection", "SELECT last_insert_rowid()"),
        ("pyodbc", "Connection", "SELECT SCOPE_IDENTITY()"),
        ("drivers.sqlclient", "SqlConnection", "SELECT SCOPE_IDENTITY()"),
        ("psycopg", "Connection", "SELECT LASTVAL()"),
        ("drivers", "NpgsqlConnection", "SELECT LASTVAL()"),
    ],
)
def test_last_insert_id_statement_per_vendor(module: str, name: str, expected: str) -> None:
    assert last_insert_id_statement(_fake_connection(module, name)) == expected


def test_real_sqlite_connection_resolves_to_sqlite() -> None:
    connection = sqlite3.connect(":memory:")
    try:
        dialect = resolve_dialect(connection)
    finally:
        connection.close()

    assert dialect.name == "sqlite"
    assert dialect.paramstyle == "named"
    assert active_dialect() is dialect


def test_unknown_vendor_is_rejected() -> None:
    with pytest.raises(UnsupportedDialectError, match="not supported"):
        resolve_dialect(_fake_connection("oracledb", "Connection"))
    assert active_dialect() is None


def test_dialect_errors_are_logged_before_raising(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR, logger="graph_dal.persistence.dialect"):
        with pytest.raises(UnsupportedDialectError):
            resolve_dialect(_fake_connection("oracledb"))
        with pytest.raises(UnsupportedDialectError):
            configure_dialect("oracle")

    messages = [
        record.getMessage()
        for record in caplog.records
        if record.name == "graph_dal.persistence.dialect"
    ]
    assert len(messages) == 2
    assert "oracledb.connection is not supported" in messages[0]
    assert "unknown dialect 'oracle'" in messages[1]


def test_resolution_is_cached_and_mismatched_vendor_rejected() -> None:
    first = resolve_dialect(_fake_connection("sqlite3"))
    assert resolve_dialect(_fake_connection("sqlite3")) is first

    with pytest.raises(UnsupportedDialectError, match="bound to dialect 'sqlite'"):
        resolve_dialect(_fake_connection("psycopg"))

    # Unrecognized wrappers reuse the bound dialect.
    assert resolve_dialect(_fake_connection("app.pool", "PooledConnection")) is first

    reset_dialect()
    assert resolve_dialect(_fake_connection("psycopg")).name == "postgres"


def test_detect_vendor_returns_none_for_unknown_types() -> None:
    assert detect_vendor(object()) is None
    assert detect_vendor(_fake_connection("pymssql._pymssql")) == "sqlserver"


def test_configure_dialect_binds_process_state() -> None:
    configured = configure_dialect("Postgres", paramstyle="format")

    assert configured.name == "postgres"
    assert configured.paramstyle == "format"
    assert resolve_dialect(_fake_connection("app.pool")) is configured
    with pytest.raises(UnsupportedDialectError):
        resolve_dialect(sqlite3.connect(":memory:"))
    with pytest.raises(UnsupportedDialectError, match="already bound"):
        configure_dialect("mysql")


def test_configure_dialect_rejects_unknown_names() -> None:
    with pytest.raises(UnsupportedDialectError, match="unknown dialect"):
        configure_dialect("oracle")
    with pytest.raises(UnsupportedDialectError, match="paramstyle"):
        configure_dialect("sqlite", paramstyle="numeric")  # type: ignore[arg-type]


def test_compile_renders_each_paramstyle() -> None:
    template = "SELECT * FROM t WHERE a = :a AND b = :b"
    params = {"a": 1, "b": "x"}

    assert DIALECTS["sqlite"].compile(template, params) == (template, {"a": 1, "b": "x"})
    assert DIALECTS["mysql"].compile(template, params) == (
        "SELECT * FROM t WHERE a = %(a)s AND b = %(b)s",
        {"a": 1, "b": "x"},
    )
    assert DIALECTS["sqlserver"].compile(template, params) == (
        "SELECT * FROM t WHERE a = ? AND b = ?",
        (1, "x"),
    )


def test_compile_expands_sequences_for_in_lists() -> None:
    sql, bound = DIALECTS["sqlite"].compile("DELETE FROM t WHERE id IN :ids", {"ids": [3, 4]})
    assert sql == "DELETE FROM t WHERE id IN (:ids_0, :ids_1)"
    assert bound == {"ids_0": 3, "ids_1": 4}

    sql, bound = DIALECTS["sqlserver"].compile("SELECT 1 WHERE x IN :ids", {"ids": (7,)})
    assert sql == "SELECT 1 WHERE x IN (?)"
    assert bound == (7,)

    with pytest.raises(ExecutionError, match="empty list"):
        DIALECTS["sqlite"].compile("SELECT 1 WHERE x IN :ids", {"ids": []})


def test_compile_escapes_percent_and_ignores_casts() -> None:
    sql, bound = DIALECTS["postgres"].compile(
        "SELECT :v::text WHERE name LIKE 'a%'", {"v": 1}
    )
    assert sql == "SELECT %(v)s::text WHERE name LIKE 'a%%'"
    assert bound == {"v": 1}


def test_compile_rejects_missing_parameters() -> None:
    with pytest.raises(ExecutionError, match="missing SQL parameter 'id'"):
        DIALECTS["sqlite"].compile("SELECT 1 WHERE id = :id", {})


def test_sqlite_adapts_temporal_and_decimal_values_to_text() -> None:
    sqlite = DIALECTS["sqlite"]
    stamp = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)

    assert sqlite.adapt(stamp) == "2026-02-01T12:00:00+00:00"
    assert sqlite.adapt(date(2026, 2, 1)) == "2026-02-01"
    assert sqlite.adapt(Decimal("1.50")) == "1.50"
    assert sqlite.adapt(Priority.HIGH) == "high"
    assert sqlite.adapt(bytearray(b"ab")) == b"ab"
    assert DIALECTS["postgres"].adapt(stamp) is stamp


def test_null_safe_differs_and_quoting() -> None:
    assert DIALECTS["sqlite"].differs("a", "a") == '"a" IS NOT :a'
    assert DIALECTS["postgres"].differs("a", "a") == '"a" IS DISTINCT FROM :a'
    assert DIALECTS["mysql"].differs("a", "a") == "NOT (`a` <=> :a)"
    assert "[a] IS NULL AND :a IS NOT NULL" in DIALECTS["sqlserver"].differs("a", "a")
    assert DIALECTS["sqlserver"].quote("odd]name") == "[odd]]name]"
    assert DIALECTS["sqlite"].quote('x"y') == '"x""y"'
