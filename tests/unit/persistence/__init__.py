"""Shared entity types, sqlite schema and builders for persistence tests."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Final

from graph_dal.domain.entities import Entity, SoftDeletableEntity, not_mapped
from graph_dal.persistence.unit_of_work import UnitOfWork, connect_sqlite

_BASE_TS: Final[datetime] = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)

TEST_USER: Final[str] = "test-user"


@dataclass(eq=False, kw_only=True)
class FirstEntity(Entity):
    int_value: int = 0
    string_value: str | None = None
    second_entity: SecondEntity | None = None


@dataclass(eq=False, kw_only=True)
class SecondEntity(Entity):
    int_value: int = 0
    string_value: str | None = None
    first_entity_id: int | None = None
    first_entity: FirstEntity | None = None


@dataclass(eq=False, kw_only=True)
class SoftDeletableTestEntity(SoftDeletableEntity):
    int_value: int = 0
    string_value: str | None = None
    first_entity_id: int | None = None
    first_entity: FirstEntity | None = None


@dataclass(eq=False, kw_only=True)
class Order(Entity):
    reference: str = ""
    placed_on: date | None = None
    total: Decimal | None = None
    lines: list[OrderLine] = field(default_factory=list)


@dataclass(eq=False, kw_only=True)
class OrderLine(Entity):
    sku: str = ""
    quantity: int = 1
    order_id: int | None = None
    order: Order | None = None


@dataclass(eq=False, kw_only=True)
class Tag(Entity):
    label: str = ""


@dataclass(eq=False, kw_only=True)
class Catalog(Entity):
    name: str = ""
    tags: list[Tag] = field(default_factory=list)


class Priority(Enum):
    LOW = "low"
    HIGH = "high"


@dataclass(eq=False, kw_only=True)
class Task(Entity):
    __tablename__: ClassVar[str] = "work_tasks"

    title: str = ""
    priority: Priority = Priority.LOW
    done: bool = False
    payload: bytes | None = None
    scratch: str = not_mapped(default="")


_AUDIT_COLUMNS: Final[str] = """
    created_at TEXT,
    created_by TEXT,
    modified_at TEXT,
    modified_by TEXT
"""

_SOFT_DELETE_COLUMNS: Final[str] = """
    is_deleted INTEGER NOT NULL DEFAULT 0,
    deleted_at TEXT,
    deleted_by TEXT,
"""

SCHEMA_SQL: Final[tuple[str, ...]] = (
    f"""
    CREATE TABLE first_entities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        int_value INTEGER NOT NULL,
        string_value TEXT,
        {_AUDIT_COLUMNS}
    )
    """,
    f"""
    CREATE TABLE second_entities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        int_value INTEGER NOT NULL,
        string_value TEXT,
        first_entity_id INTEGER REFERENCES first_entities(id),
        {_AUDIT_COLUMNS}
    )
    """,
    f"""
    CREATE TABLE soft_deletable_test_entities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        int_value INTEGER NOT NULL,
        string_value TEXT,
        first_entity_id INTEGER REFERENCES first_entities(id),
        {_SOFT_DELETE_COLUMNS}
        {_AUDIT_COLUMNS}
    )
    """,
    f"""
    CREATE TABLE orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        reference TEXT NOT NULL,
        placed_on TEXT,
        total TEXT,
        {_AUDIT_COLUMNS}
    )
    """,
    f"""
    CREATE TABLE order_lines (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sku TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        order_id INTEGER NOT NULL REFERENCES orders(id),
        {_AUDIT_COLUMNS}
    )
    """,
    f"""
    CREATE TABLE catalogs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        {_AUDIT_COLUMNS}
    )
    """,
    f"""
    CREATE TABLE tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        label TEXT NOT NULL,
        {_AUDIT_COLUMNS}
    )
    """,
    f"""
    CREATE TABLE work_tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        priority TEXT NOT NULL,
        done INTEGER NOT NULL,
        payload BLOB,
        {_AUDIT_COLUMNS}
    )
    """,
)


def fixed_now(seed: int) -> datetime:
    return _BASE_TS + timedelta(seconds=seed)


def fixed_clock(start: int = 0) -> Callable[[], datetime]:
    """Clock returning strictly increasing timestamps."""

    state = {"tick": start}

    def _clock() -> datetime:
        state["tick"] += 1
        return fixed_now(state["tick"])

    return _clock


def create_schema(connection: sqlite3.Connection) -> None:
    for statement in SCHEMA_SQL:
        connection.execute(statement)


def open_unit_of_work(path: str = ":memory:", *, user: str = TEST_USER) -> UnitOfWork:
    connection = connect_sqlite(path)
    create_schema(connection)
    return UnitOfWork(connection, user=user)


def count_rows(uow: UnitOfWork, table: str) -> int:
    value = uow.execute_scalar(f"SELECT COUNT(*) FROM {table}")
    assert isinstance(value, int)
    return value


def fetch_row(uow: UnitOfWork, table: str, entity_id: int) -> dict[str, object]:
    row = uow.query_one(f"SELECT * FROM {table} WHERE id = :id", {"id": entity_id})
    assert row is not None
    return row


def make_first(seed: int, *, second: SecondEntity | None = None) -> FirstEntity:
    return FirstEntity(int_value=seed, string_value=f"first-{seed}", second_entity=second)


def make_second(seed: int, *, first: FirstEntity | None = None) -> SecondEntity:
    return SecondEntity(int_value=seed, string_value=f"second-{seed}", first_entity=first)


def make_soft(seed: int) -> SoftDeletableTestEntity:
    return SoftDeletableTestEntity(int_value=seed, string_value=f"soft-{seed}")


def make_order(seed: int, *, line_count: int = 2) -> Order:
    order = Order(
        reference=f"ORD-{seed:04d}",
        placed_on=date(2026, 2, 1) + timedelta(days=seed),
        total=Decimal(f"{seed}.50"),
    )
    order.lines = [
        OrderLine(sku=f"SKU-{seed}-{index}", quantity=index + 1, order=order)
        for index in range(line_count)
    ]
    return order


__all__ = [
    "SCHEMA_SQL",
    "TEST_USER",
    "Catalog",
    "FirstEntity",
    "Order",
    "OrderLine",
    "Priority",
    "SecondEntity",
    "SoftDeletableTestEntity",
    "Tag",
    "Task",
    "count_rows",
    "create_schema",
    "fetch_row",
    "fixed_clock",
    "fixed_now",
    "make_first",
    "make_order",
    "make_second",
    "make_soft",
    "open_unit_of_work",
]
