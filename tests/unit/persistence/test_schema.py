"""Schema reflection: naming conventions, column layout and value coercion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from decimal import Decimal

import pytest

from graph_dal.domain.entities import Entity
from graph_dal.errors import MappingError
from graph_dal.persistence.schema import (
    ColumnDescriptor,
    describe,
    pluralize,
    snake_case,
    table_name_for,
)

from . import (
    Catalog,
    FirstEntity,
    Order,
    OrderLine,
    Priority,
    SecondEntity,
    SoftDeletableTestEntity,
    Tag,
    Task,
)


@dataclass(eq=False, kw_only=True)
class Category(Entity):
    name: str = ""


class NotADataclass(Entity):
    pass


@pytest.mark.parametrize(
    ("word", "expected"),
    [
        ("category", "categories"),
        ("box", "boxes"),
        ("dish", "dishes"),
        ("bus", "buses"),
        ("car", "cars"),
        ("church", "churches"),
        ("day", "days"),
        ("key", "keys"),
        ("y", "ys"),
        ("", ""),
        ("   ", "   "),
    ],
)
def test_pluralize_suffix_rules(word: str, expected: str) -> None:
    assert pluralize(word) == expected


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("FirstEntity", "first_entity"),
        ("SoftDeletableTestEntity", "soft_deletable_test_entity"),
        ("HTTPRequest", "http_request"),
        ("Order2Line", "order2_line"),
        ("tag", "tag"),
    ],
)
def test_snake_case_splits_camel_case_boundaries(name: str, expected: str) -> None:
    assert snake_case(name) == expected


def test_table_names_follow_conventions_and_overrides() -> None:
    assert table_name_for(FirstEntity) == "first_entities"
    assert table_name_for(SecondEntity) == "second_entities"
    assert table_name_for(SoftDeletableTestEntity) == "soft_deletable_test_entities"
    assert table_name_for(OrderLine) == "order_lines"
    assert table_name_for(Category) == "categories"
    assert table_name_for(Task) == "work_tasks"


def test_describe_separates_columns_references_and_collections() -> None:
    first = describe(FirstEntity)
    assert first.column_names == (
        "created_at",
        "created_by",
        "modified_at",
        "modified_by",
        "int_value",
        "string_value",
    )
    assert [reference.name for reference in first.references] == ["second_entity"]
    assert first.references[0].foreign_key is None
    assert not first.references[0].owns_link
    assert first.collections == ()

    second = describe(SecondEntity)
    assert "first_entity_id" in second.column_names
    assert "first_entity" not in second.column_names
    (reference,) = second.references
    assert reference.target_type is FirstEntity
    assert reference.foreign_key == "first_entity_id"
    assert reference.owns_link

    order = describe(Order)
    assert [collection.name for collection in order.collections] == ["lines"]
    assert order.collections[0].element_type is OrderLine
    assert "lines" not in order.column_names

    catalog = describe(Catalog)
    assert catalog.collections[0].element_type is Tag


def test_describe_excludes_identity_and_not_mapped_fields() -> None:
    descriptor = describe(Task)

    assert "id" not in descriptor.column_names
    assert "scratch" not in descriptor.column_names
    assert descriptor.has_field("id")
    assert descriptor.has_field("priority")
    assert not descriptor.has_field("scratch")

    priority = descriptor.column("priority")
    assert priority is not None
    assert priority.python_type is Priority
    assert not priority.nullable

    payload = descriptor.column("payload")
    assert payload is not None
    assert payload.python_type is bytes
    assert payload.nullable


def test_soft_delete_columns_and_change_columns() -> None:
    soft = describe(SoftDeletableTestEntity)
    assert soft.soft_deletable
    assert {"is_deleted", "deleted_at", "deleted_by"} <= set(soft.column_names)

    plain = describe(FirstEntity)
    assert not plain.soft_deletable
    assert "modified_at" not in plain.change_columns
    assert "modified_by" not in plain.change_columns
    assert "created_at" in plain.change_columns


def test_describe_is_cached_per_type() -> None:
    assert describe(FirstEntity) is describe(FirstEntity)


def test_describe_rejects_unmappable_types() -> None:
    with pytest.raises(MappingError, match="not an Entity subclass"):
        describe(int)
    with pytest.raises(MappingError, match="must be a dataclass"):
        describe(NotADataclass)


def test_mapping_errors_are_logged_before_raising(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR, logger="graph_dal.persistence.schema"):
        with pytest.raises(MappingError):
            describe(NotADataclass)

    assert [
        record.getMessage()
        for record in caplog.records
        if record.name == "graph_dal.persistence.schema"
    ] == ["NotADataclass must be a dataclass"]


def test_column_from_db_coerces_driver_values() -> None:
    stamp = datetime(2026, 2, 1, 12, 30, tzinfo=UTC)

    assert ColumnDescriptor("a", datetime, True).from_db(stamp.isoformat()) == stamp
    assert ColumnDescriptor("b", date, True).from_db("2026-02-01") == date(2026, 2, 1)
    assert ColumnDescriptor("c", time, True).from_db("12:30:00") == time(12, 30)
    assert ColumnDescriptor("d", bool, False).from_db(1) is True
    assert ColumnDescriptor("e", Decimal, True).from_db("10.50") == Decimal("10.50")
    assert ColumnDescriptor("f", Decimal, True).from_db(2.5) == Decimal("2.5")
    assert ColumnDescriptor("g", Priority, False).from_db("high") is Priority.HIGH
    assert ColumnDescriptor("h", bytes, True).from_db(memoryview(b"ab")) == b"ab"
    assert ColumnDescriptor("i", float, True).from_db(3) == 3.0
    assert ColumnDescriptor("j", int, True).from_db(None) is None


def test_row_to_entity_materializes_declared_types() -> None:
    descriptor = describe(Task)
    entity = descriptor.row_to_entity(
        {
            "id": 7,
            "title": "write docs",
            "priority": "high",
            "done": 0,
            "payload": None,
            "created_at": "2026-02-01T12:00:00+00:00",
            "created_by": "alice",
            "modified_at": None,
            "modified_by": None,
        }
    )

    assert isinstance(entity, Task)
    assert entity.id == 7
    assert entity.priority is Priority.HIGH
    assert entity.done is False
    assert entity.created_at == datetime(2026, 2, 1, 12, 0, tzinfo=UTC)
    assert entity.scratch == ""
