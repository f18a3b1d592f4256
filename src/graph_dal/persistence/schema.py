"""
graph-dal — schema reflection

Purpose
- Derive the table name and persistable column layout of an entity type.

What is included in this file
- ``pluralize`` / ``snake_case`` naming helpers and ``table_name_for``.
- ``EntityDescriptor`` with column, reference and collection descriptors.
- Per-type descriptor cache (``describe``).
- Driver value coercion back to declared python types.

Functional requirements
- Reference and collection fields never become columns; they drive traversal.
- A descriptor is computed once per type and reused for the process lifetime.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import logging
import re
import types
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Final, Union, get_args, get_origin, get_type_hints

from graph_dal.constants import (
    FOREIGN_KEY_SUFFIX,
    IDENTITY_FIELD,
    MODIFICATION_FIELDS,
    NOT_MAPPED_METADATA_KEY,
    TABLE_NAME_ATTRIBUTE,
)
from graph_dal.domain.entities import Entity, SoftDeletableEntity
from graph_dal.errors import MappingError

logger = logging.getLogger(__name__)

_SCALAR_TYPES: Final[tuple[type, ...]] = (
    bool,
    int,
    float,
    Decimal,
    str,
    bytes,
    bytearray,
    datetime,
    date,
    time,
)

_COLLECTION_ORIGINS: Final[frozenset[object]] = frozenset(
    {
        list,
        tuple,
        set,
        frozenset,
        collections.abc.Collection,
        collections.abc.Iterable,
        collections.abc.MutableSequence,
        collections.abc.MutableSet,
        collections.abc.Sequence,
        collections.abc.Set,
    }
)

_CAMEL_BOUNDARY: Final[re.Pattern[str]] = re.compile(
    r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])"
)
_VOWELS: Final[str] = "aeiou"
_SIBILANT_SUFFIXES: Final[tuple[str, ...]] = ("s", "x", "z", "ch", "sh")


def pluralize(word: str) -> str:
    """Return the English plural of ``word`` using the table-naming suffix rules."""

    if not word or not word.strip():
        return word
    if word.endswith("y") and len(word) > 1 and word[-2].lower() not in _VOWELS:
        return word[:-1] + "ies"
    if word.endswith(_SIBILANT_SUFFIXES):
        return word + "es"
    return word + "s"


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def table_name_for(entity_type: type) -> str:
    explicit = getattr(entity_type, TABLE_NAME_ATTRIBUTE, None)
    if isinstance(explicit, str) and explicit.strip():
        return explicit.strip()
    return pluralize(snake_case(entity_type.__name__))


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    """A scalar field stored in a column of the same name."""

    name: str
    python_type: type
    nullable: bool

    def from_db(self, value: object) -> object:
        """Coerce a value returned by the driver to the declared python type."""

        if value is None:
            return None
        target = self.python_type
        if issubclass(target, Enum):
            return value if isinstance(value, target) else target(value)
        if target is bool:
            return bool(value)
        if target is datetime:
            return datetime.fromisoformat(value) if isinstance(value, str) else value
        if target is date:
            if isinstance(value, datetime):
                return value.date()
            return date.fromisoformat(value) if isinstance(value, str) else value
        if target is time:
            return time.fromisoformat(value) if isinstance(value, str) else value
        if target is Decimal:
            return value if isinstance(value, Decimal) else Decimal(str(value))
        if target is float and isinstance(value, (int, Decimal)):
            return float(value)
        if target in (bytes, bytearray) and isinstance(value, (memoryview, bytearray, bytes)):
            return target(value)
        return value


@dataclass(frozen=True, slots=True)
class ReferenceDescriptor:
    """A field holding a single related entity."""

    name: str
    target_type: type[Entity]
    foreign_key: str | None

    @property
    def owns_link(self) -> bool:
        return self.foreign_key is not None


@dataclass(frozen=True, slots=True)
class CollectionDescriptor:
    """A field holding a collection of related entities; the elements own the link."""

    name: str
    element_type: type[Entity]


@dataclass(frozen=True, slots=True)
class EntityDescriptor:
    """Reflected layout of one entity type."""

    entity_type: type[Entity]
    table_name: str
    columns: tuple[ColumnDescriptor, ...]
    references: tuple[ReferenceDescriptor, ...]
    collections: tuple[CollectionDescriptor, ...]

    @property
    def soft_deletable(self) -> bool:
        return issubclass(self.entity_type, SoftDeletableEntity)

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    @property
    def change_columns(self) -> tuple[str, ...]:
        """Columns compared by the update change guard."""
        return tuple(
            column.name for column in self.columns if column.name not in MODIFICATION_FIELDS
        )

    def column(self, name: str) -> ColumnDescriptor | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def has_field(self, name: str) -> bool:
        return name == IDENTITY_FIELD or self.column(name) is not None

    def row_to_entity(self, row: collections.abc.Mapping[str, object]) -> Entity:
        """Materialize an entity from a result row keyed by column name."""

        values: dict[str, Any] = {}
        for column in self.columns:
            if column.name in row:
                values[column.name] = column.from_db(row[column.name])
        entity = self.entity_type(**_init_values(self.entity_type, values))
        for name, value in values.items():
            setattr(entity, name, value)
        raw_id = row.get(IDENTITY_FIELD)
        if raw_id is not None:
            entity.id = int(raw_id)
        return entity


@lru_cache(maxsize=None)
def describe(entity_type: type) -> EntityDescriptor:
    """Reflect ``entity_type`` into a cached ``EntityDescriptor``."""

    if not isinstance(entity_type, type) or not issubclass(entity_type, Entity):
        raise _mapping_error(f"{entity_type!r} is not an Entity subclass")
    if "__dataclass_fields__" not in vars(entity_type):
        raise _mapping_error(f"{entity_type.__name__} must be a dataclass")

    try:
        hints = get_type_hints(entity_type)
    except NameError as exc:
        raise _mapping_error(
            f"cannot resolve annotations of {entity_type.__name__}: {exc}"
        ) from exc

    columns: list[ColumnDescriptor] = []
    reference_fields: list[tuple[str, type[Entity]]] = []
    collections_: list[CollectionDescriptor] = []

    for item in dataclasses.fields(entity_type):
        if item.name == IDENTITY_FIELD or item.metadata.get(NOT_MAPPED_METADATA_KEY):
            continue
        annotation, nullable = _unwrap_optional(hints.get(item.name, item.type))
        if _is_scalar(annotation):
            columns.append(ColumnDescriptor(item.name, annotation, nullable))
        elif _is_entity_type(annotation):
            reference_fields.append((item.name, annotation))
        else:
            element_type = _collection_element_type(annotation)
            if element_type is not None:
                collections_.append(CollectionDescriptor(item.name, element_type))

    integer_columns = {
        column.name
        for column in columns
        if issubclass(column.python_type, int) and not issubclass(column.python_type, bool)
    }
    references = tuple(
        ReferenceDescriptor(
            name=name,
            target_type=target,
            foreign_key=(
                f"{name}{FOREIGN_KEY_SUFFIX}"
                if f"{name}{FOREIGN_KEY_SUFFIX}" in integer_columns
                else None
            ),
        )
        for name, target in reference_fields
    )

    return EntityDescriptor(
        entity_type=entity_type,
        table_name=table_name_for(entity_type),
        columns=tuple(columns),
        references=references,
        collections=tuple(collections_),
    )


def _mapping_error(message: str) -> MappingError:
    logger.error(message)
    return MappingError(message)


def _unwrap_optional(annotation: object) -> tuple[Any, bool]:
    if get_origin(annotation) in (Union, types.UnionType):
        args = get_args(annotation)
        non_none = [arg for arg in args if arg is not type(None)]
        nullable = len(non_none) != len(args)
        if len(non_none) == 1:
            return non_none[0], nullable
        return annotation, nullable
    return annotation, False


def _is_scalar(annotation: object) -> bool:
    if not isinstance(annotation, type):
        return False
    return issubclass(annotation, Enum) or annotation in _SCALAR_TYPES


def _is_entity_type(annotation: object) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, Entity)


def _collection_element_type(annotation: object) -> type[Entity] | None:
    if get_origin(annotation) not in _COLLECTION_ORIGINS:
        return None
    args = get_args(annotation)
    if not args:
        return None
    element, _ = _unwrap_optional(args[0])
    return element if _is_entity_type(element) else None


def _init_values(entity_type: type, values: dict[str, Any]) -> dict[str, Any]:
    init_names = {item.name for item in dataclasses.fields(entity_type) if item.init}
    return {name: value for name, value in values.items() if name in init_names}


__all__ = [
    "CollectionDescriptor",
    "ColumnDescriptor",
    "EntityDescriptor",
    "ReferenceDescriptor",
    "describe",
    "pluralize",
    "snake_case",
    "table_name_for",
]
