"""
graph-dal — cascading entity-graph persister

Purpose
- Persist an entity together with every entity reachable from it through
  reference and collection fields, wiring foreign keys on the way.

Algorithm (per node, depth first)
1. Pre-wiring: for each reference the node owns (``<field>_id`` exists),
   persist a transient child first, then copy its identity into the node's
   foreign key when that key is still unset.
2. Self-persist: INSERT (identity fetched in the same operation) when
   transient, otherwise an UPDATE guarded by a null-safe change predicate.
3. Mark the node visited.
4. Post-wiring: children that own the link back (non-owned references and
   collection elements) receive the node's identity and are persisted.

Known ordering edge case
- Pre-wiring hands a transient child the node's identity before the node is
  inserted, so that identity is still 0 when a transient node owns a link to a
  transient child that also points back at it. The value is not back-filled
  after the node's insert.

Functional requirements
- Each instance is persisted at most once per operation (identity-keyed
  visited set); cycles terminate.
- Two transient entities that each own a foreign key to the other cannot be
  ordered; that cycle raises ``MappingError``.
- A non-zero foreign key is never overwritten by wiring.
- The persister issues statements only; it never begins, commits or rolls back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from graph_dal.constants import (
    CREATED_AT_FIELD,
    CREATED_BY_FIELD,
    IDENTITY_FIELD,
    MODIFIED_AT_FIELD,
    MODIFIED_BY_FIELD,
    TRANSIENT_ID,
)
from graph_dal.domain.entities import Entity
from graph_dal.errors import MappingError, NullEntityError
from graph_dal.persistence.references import find_back_reference
from graph_dal.persistence.schema import EntityDescriptor, describe

if TYPE_CHECKING:
    from graph_dal.persistence.unit_of_work import UnitOfWork

TEntity = TypeVar("TEntity", bound=Entity)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class VisitedSet:
    """Entities already persisted during one save operation, keyed by object identity."""

    __slots__ = ("_entities", "_in_progress")

    def __init__(self) -> None:
        # Holding the entity keeps its id() from being reused mid-operation.
        self._entities: dict[int, Entity] = {}
        self._in_progress: dict[int, Entity] = {}

    def __contains__(self, entity: object) -> bool:
        return id(entity) in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self._entities.values())

    def add(self, entity: Entity) -> None:
        self._entities[id(entity)] = entity

    def enter(self, entity: Entity) -> bool:
        """Mark ``entity`` as being persisted; ``False`` if it already was."""
        if id(entity) in self._in_progress:
            return False
        self._in_progress[id(entity)] = entity
        return True

    def leave(self, entity: Entity) -> None:
        self._in_progress.pop(id(entity), None)

    def is_in_progress(self, entity: object) -> bool:
        return id(entity) in self._in_progress


class EntityGraphPersister:
    """Type-agnostic cascading save over one unit of work."""

    def __init__(
        self,
        unit_of_work: UnitOfWork,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._uow = unit_of_work
        self._clock = clock

    def persist_graph(self, entity: TEntity | None, visited: VisitedSet | None = None) -> TEntity:
        """Insert or update ``entity`` and cascade into its related entities."""

        if entity is None:
            logger.error("refusing to persist a null entity")
            raise NullEntityError("entity must not be None")
        if visited is None:
            visited = VisitedSet()
        if entity in visited:
            return entity

        descriptor = describe(type(entity))
        entered = visited.enter(entity)
        try:
            self._persist_owned_references(entity, descriptor, visited)
            if entity.id == TRANSIENT_ID:
                self._insert(entity, descriptor)
            else:
                self._update(entity, descriptor)
            visited.add(entity)
            self._persist_dependents(entity, descriptor, visited)
        finally:
            if entered:
                visited.leave(entity)
        return entity

    def _persist_owned_references(
        self,
        entity: Entity,
        descriptor: EntityDescriptor,
        visited: VisitedSet,
    ) -> None:
        for reference in descriptor.references:
            foreign_key = reference.foreign_key
            if foreign_key is None:
                continue
            child = getattr(entity, reference.name, None)
            if child is None:
                continue

            if child.id == TRANSIENT_ID:
                if visited.is_in_progress(child):
                    message = (
                        f"{type(entity).__name__}.{reference.name} and "
                        f"{type(child).__name__} each own a foreign key to the other; "
                        "neither can be inserted first"
                    )
                    logger.error(message)
                    raise MappingError(message)
                back_reference = find_back_reference(entity, child)
                if back_reference is not None and not getattr(child, back_reference, None):
                    setattr(child, back_reference, entity.id)
                self.persist_graph(child, visited)

            # The object reference is cosmetic once an explicit key is set.
            if not getattr(entity, foreign_key, None):
                setattr(entity, foreign_key, child.id)

    def _persist_dependents(
        self,
        entity: Entity,
        descriptor: EntityDescriptor,
        visited: VisitedSet,
    ) -> None:
        for reference in descriptor.references:
            if reference.owns_link:
                continue
            child = getattr(entity, reference.name, None)
            if child is not None:
                self._attach_dependent(entity, child, reference.name, visited)

        for collection in descriptor.collections:
            children = getattr(entity, collection.name, None)
            if not children:
                continue
            for child in list(children):
                self._attach_dependent(entity, child, collection.name, visited)

    def _attach_dependent(
        self,
        parent: Entity,
        child: Entity | None,
        field_name: str,
        visited: VisitedSet,
    ) -> None:
        if child is None:
            logger.error("null entity in %s.%s", type(parent).__name__, field_name)
            raise NullEntityError(f"{type(parent).__name__}.{field_name} contains None")

        back_reference = find_back_reference(parent, child)
        if back_reference is None:
            message = (
                f"{type(child).__name__} has no foreign key back to {type(parent).__name__}; "
                f"cannot persist {type(parent).__name__}.{field_name}"
            )
            logger.error(message)
            raise MappingError(message)

        if not getattr(child, back_reference, None):
            setattr(child, back_reference, parent.id)
        self.persist_graph(child, visited)

    def _insert(self, entity: Entity, descriptor: EntityDescriptor) -> None:
        setattr(entity, CREATED_AT_FIELD, self._clock())
        setattr(entity, CREATED_BY_FIELD, self._uow.user)

        quote = self._uow.dialect.quote
        columns = descriptor.column_names
        template = (
            f"INSERT INTO {quote(descriptor.table_name)} "
            f"({', '.join(quote(column) for column in columns)}) "
            f"VALUES ({', '.join(f':{column}' for column in columns)})"
        )
        entity.id = self._uow.execute_insert(template, column_values(entity, descriptor))
        logger.debug("inserted %s id=%d", descriptor.table_name, entity.id)

    def _update(self, entity: Entity, descriptor: EntityDescriptor) -> None:
        previous_stamp = (
            getattr(entity, MODIFIED_AT_FIELD),
            getattr(entity, MODIFIED_BY_FIELD),
        )
        setattr(entity, MODIFIED_AT_FIELD, self._clock())
        setattr(entity, MODIFIED_BY_FIELD, self._uow.user)

        dialect = self._uow.dialect
        quote = dialect.quote
        assignments = ", ".join(
            f"{quote(column)} = :{column}" for column in descriptor.column_names
        )
        change_guard = " OR ".join(
            dialect.differs(column, column) for column in descriptor.change_columns
        )
        template = (
            f"UPDATE {quote(descriptor.table_name)} SET {assignments} "
            f"WHERE {quote(IDENTITY_FIELD)} = :{IDENTITY_FIELD} AND ({change_guard})"
        )
        params = column_values(entity, descriptor)
        params[IDENTITY_FIELD] = entity.id

        affected = self._uow.execute(template, params)
        if affected == 0:
            # Nothing changed; keep the in-memory stamps in line with the stored row.
            setattr(entity, MODIFIED_AT_FIELD, previous_stamp[0])
            setattr(entity, MODIFIED_BY_FIELD, previous_stamp[1])
            logger.debug("no changes for %s id=%d", descriptor.table_name, entity.id)
        else:
            logger.debug("updated %s id=%d", descriptor.table_name, entity.id)


def column_values(entity: Entity, descriptor: EntityDescriptor) -> dict[str, object]:
    return {column: getattr(entity, column) for column in descriptor.column_names}


__all__ = ["EntityGraphPersister", "VisitedSet", "column_values", "utc_now"]
