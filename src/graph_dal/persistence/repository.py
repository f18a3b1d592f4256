"""
graph-dal — generic repository

Purpose
- Single-table CRUD for one entity type, with saves cascading through the
  entity graph.

What should be included in this file
- ``Repository[T]``: get_by_id / get_by_ids / get_all, insert / save (single
  entity or iterable), delete (id, entity or iterables of either), delete_all.
- Soft-delete substitution for ``SoftDeletableEntity`` types.
- Index access: ``repo[id]`` reads, ``repo[id] = entity`` saves.

Functional requirements
- Every top-level insert/save starts with a fresh visited set.
- Reads are ordered by ``created_at`` then ``id``; soft-deleted rows are
  hidden from ``get_all`` unless requested.
- Never begins, commits or rolls back; callers scope work with
  ``UnitOfWork.transaction()``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Generic, TypeVar, cast, overload

from graph_dal.constants import (
    CREATED_AT_FIELD,
    DELETED_AT_FIELD,
    DELETED_BY_FIELD,
    IDENTITY_FIELD,
    IS_DELETED_FIELD,
    TRANSIENT_ID,
)
from graph_dal.domain.entities import Entity, SoftDeletableEntity
from graph_dal.errors import NullEntityError
from graph_dal.observability.logging import correlation_scope, timed_operation
from graph_dal.persistence.persister import EntityGraphPersister, VisitedSet, utc_now
from graph_dal.persistence.schema import EntityDescriptor, describe

if TYPE_CHECKING:
    from graph_dal.persistence.unit_of_work import Row, UnitOfWork

TEntity = TypeVar("TEntity", bound=Entity)

logger = logging.getLogger(__name__)


class Repository(Generic[TEntity]):
    """CRUD access to the table of ``entity_type`` within one unit of work."""

    def __init__(self, entity_type: type[TEntity], unit_of_work: UnitOfWork) -> None:
        self._entity_type = entity_type
        self._descriptor = describe(entity_type)
        self._uow = unit_of_work
        self._persister = EntityGraphPersister(unit_of_work)

    @property
    def entity_type(self) -> type[TEntity]:
        return self._entity_type

    @property
    def descriptor(self) -> EntityDescriptor:
        return self._descriptor

    @property
    def table_name(self) -> str:
        return self._descriptor.table_name

    @property
    def unit_of_work(self) -> UnitOfWork:
        return self._uow

    @property
    def user(self) -> str:
        return self._uow.user

    # ------------------------------------------------------------------ reads

    def get_by_id(self, entity_id: int) -> TEntity | None:
        with self._operation("get_by_id", entity_id=entity_id):
            row = self._uow.query_one(
                f"{self._select()} WHERE {self._q(IDENTITY_FIELD)} = :{IDENTITY_FIELD}",
                {IDENTITY_FIELD: entity_id},
            )
            return None if row is None else self._materialize(row)

    def get_by_ids(self, entity_ids: Iterable[int]) -> list[TEntity]:
        """Load the entities with the given ids, ordered by creation time."""

        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        with self._operation("get_by_ids", count=len(ids)):
            rows = self._uow.query_all(
                f"{self._select()} WHERE {self._q(IDENTITY_FIELD)} IN :ids "
                f"ORDER BY {self._order_by()}",
                {"ids": ids},
            )
            return [self._materialize(row) for row in rows]

    def get_all(self, *, include_deleted: bool = False) -> list[TEntity]:
        """Load every row of the table, ordered by creation time.

        Soft-deleted rows are skipped unless ``include_deleted`` is set.
        """

        with self._operation("get_all", include_deleted=include_deleted):
            template = self._select()
            params: dict[str, object] = {}
            if self._descriptor.soft_deletable and not include_deleted:
                template += f" WHERE {self._q(IS_DELETED_FIELD)} = :{IS_DELETED_FIELD}"
                params[IS_DELETED_FIELD] = False
            template += f" ORDER BY {self._order_by()}"
            return [self._materialize(row) for row in self._uow.query_all(template, params)]

    def __getitem__(self, entity_id: int) -> TEntity:
        entity = self.get_by_id(entity_id)
        if entity is None:
            raise KeyError(entity_id)
        return entity

    # ----------------------------------------------------------------- writes

    @overload
    def insert(self, target: TEntity) -> TEntity: ...

    @overload
    def insert(self, target: Iterable[TEntity]) -> int: ...

    def insert(self, target: TEntity | Iterable[TEntity]) -> TEntity | int:
        """Insert ``target`` as new row(s) regardless of any identity it carries."""

        if isinstance(target, Entity):
            with self._operation("insert", entity_id=target.id):
                target.id = TRANSIENT_ID
                return self._persister.persist_graph(target, VisitedSet())

        entities = self._require_entities(target)
        with self._operation("insert_many", count=len(entities)):
            for entity in entities:
                entity.id = TRANSIENT_ID
                self._persister.persist_graph(entity, VisitedSet())
            return len(entities)

    @overload
    def save(self, target: TEntity) -> TEntity: ...

    @overload
    def save(self, target: Iterable[TEntity]) -> int: ...

    def save(self, target: TEntity | Iterable[TEntity]) -> TEntity | int:
        """Insert transient entities and update persisted ones, cascading through references."""

        if isinstance(target, Entity):
            with self._operation("save", entity_id=target.id):
                return self._persister.persist_graph(target, VisitedSet())

        entities = self._require_entities(target)
        with self._operation("save_many", count=len(entities)):
            for entity in entities:
                self._persister.persist_graph(entity, VisitedSet())
            return len(entities)

    def __setitem__(self, entity_id: int, entity: TEntity) -> None:
        if entity is None:
            logger.error("refusing to save a null entity into %s", self.table_name)
            raise NullEntityError("entity must not be None")
        if entity.id != entity_id:
            raise ValueError(f"key {entity_id} does not match entity id {entity.id}")
        self.save(entity)

    @overload
    def delete(self, target: int | TEntity, *, force_hard_delete: bool = False) -> bool: ...

    @overload
    def delete(
        self,
        target: Iterable[int] | Iterable[TEntity],
        *,
        force_hard_delete: bool = False,
    ) -> int: ...

    def delete(
        self,
        target: int | TEntity | Iterable[int] | Iterable[TEntity],
        *,
        force_hard_delete: bool = False,
    ) -> bool | int:
        """Delete by id or entity; soft-deletable types are flagged unless forced.

        A single target returns whether a row was affected; an iterable returns
        the number of rows affected.
        """

        if target is None:
            logger.error("refusing to delete a null entity from %s", self.table_name)
            raise NullEntityError("delete target must not be None")
        if isinstance(target, (int, Entity)) and not isinstance(target, bool):
            entity = target if isinstance(target, Entity) else None
            entity_id = target.id if isinstance(target, Entity) else target
            with self._operation("delete", entity_id=entity_id, force=force_hard_delete):
                stamp = self._soft_delete_params()
                affected = self._delete_ids([entity_id], force_hard_delete, stamp)
                if entity is not None and affected > 0:
                    self._mark_deleted(entity, force_hard_delete, stamp)
                return affected > 0

        items = list(target)
        if any(item is None for item in items):
            logger.error("null delete target for %s", self.table_name)
            raise NullEntityError("delete targets must not contain None")
        entities = [item for item in items if isinstance(item, Entity)]
        ids = [item.id if isinstance(item, Entity) else item for item in items]
        with self._operation("delete_many", count=len(ids), force=force_hard_delete):
            stamp = self._soft_delete_params()
            affected = self._delete_ids(ids, force_hard_delete, stamp)
            if affected > 0:
                for entity in entities:
                    if entity.id != TRANSIENT_ID:
                        self._mark_deleted(entity, force_hard_delete, stamp)
            return affected

    def delete_all(self, *, force_hard_delete: bool = False) -> int:
        """Delete every row of the table; soft-deletable types are flagged unless forced."""

        with self._operation("delete_all", force=force_hard_delete):
            if force_hard_delete or not self._descriptor.soft_deletable:
                return self._uow.execute(f"DELETE FROM {self._q(self.table_name)}")
            return self._uow.execute(
                f"{self._soft_delete_prefix()} WHERE {self._q(IS_DELETED_FIELD)} = :not_deleted",
                {**self._soft_delete_params(), "not_deleted": False},
            )

    # -------------------------------------------------------------- internals

    @contextmanager
    def _operation(self, name: str, **fields: object) -> Iterator[None]:
        with correlation_scope(
            unit_of_work=self._uow.name,
            table=self.table_name,
            user=self._uow.user,
        ):
            with timed_operation(logger, f"{self._entity_type.__name__}.{name}", **fields):
                yield

    def _q(self, identifier: str) -> str:
        return self._uow.dialect.quote(identifier)

    def _order_by(self) -> str:
        # Identity breaks ties between rows stamped in the same instant.
        return f"{self._q(CREATED_AT_FIELD)}, {self._q(IDENTITY_FIELD)}"

    def _select(self) -> str:
        names = (IDENTITY_FIELD, *self._descriptor.column_names)
        columns = ", ".join(self._q(name) for name in names)
        return f"SELECT {columns} FROM {self._q(self.table_name)}"

    def _materialize(self, row: Row) -> TEntity:
        return cast("TEntity", self._descriptor.row_to_entity(row))

    def _require_entities(self, target: Iterable[TEntity]) -> list[TEntity]:
        if target is None:
            logger.error("null entity batch for %s", self.table_name)
            raise NullEntityError("entities must not be None")
        entities = list(target)
        if any(entity is None for entity in entities):
            logger.error("null entity in batch for %s", self.table_name)
            raise NullEntityError("entities must not contain None")
        return entities

    def _delete_ids(
        self,
        ids: list[int],
        force_hard_delete: bool,
        stamp: dict[str, object],
    ) -> int:
        if not ids:
            return 0
        where = f" WHERE {self._q(IDENTITY_FIELD)} IN :ids"
        if force_hard_delete or not self._descriptor.soft_deletable:
            return self._uow.execute(f"DELETE FROM {self._q(self.table_name)}{where}", {"ids": ids})
        return self._uow.execute(
            f"{self._soft_delete_prefix()}{where}",
            {**stamp, "ids": ids},
        )

    def _soft_delete_prefix(self) -> str:
        return (
            f"UPDATE {self._q(self.table_name)} SET "
            f"{self._q(IS_DELETED_FIELD)} = :{IS_DELETED_FIELD}, "
            f"{self._q(DELETED_AT_FIELD)} = :{DELETED_AT_FIELD}, "
            f"{self._q(DELETED_BY_FIELD)} = :{DELETED_BY_FIELD}"
        )

    def _soft_delete_params(self) -> dict[str, object]:
        return {
            IS_DELETED_FIELD: True,
            DELETED_AT_FIELD: utc_now(),
            DELETED_BY_FIELD: self._uow.user,
        }

    def _mark_deleted(
        self,
        entity: Entity,
        force_hard_delete: bool,
        stamp: dict[str, object],
    ) -> None:
        if force_hard_delete or not isinstance(entity, SoftDeletableEntity):
            return
        for name, value in stamp.items():
            setattr(entity, name, value)


__all__ = ["Repository"]
