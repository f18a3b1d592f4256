"""Persistence layer: schema reflection, dialects, graph persister, repositories."""

from graph_dal.persistence.dialect import (
    Dialect,
    configure_dialect,
    last_insert_id_statement,
    reset_dialect,
    resolve_dialect,
)
from graph_dal.persistence.persister import EntityGraphPersister, VisitedSet
from graph_dal.persistence.references import find_back_reference
from graph_dal.persistence.repository import Repository
from graph_dal.persistence.schema import EntityDescriptor, describe, pluralize, table_name_for
from graph_dal.persistence.unit_of_work import UnitOfWork, connect_sqlite

__all__ = [
    "Dialect",
    "EntityDescriptor",
    "EntityGraphPersister",
    "Repository",
    "UnitOfWork",
    "VisitedSet",
    "configure_dialect",
    "connect_sqlite",
    "describe",
    "find_back_reference",
    "last_insert_id_statement",
    "pluralize",
    "reset_dialect",
    "resolve_dialect",
    "table_name_for",
]
