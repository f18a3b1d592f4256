"""
graph-dal — package root

Purpose
- Generic data-access layer that persists entity object graphs to a relational
  store without per-entity mapping code.

Public surface
- Entity contracts: ``Entity``, ``SoftDeletableEntity``, ``not_mapped``.
- Repository facade and unit of work.
- Error taxonomy.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from graph_dal.domain.entities import Entity, SoftDeletableEntity, not_mapped
from graph_dal.errors import (
    ExecutionError,
    MappingError,
    NullEntityError,
    PersistenceError,
    UnsupportedDialectError,
)
from graph_dal.persistence.repository import Repository
from graph_dal.persistence.unit_of_work import UnitOfWork, connect_sqlite

__version__ = "0.1.0"

__all__ = [
    "Entity",
    "ExecutionError",
    "MappingError",
    "NullEntityError",
    "PersistenceError",
    "Repository",
    "SoftDeletableEntity",
    "UnitOfWork",
    "UnsupportedDialectError",
    "__version__",
    "connect_sqlite",
    "not_mapped",
]
