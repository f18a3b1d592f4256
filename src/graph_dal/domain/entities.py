"""Base entity dataclasses carrying identity, audit and soft-delete fields.

Concrete entities subclass these with ``@dataclass(eq=False, kw_only=True)``.
``eq=False`` keeps comparison and hashing by reference identity, which is what
the graph persister relies on when it walks an object graph.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from graph_dal.constants import NOT_MAPPED_METADATA_KEY, TRANSIENT_ID


def not_mapped(*, default: Any = None, default_factory: Any = dataclasses.MISSING) -> Any:
    """Declare a dataclass field that is never written to the database."""

    metadata = {NOT_MAPPED_METADATA_KEY: True}
    if default_factory is not dataclasses.MISSING:
        return dataclasses.field(default_factory=default_factory, metadata=metadata)
    return dataclasses.field(default=default, metadata=metadata)


@dataclass(eq=False, kw_only=True)
class Entity:
    """Identity plus creation/modification audit fields."""

    id: int = TRANSIENT_ID
    created_at: datetime | None = None
    created_by: str | None = None
    modified_at: datetime | None = None
    modified_by: str | None = None

    @property
    def is_transient(self) -> bool:
        return self.id == TRANSIENT_ID


@dataclass(eq=False, kw_only=True)
class SoftDeletableEntity(Entity):
    """Entity whose rows are flagged deleted instead of removed."""

    is_deleted: bool = False
    deleted_at: datetime | None = None
    deleted_by: str | None = None


__all__ = ["Entity", "SoftDeletableEntity", "not_mapped"]
