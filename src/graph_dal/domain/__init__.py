"""Entity contracts persisted by the data-access layer."""

from graph_dal.domain.entities import Entity, SoftDeletableEntity, not_mapped

__all__ = ["Entity", "SoftDeletableEntity", "not_mapped"]
