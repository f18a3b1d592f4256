"""Back-reference resolution between a parent entity and a related child entity."""

from __future__ import annotations

import logging

from graph_dal.domain.entities import Entity
from graph_dal.persistence.schema import ReferenceDescriptor, describe

logger = logging.getLogger(__name__)


def back_reference_candidates(
    parent_type: type, child_type: type
) -> tuple[ReferenceDescriptor, ...]:
    """Reference fields on ``child_type`` whose declared type is related to ``parent_type``.

    A field matches when it is declared with ``parent_type``, a subclass of it,
    or a base class that ``parent_type`` instances can be assigned to.
    """

    return tuple(
        reference
        for reference in describe(child_type).references
        if issubclass(reference.target_type, parent_type)
        or issubclass(parent_type, reference.target_type)
    )


def find_back_reference(parent: Entity, child: Entity) -> str | None:
    """Return the foreign-key field on ``child`` that should point at ``parent``.

    When several fields of ``child`` are declared with the parent's type, the one
    currently holding ``parent`` itself wins; otherwise the first declared one.
    ``None`` means the child type has no usable back-reference.
    """

    candidates = back_reference_candidates(type(parent), type(child))
    if not candidates:
        return None

    chosen = next(
        (reference for reference in candidates if getattr(child, reference.name, None) is parent),
        candidates[0],
    )
    foreign_key = chosen.foreign_key
    if foreign_key is None:
        logger.debug(
            "back-reference %s.%s has no foreign-key field",
            type(child).__name__,
            chosen.name,
        )
    return foreign_key


__all__ = ["back_reference_candidates", "find_back_reference"]
