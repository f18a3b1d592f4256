"""Naming-convention constants shared by the reflector, persister and repository."""

from __future__ import annotations

from typing import Final

# Identity column; 0 marks a transient entity.
IDENTITY_FIELD: Final[str] = "id"
TRANSIENT_ID: Final[int] = 0

# Foreign-key fields are named ``<reference>_id``.
FOREIGN_KEY_SUFFIX: Final[str] = "_id"

# Audit fields.
CREATED_AT_FIELD: Final[str] = "created_at"
CREATED_BY_FIELD: Final[str] = "created_by"
MODIFIED_AT_FIELD: Final[str] = "modified_at"
MODIFIED_BY_FIELD: Final[str] = "modified_by"

# Soft-delete fields.
IS_DELETED_FIELD: Final[str] = "is_deleted"
DELETED_AT_FIELD: Final[str] = "deleted_at"
DELETED_BY_FIELD: Final[str] = "deleted_by"

# Excluded from the update change guard.
MODIFICATION_FIELDS: Final[frozenset[str]] = frozenset({MODIFIED_AT_FIELD, MODIFIED_BY_FIELD})

# Explicit table-name override on an entity class.
TABLE_NAME_ATTRIBUTE: Final[str] = "__tablename__"

# Dataclass field metadata key marking a field as not persisted.
NOT_MAPPED_METADATA_KEY: Final[str] = "graph_dal.not_mapped"

DEFAULT_ACTING_USER: Final[str] = "system"

__all__ = [
    "CREATED_AT_FIELD",
    "CREATED_BY_FIELD",
    "DEFAULT_ACTING_USER",
    "DELETED_AT_FIELD",
    "DELETED_BY_FIELD",
    "FOREIGN_KEY_SUFFIX",
    "IDENTITY_FIELD",
    "IS_DELETED_FIELD",
    "MODIFICATION_FIELDS",
    "MODIFIED_AT_FIELD",
    "MODIFIED_BY_FIELD",
    "NOT_MAPPED_METADATA_KEY",
    "TABLE_NAME_ATTRIBUTE",
    "TRANSIENT_ID",
]
