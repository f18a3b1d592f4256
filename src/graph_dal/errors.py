"""Error taxonomy for the data-access layer."""

from __future__ import annotations


class PersistenceError(RuntimeError):
    """Base class for data-access errors raised by graph-dal itself."""


class NullEntityError(PersistenceError, ValueError):
    """Raised when ``None`` is handed to the persister in place of an entity."""


class MappingError(PersistenceError):
    """Raised when an entity type or a parent/child link cannot be mapped."""


class UnsupportedDialectError(PersistenceError):
    """Raised when a connection's vendor is unknown or conflicts with the cached one."""


class ExecutionError(PersistenceError):
    """Raised when the execution layer yields an unusable result.

    Driver exceptions (``sqlite3.Error`` and friends) are never wrapped in this
    type; they are logged and propagate unchanged.
    """


__all__ = [
    "ExecutionError",
    "MappingError",
    "NullEntityError",
    "PersistenceError",
    "UnsupportedDialectError",
]
