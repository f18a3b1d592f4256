"""
graph-dal — settings loader

Purpose
- Load persistence and logging settings from defaults, a TOML file and
  environment variables.

What should be included in this file
- Precedence logic: env (GRAPH_DAL_) > file > defaults.
- TOML loading via ``tomllib`` from the ``[graph_dal]`` table.
- Deterministic environment variable mapping and coercion.
- Path normalization relative to the config file location.

Functional requirements
- Unknown keys and values of the wrong type are rejected with ``ConfigLoadError``.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Final, Literal

from graph_dal.constants import DEFAULT_ACTING_USER
from graph_dal.observability.logging import LoggingConfig, parse_log_level
from graph_dal.persistence.dialect import DIALECTS

DEFAULT_CONFIG_FILE: Final[str] = "graph_dal.toml"
CONFIG_TABLE: Final[str] = "graph_dal"
ENV_PREFIX: Final[str] = "GRAPH_DAL_"
MEMORY_DATABASE: Final[str] = ":memory:"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ValueKind = Literal["str", "int", "bool", "optional_str"]


class ConfigLoadError(ValueError):
    """Raised when settings cannot be loaded or values cannot be coerced."""


@dataclass(frozen=True, slots=True)
class PersistenceSettings:
    """Effective settings for a graph-dal process."""

    database_path: str = "graph_dal.sqlite3"
    busy_timeout_ms: int = 5_000
    default_user: str = DEFAULT_ACTING_USER
    dialect: str | None = None
    log_level: str = "INFO"
    log_file: str | None = None
    log_to_stdout: bool = True

    def logging_config(self) -> LoggingConfig:
        return LoggingConfig(
            level=self.log_level,
            log_file=self.log_file,
            log_to_stdout=self.log_to_stdout,
        )


_KINDS: Final[dict[str, ValueKind]] = {
    "database_path": "str",
    "busy_timeout_ms": "int",
    "default_user": "str",
    "dialect": "optional_str",
    "log_level": "str",
    "log_file": "optional_str",
    "log_to_stdout": "bool",
}
_PATH_FIELDS: Final[tuple[str, ...]] = ("database_path", "log_file")


def load_settings(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> PersistenceSettings:
    """Load effective settings with precedence: env > file > defaults.

    A missing default config file is ignored; a missing explicit one is an error.
    """

    resolved_path = _resolve_config_path(config_path)
    env_map = os.environ if environ is None else environ

    file_values = _load_toml_table(resolved_path, required=config_path is not None)
    file_values = _normalize_paths(file_values, base_dir=resolved_path.parent)

    merged = {**file_values, **_collect_env_overrides(env_map)}
    settings = replace(PersistenceSettings(), **merged)
    return _validate(settings)


def env_name_for(field_name: str) -> str:
    return ENV_PREFIX + field_name.upper()


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_table(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    table = parsed.get(CONFIG_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigLoadError(f"[{CONFIG_TABLE}] must be a table: {path}")

    unknown = sorted(set(table) - set(_KINDS))
    if unknown:
        raise ConfigLoadError(f"unknown [{CONFIG_TABLE}] keys in {path}: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, value in table.items():
        values[key] = _check_file_value(key, value, path)
    return values


def _check_file_value(key: str, value: object, path: Path) -> object:
    kind = _KINDS[key]
    expected: type
    if kind == "int":
        expected = int
        valid = isinstance(value, int) and not isinstance(value, bool)
    elif kind == "bool":
        expected = bool
        valid = isinstance(value, bool)
    else:
        expected = str
        valid = isinstance(value, str)
    if not valid:
        raise ConfigLoadError(
            f"{CONFIG_TABLE}.{key} in {path} must be {expected.__name__}, "
            f"got {type(value).__name__}"
        )
    if kind == "optional_str" and isinstance(value, str) and not value.strip():
        return None
    return value


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for item in fields(PersistenceSettings):
        env_name = env_name_for(item.name)
        raw = environ.get(env_name)
        if raw is None:
            continue
        overrides[item.name] = _coerce_env(raw, _KINDS[item.name], env_name)
    return overrides


def _coerce_env(raw: str, kind: ValueKind, env_name: str) -> object:
    value = raw.strip()
    if kind == "str":
        return value
    if kind == "optional_str":
        return value or None
    if kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be an integer") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _normalize_paths(values: dict[str, Any], *, base_dir: Path) -> dict[str, Any]:
    normalized = dict(values)
    for key in _PATH_FIELDS:
        raw = normalized.get(key)
        if not isinstance(raw, str) or raw == MEMORY_DATABASE:
            continue
        candidate = Path(os.path.expandvars(raw)).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        normalized[key] = Path(os.path.normpath(str(candidate))).as_posix()
    return normalized


def _validate(settings: PersistenceSettings) -> PersistenceSettings:
    if not settings.database_path.strip():
        raise ConfigLoadError("database_path must not be empty")
    if settings.busy_timeout_ms < 0:
        raise ConfigLoadError("busy_timeout_ms must be >= 0")
    if not settings.default_user.strip():
        raise ConfigLoadError("default_user must not be empty")
    if settings.dialect is not None and settings.dialect.strip().lower() not in DIALECTS:
        allowed = ", ".join(sorted(DIALECTS))
        raise ConfigLoadError(f"dialect must be one of: {allowed}; got {settings.dialect!r}")
    try:
        parse_log_level(settings.log_level)
    except ValueError as exc:
        raise ConfigLoadError(str(exc)) from exc
    return settings


__all__ = [
    "CONFIG_TABLE",
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PersistenceSettings",
    "env_name_for",
    "load_settings",
]
