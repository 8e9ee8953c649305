"""Lazy adapter loading: imports driver modules only when needed."""

from __future__ import annotations

import importlib

from querygate.adapters._base import DatabaseAdapter
from querygate.config import ConnectionConfig, DatabaseType, GatewaySettings, parse_db_type
from querygate.errors import ConfigError

_ADAPTER_MAP: dict[DatabaseType, tuple[str, str]] = {
    DatabaseType.ORACLE: ("querygate.adapters.oracle", "OracleAdapter"),
    DatabaseType.POSTGRES: ("querygate.adapters.postgres", "PostgresAdapter"),
    DatabaseType.SQLSERVER: ("querygate.adapters.sqlserver", "SQLServerAdapter"),
    DatabaseType.MYSQL: ("querygate.adapters.mysql", "MySQLAdapter"),
    DatabaseType.SQLITE: ("querygate.adapters.sqlite", "SQLiteAdapter"),
}

_EXTRAS: dict[DatabaseType, str] = {
    DatabaseType.ORACLE: "oracle",
    DatabaseType.POSTGRES: "postgres",
    DatabaseType.SQLSERVER: "sqlserver",
    DatabaseType.MYSQL: "mysql",
    DatabaseType.SQLITE: "sqlite",
}


def get_adapter(db_type: DatabaseType | str) -> type[DatabaseAdapter]:
    """Lazy-load an adapter class by database type or alias.

    Raises ConfigError with an install hint if the driver package is missing.
    """
    db_type = parse_db_type(db_type)
    entry = _ADAPTER_MAP.get(db_type)
    if entry is None:
        raise ConfigError(f"No adapter registered for {db_type.value}")

    module_path, class_name = entry
    try:
        mod = importlib.import_module(module_path)
    except ImportError as e:
        extra = _EXTRAS.get(db_type, "all")
        raise ConfigError(
            f"Missing driver for {db_type.value}. "
            f"Install with: pip install 'querygate[{extra}]'"
        ) from e

    return getattr(mod, class_name)


def create_adapter(
    config: ConnectionConfig, settings: GatewaySettings | None = None
) -> DatabaseAdapter:
    """Instantiate the adapter for *config*. The pool opens lazily on first use."""
    adapter_cls = get_adapter(config.db_type)
    return adapter_cls(config, settings)
