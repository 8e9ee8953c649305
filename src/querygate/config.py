"""Connection and gateway configuration.

Credential loading (env files, secret stores) is the caller's concern; these
models only describe an already-resolved configuration and reject ones that
cannot work for the chosen engine.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from querygate.errors import ConfigError


class DatabaseType(enum.Enum):
    ORACLE = "oracle"
    POSTGRES = "postgres"
    SQLSERVER = "sqlserver"
    MYSQL = "mysql"
    SQLITE = "sqlite"


_ALIASES: dict[str, DatabaseType] = {
    "oracle": DatabaseType.ORACLE,
    "postgres": DatabaseType.POSTGRES,
    "postgresql": DatabaseType.POSTGRES,
    "pg": DatabaseType.POSTGRES,
    "sqlserver": DatabaseType.SQLSERVER,
    "mssql": DatabaseType.SQLSERVER,
    "mysql": DatabaseType.MYSQL,
    "mariadb": DatabaseType.MYSQL,
    "sqlite": DatabaseType.SQLITE,
    "sqlite3": DatabaseType.SQLITE,
}

DEFAULT_PORTS: dict[DatabaseType, int] = {
    DatabaseType.ORACLE: 1521,
    DatabaseType.POSTGRES: 5432,
    DatabaseType.SQLSERVER: 1433,
    DatabaseType.MYSQL: 3306,
}


def parse_db_type(name: str | DatabaseType) -> DatabaseType:
    """Resolve an engine name or alias. Raises ConfigError for unknown engines."""
    if isinstance(name, DatabaseType):
        return name
    db_type = _ALIASES.get(name.strip().lower())
    if db_type is None:
        supported = ", ".join(t.value for t in DatabaseType)
        raise ConfigError(f"Unsupported database type: '{name}'. Supported: {supported}")
    return db_type


class ConnectionConfig(BaseModel):
    """Resolved connection parameters for one database."""

    db_type: DatabaseType
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    # Oracle service name; falls back to ``database`` when unset.
    service_name: str | None = None
    # SQLite database file.
    path: Path | None = None
    connect_timeout: float = 10.0
    application_name: str = "querygate"
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("db_type", mode="before")
    @classmethod
    def resolve_db_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_db_type(v)
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int | None) -> int | None:
        if v is not None and not (1 <= v <= 65535):
            msg = f"Invalid port: {v}. Must be 1-65535"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_required_fields(self) -> ConnectionConfig:
        if self.db_type == DatabaseType.SQLITE:
            if self.path is None:
                raise ValueError("sqlite requires 'path'")
            return self

        missing = [f for f in ("host", "user") if not getattr(self, f)]
        if self.db_type == DatabaseType.ORACLE:
            if not (self.service_name or self.database):
                missing.append("service_name")
        elif not self.database:
            missing.append("database")
        if missing:
            raise ValueError(f"{self.db_type.value} requires: {', '.join(missing)}")

        if self.port is None:
            self.port = DEFAULT_PORTS[self.db_type]
        return self


class GatewaySettings(BaseModel):
    """Deployment-wide knobs for row caps, caching, logging, pooling and retry."""

    default_max_rows: int = 1000
    max_rows_ceiling: int = 10000
    query_timeout: float | None = 30.0

    cache_enabled: bool = True
    cache_ttl: float = 300.0

    log_queries: bool = False
    log_capacity: int = 100

    pool_min_size: int = 1
    pool_max_size: int = 10
    pool_idle_timeout: float = 300.0
    pool_acquire_timeout: float = 30.0

    retry_attempts: int = 3
    retry_base_delay: float = 1.0

    stream_batch_size: int = 100
    max_stream_batch_size: int = 1000

    @field_validator(
        "default_max_rows",
        "max_rows_ceiling",
        "log_capacity",
        "pool_max_size",
        "retry_attempts",
        "stream_batch_size",
        "max_stream_batch_size",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @model_validator(mode="after")
    def check_bounds(self) -> GatewaySettings:
        if self.default_max_rows > self.max_rows_ceiling:
            raise ValueError("default_max_rows cannot exceed max_rows_ceiling")
        if self.pool_min_size < 0 or self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size must be between 0 and pool_max_size")
        if self.stream_batch_size > self.max_stream_batch_size:
            raise ValueError("stream_batch_size cannot exceed max_stream_batch_size")
        return self


def load_connection_config(data: dict[str, Any]) -> ConnectionConfig:
    """Build a ConnectionConfig, reporting any problem as ConfigError."""
    try:
        return ConnectionConfig.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid connection config: {problems}") from e
