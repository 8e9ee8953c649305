"""Exception hierarchy and engine error mapping.

Every error the gateway raises derives from GatewayError and carries a
stable ``code`` string that a dispatch layer can hand back to callers.
Raw driver exceptions are translated by :func:`map_error`, which keeps
the original as ``__cause__``.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from querygate.config import DatabaseType


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    code: str = "gateway_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(GatewayError):
    """Unsupported engine, missing connection fields, missing driver."""

    code = "config_error"


class ValidationError(GatewayError):
    """Query or filter rejected before reaching the database."""

    code = "validation_error"


class ConnectionFailedError(GatewayError):
    """Pool exhausted, connect refused, adapter not connected."""

    code = "connection_error"

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)


class NotFoundError(GatewayError):
    """Table, view or column does not exist."""

    code = "not_found"


class AuthError(GatewayError):
    code = "auth_error"


class PermissionDeniedError(GatewayError):
    code = "permission_denied"


class QueryTimeoutError(GatewayError):
    """Client-side timeout. The server may still be running the statement."""

    code = "timeout"


class TemplateError(GatewayError):
    """Unknown template id, missing or malformed template parameters."""

    code = "template_error"


class UnknownExecutionError(GatewayError):
    code = "execution_error"


# Substrings of driver messages that indicate a dropped or unreachable server.
_TRANSIENT_MARKERS: tuple[str, ...] = (
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "connection refused",
    "connection reset",
    "connection lost",
    "connection terminated",
    "socket hang up",
    "server closed the connection",
    "lost connection to mysql server",
    "can't connect to mysql server",
    "could not connect to server",
    "name or service not known",
    "temporary failure in name resolution",
    "dpy-6005",  # oracledb: cannot connect to database
    "ora-12541",  # no listener
    "ora-03113",  # end-of-file on communication channel
    "ora-03135",  # connection lost contact
    "adaptive server connection failed",
    "broken pipe",
)

_PatternTable = tuple[tuple[re.Pattern[str], type[GatewayError], str], ...]


def _p(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


_ORACLE_PATTERNS: _PatternTable = (
    (_p(r"ORA-00942"), NotFoundError, "Table or view does not exist"),
    (_p(r"ORA-00904"), NotFoundError, "Invalid column name"),
    (_p(r"ORA-01017"), AuthError, "Invalid username or password"),
    (_p(r"ORA-12154"), ConnectionFailedError, "Could not resolve the connect identifier"),
    (_p(r"ORA-12170"), ConnectionFailedError, "Connection timed out"),
    (_p(r"ORA-01031"), PermissionDeniedError, "Insufficient privileges"),
)

_POSTGRES_PATTERNS: _PatternTable = (
    (_p(r"relation .* does not exist"), NotFoundError, "Table or view does not exist"),
    (_p(r"column .* does not exist"), NotFoundError, "Column does not exist"),
    (_p(r"password authentication failed"), AuthError, "Authentication failed"),
    (_p(r"permission denied"), PermissionDeniedError, "Permission denied"),
)

_SQLSERVER_PATTERNS: _PatternTable = (
    (_p(r"Invalid object name"), NotFoundError, "Table or view does not exist"),
    (_p(r"Invalid column name"), NotFoundError, "Invalid column name"),
    (_p(r"Login failed"), AuthError, "Login failed"),
    (_p(r"permission"), PermissionDeniedError, "Permission denied"),
)

_MYSQL_PATTERNS: _PatternTable = (
    (_p(r"doesn't exist"), NotFoundError, "Table does not exist"),
    (_p(r"Unknown column"), NotFoundError, "Unknown column"),
    (_p(r"Access denied for user"), AuthError, "Access denied"),
    (_p(r"command denied"), PermissionDeniedError, "Permission denied"),
    (_p(r"Access denied"), PermissionDeniedError, "Permission denied"),
)

_SQLITE_PATTERNS: _PatternTable = (
    (_p(r"no such table"), NotFoundError, "Table or view does not exist"),
    (_p(r"no such column"), NotFoundError, "Column does not exist"),
    (_p(r"readonly database"), PermissionDeniedError, "Database is opened read-only"),
    (_p(r"unable to open database file"), ConnectionFailedError, "Unable to open database file"),
)


def _patterns_for(db_type: DatabaseType | None) -> _PatternTable:
    if db_type is None:
        return ()
    return {
        "oracle": _ORACLE_PATTERNS,
        "postgres": _POSTGRES_PATTERNS,
        "sqlserver": _SQLSERVER_PATTERNS,
        "mysql": _MYSQL_PATTERNS,
        "sqlite": _SQLITE_PATTERNS,
    }.get(db_type.value, ())


def is_transient(exc: BaseException) -> bool:
    """True if *exc* looks like a dropped or unreachable connection."""
    if isinstance(exc, ConnectionFailedError):
        return exc.retryable
    if isinstance(exc, GatewayError):
        return False
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError, BrokenPipeError)):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def map_error(exc: BaseException, db_type: DatabaseType | None = None) -> GatewayError:
    """Translate a raw driver exception into the gateway taxonomy.

    GatewayError instances pass through untouched. The mapped message keeps
    the engine's original text after the friendly prefix so nothing is lost.
    """
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, TimeoutError):
        return QueryTimeoutError(f"Query timed out: {exc}" if str(exc) else "Query timed out")

    raw = str(exc) or type(exc).__name__
    for pattern, error_cls, friendly in _patterns_for(db_type):
        if pattern.search(raw):
            if error_cls is ConnectionFailedError:
                return ConnectionFailedError(f"{friendly}: {raw}", retryable=is_transient(exc))
            return error_cls(f"{friendly}: {raw}")

    if is_transient(exc):
        return ConnectionFailedError(f"Connection failed: {raw}", retryable=True)
    return UnknownExecutionError(raw)
