"""Test the exception hierarchy and engine error mapping."""

import pytest

from querygate.config import DatabaseType
from querygate.errors import (
    AuthError,
    ConfigError,
    ConnectionFailedError,
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    QueryTimeoutError,
    TemplateError,
    UnknownExecutionError,
    ValidationError,
    is_transient,
    map_error,
)


@pytest.mark.unit
class TestHierarchy:
    def test_message_and_code(self):
        err = ValidationError("bad query")
        assert str(err) == "bad query"
        assert err.message == "bad query"
        assert err.code == "validation_error"

    def test_all_subclass_gateway_error(self):
        for cls in (
            ConfigError,
            ValidationError,
            ConnectionFailedError,
            NotFoundError,
            AuthError,
            PermissionDeniedError,
            QueryTimeoutError,
            TemplateError,
            UnknownExecutionError,
        ):
            assert issubclass(cls, GatewayError)

    def test_codes_are_unique(self):
        codes = {
            cls.code
            for cls in (
                ConfigError,
                ValidationError,
                ConnectionFailedError,
                NotFoundError,
                AuthError,
                PermissionDeniedError,
                QueryTimeoutError,
                TemplateError,
                UnknownExecutionError,
            )
        }
        assert len(codes) == 9

    def test_connection_error_retryable_flag(self):
        assert ConnectionFailedError("x").retryable is False
        assert ConnectionFailedError("x", retryable=True).retryable is True


@pytest.mark.unit
class TestMapError:
    def test_gateway_error_passes_through(self):
        err = NotFoundError("gone")
        assert map_error(err, DatabaseType.POSTGRES) is err

    def test_builtin_timeout(self):
        assert isinstance(map_error(TimeoutError()), QueryTimeoutError)

    @pytest.mark.parametrize(
        "db_type,message,expected",
        [
            (DatabaseType.ORACLE, "ORA-00942: table or view does not exist", NotFoundError),
            (DatabaseType.ORACLE, "ORA-01017: invalid username/password", AuthError),
            (DatabaseType.ORACLE, "ORA-01031: insufficient privileges", PermissionDeniedError),
            (DatabaseType.POSTGRES, 'relation "nope" does not exist', NotFoundError),
            (DatabaseType.POSTGRES, "password authentication failed for user", AuthError),
            (DatabaseType.POSTGRES, "permission denied for table x", PermissionDeniedError),
            (DatabaseType.SQLSERVER, "Invalid object name 'dbo.nope'.", NotFoundError),
            (DatabaseType.SQLSERVER, "Login failed for user 'sa'.", AuthError),
            (DatabaseType.MYSQL, "Table 'shop.nope' doesn't exist", NotFoundError),
            (DatabaseType.MYSQL, "Access denied for user 'x'@'%'", AuthError),
            (DatabaseType.SQLITE, "no such table: nope", NotFoundError),
            (DatabaseType.SQLITE, "no such column: nope", NotFoundError),
        ],
    )
    def test_engine_patterns(self, db_type, message, expected):
        mapped = map_error(RuntimeError(message), db_type)
        assert isinstance(mapped, expected)
        # The engine text survives after the friendly prefix.
        assert message in mapped.message

    def test_transient_connection_error(self):
        mapped = map_error(OSError("Connection refused"), DatabaseType.POSTGRES)
        assert isinstance(mapped, ConnectionFailedError)
        assert mapped.retryable is True

    def test_unknown(self):
        mapped = map_error(RuntimeError("division by zero"), DatabaseType.SQLITE)
        assert isinstance(mapped, UnknownExecutionError)
        assert mapped.message == "division by zero"

    def test_empty_message_uses_type_name(self):
        assert map_error(KeyError()).message == "KeyError"

    def test_no_dialect_skips_patterns(self):
        assert isinstance(map_error(RuntimeError("no such table: x")), UnknownExecutionError)


@pytest.mark.unit
class TestIsTransient:
    def test_builtin_connection_errors(self):
        assert is_transient(ConnectionRefusedError())
        assert is_transient(ConnectionResetError())
        assert is_transient(BrokenPipeError())

    def test_message_markers(self):
        assert is_transient(RuntimeError("Lost connection to MySQL server during query"))
        assert is_transient(RuntimeError("DPY-6005: cannot connect to database"))
        assert not is_transient(RuntimeError("syntax error at or near"))

    def test_gateway_errors(self):
        assert is_transient(ConnectionFailedError("x", retryable=True))
        assert not is_transient(ConnectionFailedError("x"))
        assert not is_transient(ValidationError("connection refused"))
