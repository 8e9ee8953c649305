"""Test lazy adapter registry."""

import pytest

from querygate.adapters._registry import create_adapter, get_adapter
from querygate.config import ConnectionConfig, DatabaseType
from querygate.errors import ConfigError


@pytest.mark.parametrize(
    "db_type,class_name,extra",
    [
        (DatabaseType.SQLITE, "SQLiteAdapter", "sqlite"),
        (DatabaseType.POSTGRES, "PostgresAdapter", "postgres"),
        (DatabaseType.MYSQL, "MySQLAdapter", "mysql"),
        (DatabaseType.ORACLE, "OracleAdapter", "oracle"),
        (DatabaseType.SQLSERVER, "SQLServerAdapter", "sqlserver"),
    ],
)
def test_get_adapter(db_type, class_name, extra):
    """Adapter classes load when their driver is installed, otherwise name the extra."""
    try:
        cls = get_adapter(db_type)
        assert cls.__name__ == class_name
    except ConfigError as e:
        assert "Missing driver" in str(e)
        assert f"querygate[{extra}]" in str(e)


def test_get_adapter_by_alias():
    pytest.importorskip("aiosqlite")
    assert get_adapter("sqlite3").__name__ == "SQLiteAdapter"


def test_unknown_type():
    with pytest.raises(ConfigError, match="Unsupported database type"):
        get_adapter("db2")


def test_create_adapter(tmp_path):
    pytest.importorskip("aiosqlite")
    config = ConnectionConfig(db_type="sqlite", path=tmp_path / "x.db")
    adapter = create_adapter(config)
    assert adapter.db_type() is DatabaseType.SQLITE
    assert adapter.dialect() == "sqlite"
    # The pool opens lazily on first use.
    assert adapter.pool is None


def test_adapter_rejects_other_engine_config():
    pytest.importorskip("aiosqlite")
    from querygate.adapters.sqlite import SQLiteAdapter

    config = ConnectionConfig(db_type="postgres", host="h", user="u", database="d")
    with pytest.raises(ValueError, match="cannot use a postgres configuration"):
        SQLiteAdapter(config)
