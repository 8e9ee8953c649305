"""Test enrichment: engine-native row limits and pagination."""

import pytest

from querygate.policy.enrich import DEFAULT_LIMIT, apply_row_limit, paginate


class TestApplyRowLimit:
    def test_adds_limit_to_bare_select(self) -> None:
        sql = apply_row_limit("SELECT id, name FROM users", limit=5)
        assert "LIMIT 5" in sql.upper()

    def test_default_limit(self) -> None:
        sql = apply_row_limit("SELECT id FROM users")
        assert f"LIMIT {DEFAULT_LIMIT}" in sql.upper()

    def test_preserves_existing_limit(self) -> None:
        original = "SELECT id FROM users LIMIT 10"
        assert apply_row_limit(original, limit=1000) == original

    def test_tsql_uses_top(self) -> None:
        sql = apply_row_limit("SELECT id FROM users", limit=5, dialect="tsql")
        assert "TOP 5" in sql.upper()

    def test_oracle_uses_fetch_first(self) -> None:
        sql = apply_row_limit("SELECT id FROM users", limit=5, dialect="oracle")
        assert "FETCH FIRST 5 ROWS ONLY" in sql.upper()

    def test_mysql_and_sqlite_use_limit(self) -> None:
        for dialect in ("mysql", "sqlite", "postgres"):
            sql = apply_row_limit("SELECT id FROM users", limit=5, dialect=dialect)
            assert "LIMIT 5" in sql.upper()

    def test_non_select_unchanged(self) -> None:
        sql = "SELECT 1 UNION SELECT 2"
        assert apply_row_limit(sql, limit=5) == sql

    def test_unparseable_unchanged(self) -> None:
        sql = "SELECT (1"
        assert apply_row_limit(sql, limit=5) == sql


class TestPaginate:
    def test_first_page(self) -> None:
        sql = paginate("SELECT id FROM users ORDER BY id", page=1, page_size=10)
        assert "LIMIT 10" in sql.upper()
        assert "OFFSET 0" in sql.upper()

    def test_offset_from_page(self) -> None:
        sql = paginate("SELECT id FROM users ORDER BY id", page=3, page_size=10)
        assert "OFFSET 20" in sql.upper()

    def test_already_limited_is_wrapped(self) -> None:
        sql = paginate("SELECT id FROM users LIMIT 100", page=2, page_size=10)
        assert "page_q" in sql
        assert "LIMIT 100" in sql.upper()
        assert "OFFSET 10" in sql.upper()

    def test_union_is_wrapped(self) -> None:
        sql = paginate("SELECT 1 AS x UNION SELECT 2 AS x", page=1, page_size=1)
        assert "page_q" in sql
        assert "LIMIT 1" in sql.upper()

    def test_invalid_page(self) -> None:
        with pytest.raises(ValueError, match="page must be"):
            paginate("SELECT 1", page=0, page_size=10)

    def test_invalid_page_size(self) -> None:
        with pytest.raises(ValueError, match="page_size must be"):
            paginate("SELECT 1", page=1, page_size=0)
