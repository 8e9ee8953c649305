"""Test query template rendering and the template registry."""

import pytest

from querygate.errors import TemplateError
from querygate.policy import validate_query
from querygate.templates import (
    DEFAULT_TEMPLATES,
    ParamKind,
    QueryTemplate,
    TemplateParam,
    TemplateRegistry,
    quote_literal,
)


@pytest.fixture
def registry():
    return TemplateRegistry()


@pytest.mark.unit
class TestRegistry:
    def test_builtin_templates(self, registry):
        assert len(registry) == len(DEFAULT_TEMPLATES) == 10
        ids = [t.id for t in registry.list_templates()]
        assert "top-rows" in ids
        assert "null-check" in ids
        assert "recent-records" in ids

    def test_unknown_template(self, registry):
        with pytest.raises(TemplateError, match="Template 'nope' not found"):
            registry.get("nope")

    def test_duplicate_rejected(self, registry):
        with pytest.raises(TemplateError, match="already registered"):
            registry.add(DEFAULT_TEMPLATES[0])

    def test_add_custom(self, registry):
        registry.add(
            QueryTemplate(
                id="by-status",
                name="By Status",
                description="Orders with a status",
                sql="SELECT * FROM orders WHERE status = {{status}}",
                params=(TemplateParam("status"),),
            )
        )
        assert "by-status" in registry
        assert registry.render("by-status", {"status": "shipped"}) == (
            "SELECT * FROM orders WHERE status = 'shipped'"
        )

    def test_undeclared_placeholder(self):
        with pytest.raises(TemplateError, match="undeclared placeholders: other"):
            QueryTemplate(id="x", name="x", description="", sql="SELECT {{other}}")

    def test_every_builtin_renders_a_valid_select(self, registry):
        values = {
            ParamKind.IDENTIFIER: "orders",
            ParamKind.LITERAL: "5",
            ParamKind.INTEGER: "5",
        }
        for template in registry.list_templates():
            params = {
                p.name: p.choices[0] if p.kind is ParamKind.KEYWORD else values[p.kind]
                for p in template.params
            }
            sql = registry.render(template.id, params)
            assert "{{" not in sql
            assert validate_query(sql).is_valid, template.id


@pytest.mark.unit
class TestRender:
    def test_top_rows(self, registry):
        sql = registry.render("top-rows", {"table": "orders", "limit": 5})
        assert sql == "SELECT * FROM orders LIMIT 5"

    def test_literal_quoted(self, registry):
        sql = registry.render(
            "filter-equals", {"table": "users", "column": "name", "value": "O'Brien"}
        )
        assert sql == "SELECT * FROM users WHERE name = 'O''Brien'"

    def test_numeric_literal_bare(self, registry):
        sql = registry.render("filter-equals", {"table": "users", "column": "id", "value": "42"})
        assert sql.endswith("id = 42")

    def test_dotted_identifier(self, registry):
        sql = registry.render("top-rows", {"table": "sales.orders", "limit": 1})
        assert "FROM sales.orders" in sql

    def test_repeated_placeholder(self, registry):
        sql = registry.render("distinct-values", {"table": "orders", "column": "status"})
        assert sql == "SELECT DISTINCT status FROM orders ORDER BY status"

    def test_missing_params_listed_together(self, registry):
        with pytest.raises(TemplateError, match="Missing required parameters: table, column"):
            registry.render("filter-equals", {"value": 1})

    def test_missing_limit_named(self, registry):
        with pytest.raises(TemplateError, match="limit"):
            registry.render("top-rows", {"table": "t"})
        assert registry.render("top-rows", {"table": "t", "limit": "5"}) == "SELECT * FROM t LIMIT 5"

    def test_blank_counts_as_missing(self, registry):
        with pytest.raises(TemplateError, match="Missing required parameters: limit"):
            registry.render("top-rows", {"table": "orders", "limit": "  "})

    def test_identifier_injection_rejected(self, registry):
        with pytest.raises(TemplateError, match="not a valid identifier"):
            registry.render("top-rows", {"table": "orders; DROP TABLE orders", "limit": 1})

    @pytest.mark.parametrize("limit", ["abc", "-1", "2.5", "1 OR 1=1", True])
    def test_limit_must_be_whole_number(self, registry, limit):
        with pytest.raises(TemplateError, match="non-negative integer"):
            registry.render("top-rows", {"table": "orders", "limit": limit})

    def test_limit_rendered_bare(self, registry):
        sql = registry.render(
            "recent-records", {"table": "orders", "dateColumn": "created_at", "limit": " 007 "}
        )
        assert sql == "SELECT * FROM orders ORDER BY created_at DESC LIMIT 7"

    def test_keyword_normalized(self, registry):
        sql = registry.render(
            "null-check", {"table": "users", "column": "email", "operator": "is   not null"}
        )
        assert sql == "SELECT * FROM users WHERE email IS NOT NULL"

    def test_keyword_outside_choices(self, registry):
        with pytest.raises(TemplateError, match="must be one of"):
            registry.render("null-check", {"table": "users", "column": "email", "operator": "= 1"})


@pytest.mark.unit
class TestQuoteLiteral:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (10, "10"),
            ("-3.5", "-3.5"),
            ("2024-01-01", "'2024-01-01'"),
            ("it's", "'it''s'"),
            ("%abc%", "'%abc%'"),
        ],
    )
    def test_quote(self, value, expected):
        assert quote_literal(value) == expected
