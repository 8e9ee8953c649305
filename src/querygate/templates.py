"""Parameterized query templates.

A template is a SQL pattern with ``{{name}}`` placeholders. Each placeholder
declares how its value is spliced in:

- identifier: must be a plain or dotted name, inserted bare;
- literal: numeric-looking values are inserted bare, everything else is
  single-quoted with embedded quotes doubled;
- integer: must be a non-negative whole number, inserted bare;
- keyword: must be one of the placeholder's declared choices.

Templates are written in a neutral dialect (LIMIT for row caps); the gateway
transpiles the rendered SQL to the target engine before execution.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from querygate.errors import TemplateError
from querygate.policy.safety import validate_identifier

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_INTEGER = re.compile(r"^\d+$")


class ParamKind(enum.Enum):
    IDENTIFIER = "identifier"
    LITERAL = "literal"
    INTEGER = "integer"
    KEYWORD = "keyword"


@dataclass(frozen=True)
class TemplateParam:
    name: str
    kind: ParamKind = ParamKind.LITERAL
    choices: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class QueryTemplate:
    id: str
    name: str
    description: str
    sql: str
    params: tuple[TemplateParam, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        declared = {p.name for p in self.params}
        used = set(_PLACEHOLDER.findall(self.sql))
        undeclared = sorted(used - declared)
        if undeclared:
            raise TemplateError(
                f"Template '{self.id}' uses undeclared placeholders: {', '.join(undeclared)}"
            )

    @property
    def required_params(self) -> list[str]:
        return [p.name for p in self.params]


def _ident(name: str, description: str = "") -> TemplateParam:
    return TemplateParam(name, ParamKind.IDENTIFIER, description=description)


def _lit(name: str, description: str = "") -> TemplateParam:
    return TemplateParam(name, ParamKind.LITERAL, description=description)


def _int(name: str, description: str = "") -> TemplateParam:
    return TemplateParam(name, ParamKind.INTEGER, description=description)


DEFAULT_TEMPLATES: tuple[QueryTemplate, ...] = (
    QueryTemplate(
        id="top-rows",
        name="Top N Rows",
        description="Get the first N rows from a table",
        sql="SELECT * FROM {{table}} LIMIT {{limit}}",
        params=(_ident("table"), _int("limit", "number of rows")),
    ),
    QueryTemplate(
        id="filter-equals",
        name="Filter by Equality",
        description="Rows where a column equals a value",
        sql="SELECT * FROM {{table}} WHERE {{column}} = {{value}}",
        params=(_ident("table"), _ident("column"), _lit("value")),
    ),
    QueryTemplate(
        id="filter-like",
        name="Filter by Pattern",
        description="Rows where a column matches a LIKE pattern",
        sql="SELECT * FROM {{table}} WHERE {{column}} LIKE {{pattern}}",
        params=(_ident("table"), _ident("column"), _lit("pattern", "e.g. %abc%")),
    ),
    QueryTemplate(
        id="date-range",
        name="Date Range Filter",
        description="Rows with a date column between two dates",
        sql=(
            "SELECT * FROM {{table}} "
            "WHERE {{dateColumn}} BETWEEN {{startDate}} AND {{endDate}}"
        ),
        params=(_ident("table"), _ident("dateColumn"), _lit("startDate"), _lit("endDate")),
    ),
    QueryTemplate(
        id="aggregate-count",
        name="Count by Group",
        description="Row counts grouped by a column",
        sql=(
            "SELECT {{groupColumn}}, COUNT(*) AS count FROM {{table}} "
            "GROUP BY {{groupColumn}} ORDER BY count DESC"
        ),
        params=(_ident("table"), _ident("groupColumn")),
    ),
    QueryTemplate(
        id="aggregate-sum",
        name="Sum by Group",
        description="Sum of a column grouped by another column",
        sql=(
            "SELECT {{groupColumn}}, SUM({{sumColumn}}) AS total FROM {{table}} "
            "GROUP BY {{groupColumn}} ORDER BY total DESC"
        ),
        params=(_ident("table"), _ident("groupColumn"), _ident("sumColumn")),
    ),
    QueryTemplate(
        id="join-tables",
        name="Join Two Tables",
        description="Inner join of two tables on one column pair",
        sql=(
            "SELECT * FROM {{table1}} t1 "
            "INNER JOIN {{table2}} t2 ON t1.{{joinColumn1}} = t2.{{joinColumn2}}"
        ),
        params=(
            _ident("table1"),
            _ident("table2"),
            _ident("joinColumn1"),
            _ident("joinColumn2"),
        ),
    ),
    QueryTemplate(
        id="distinct-values",
        name="Distinct Values",
        description="Distinct values of a column",
        sql="SELECT DISTINCT {{column}} FROM {{table}} ORDER BY {{column}}",
        params=(_ident("table"), _ident("column")),
    ),
    QueryTemplate(
        id="null-check",
        name="Null Value Check",
        description="Rows where a column is (or is not) NULL",
        sql="SELECT * FROM {{table}} WHERE {{column}} {{operator}}",
        params=(
            _ident("table"),
            _ident("column"),
            TemplateParam("operator", ParamKind.KEYWORD, choices=("IS NULL", "IS NOT NULL")),
        ),
    ),
    QueryTemplate(
        id="recent-records",
        name="Recent Records",
        description="Most recent rows by a date column",
        sql="SELECT * FROM {{table}} ORDER BY {{dateColumn}} DESC LIMIT {{limit}}",
        params=(_ident("table"), _ident("dateColumn"), _int("limit")),
    ),
)


def quote_literal(value: object) -> str:
    """Render *value* as a SQL literal: numbers bare, strings single-quoted."""
    text = str(value)
    if _NUMERIC.match(text):
        return text
    return "'" + text.replace("'", "''") + "'"


def _render_value(template: QueryTemplate, param: TemplateParam, value: object) -> str:
    text = str(value).strip()
    if param.kind is ParamKind.IDENTIFIER:
        if not validate_identifier(text).is_valid:
            raise TemplateError(
                f"Parameter '{param.name}' of template '{template.id}' "
                f"is not a valid identifier: {text!r}"
            )
        return text
    if param.kind is ParamKind.KEYWORD:
        normalized = " ".join(text.upper().split())
        if normalized not in param.choices:
            raise TemplateError(
                f"Parameter '{param.name}' of template '{template.id}' "
                f"must be one of: {', '.join(param.choices)}"
            )
        return normalized
    if param.kind is ParamKind.INTEGER:
        if isinstance(value, bool) or not _INTEGER.match(text):
            raise TemplateError(
                f"Parameter '{param.name}' of template '{template.id}' "
                f"must be a non-negative integer: {text!r}"
            )
        return str(int(text))
    return quote_literal(value)


class TemplateRegistry:
    """Template lookup by id. Templates can be added but never replaced or removed."""

    def __init__(self, templates: Iterable[QueryTemplate] = DEFAULT_TEMPLATES) -> None:
        self._templates: dict[str, QueryTemplate] = {}
        for template in templates:
            self.add(template)

    def add(self, template: QueryTemplate) -> None:
        if template.id in self._templates:
            raise TemplateError(f"Template '{template.id}' already registered")
        self._templates[template.id] = template

    def get(self, template_id: str) -> QueryTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateError(f"Template '{template_id}' not found")
        return template

    def list_templates(self) -> list[QueryTemplate]:
        return list(self._templates.values())

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def render(self, template_id: str, params: Mapping[str, object]) -> str:
        """Substitute *params* into the template. All missing names are reported at once."""
        template = self.get(template_id)

        missing = [
            name
            for name in template.required_params
            if name not in params or params[name] is None or str(params[name]).strip() == ""
        ]
        if missing:
            raise TemplateError(f"Missing required parameters: {', '.join(missing)}")

        rendered = {p.name: _render_value(template, p, params[p.name]) for p in template.params}
        return _PLACEHOLDER.sub(lambda m: rendered[m.group(1)], template.sql)
