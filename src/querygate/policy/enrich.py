"""Query enrichment: engine-native row limits and pagination via sqlglot."""

from __future__ import annotations

import sqlglot
from sqlglot import exp

DEFAULT_LIMIT = 1000


def _parse_select(sql: str, dialect: str | None) -> exp.Select | None:
    try:
        statements = [s for s in sqlglot.parse(sql, dialect=dialect) if s is not None]
    except sqlglot.errors.SqlglotError:
        return None
    if len(statements) != 1 or not isinstance(statements[0], exp.Select):
        return None
    return statements[0]


def _has_row_limit(statement: exp.Select) -> bool:
    return statement.args.get("limit") is not None or statement.args.get("fetch") is not None


def apply_row_limit(sql: str, *, limit: int = DEFAULT_LIMIT, dialect: str | None = None) -> str:
    """Add the engine's row limit to an unbounded SELECT.

    The generated idiom follows the dialect: LIMIT for postgres/mysql/sqlite,
    TOP for tsql, FETCH FIRST n ROWS ONLY for oracle. Returns the input
    unchanged when it already limits rows, is not a plain SELECT, or cannot
    be parsed; callers still cap rows at fetch time.
    """
    statement = _parse_select(sql, dialect)
    if statement is None or _has_row_limit(statement):
        return sql
    return statement.limit(limit).sql(dialect=dialect)


def paginate(sql: str, *, page: int, page_size: int, dialect: str | None = None) -> str:
    """Return the statement restricted to one 1-based page.

    Statements that already limit rows are wrapped in a subquery first.
    """
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")

    offset = (page - 1) * page_size
    statement = _parse_select(sql, dialect)
    if statement is None:
        try:
            inner = sqlglot.parse_one(sql, dialect=dialect)
        except sqlglot.errors.SqlglotError:
            inner = None
        if not isinstance(inner, exp.Query):
            raise ValueError("Only SELECT statements can be paginated")
        statement = exp.select("*").from_(inner.subquery("page_q"))
    elif _has_row_limit(statement):
        statement = exp.select("*").from_(statement.subquery("page_q"))

    # T-SQL pages through OFFSET ... FETCH, which needs ORDER BY.
    if dialect == "tsql" and statement.args.get("order") is None:
        statement = statement.order_by("(SELECT NULL)")

    return statement.limit(page_size).offset(offset).sql(dialect=dialect)
