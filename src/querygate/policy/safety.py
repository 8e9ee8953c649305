"""Safety checks: read-only statement gate, filter screening, identifier screening.

These run before any connection is touched. They are deliberately textual:
a forbidden keyword inside a string literal still rejects the query.
"""

from __future__ import annotations

import re

from querygate.policy._types import ValidationResult

FORBIDDEN_KEYWORDS: tuple[str, ...] = (
    "DROP",
    "DELETE",
    "INSERT",
    "UPDATE",
    "ALTER",
    "CREATE",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "EXEC",
    "EXECUTE",
)

_READ_PREFIX = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)
_FORBIDDEN = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)

_INJECTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r";\s*DROP", re.IGNORECASE), "statement chaining"),
    (re.compile(r";\s*DELETE", re.IGNORECASE), "statement chaining"),
    (re.compile(r";\s*UPDATE", re.IGNORECASE), "statement chaining"),
    (re.compile(r"UNION\s+SELECT", re.IGNORECASE), "UNION SELECT"),
    (re.compile(r"--.*$", re.MULTILINE), "line comment"),
    (re.compile(r"/\*.*?\*/", re.DOTALL), "block comment"),
)

# Plain or dotted identifiers: schema.table, "Col" quoting is not accepted.
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$#]*(\.[A-Za-z_][A-Za-z0-9_$#]*)*$")


def validate_query(sql: str | None) -> ValidationResult:
    """Accept only single read statements starting with SELECT or WITH."""
    if sql is None or not sql.strip():
        return ValidationResult.reject("Query cannot be empty")

    if not _READ_PREFIX.match(sql):
        return ValidationResult.reject("Only SELECT queries (optionally starting with WITH) are allowed")

    match = _FORBIDDEN.search(sql)
    if match is not None:
        return ValidationResult.reject(f"Forbidden keyword detected: {match.group(1).upper()}")

    return ValidationResult.ok()


def validate_filter_expression(expr: str | None) -> ValidationResult:
    """Screen a caller-supplied WHERE fragment.

    An empty filter is valid (no filtering). The fragment gets the keyword
    blacklist plus injection pattern checks.
    """
    if expr is None or not expr.strip():
        return ValidationResult.ok()

    match = _FORBIDDEN.search(expr)
    if match is not None:
        return ValidationResult.reject(
            f"Forbidden keyword in filter expression: {match.group(1).upper()}"
        )

    for pattern, label in _INJECTION_PATTERNS:
        if pattern.search(expr):
            return ValidationResult.reject(f"Potential SQL injection detected ({label})")

    return ValidationResult.ok()


def validate_identifier(name: str | None) -> ValidationResult:
    """Accept table, schema and column names that can be spliced into SQL bare."""
    if name is None or not name.strip():
        return ValidationResult.reject("Identifier cannot be empty")
    if not _IDENTIFIER.match(name):
        return ValidationResult.reject(f"Invalid identifier: {name!r}")
    return ValidationResult.ok()


def split_qualified(name: str, schema: str | None = None) -> tuple[str | None, str]:
    """Split ``schema.table`` into (schema, table) unless *schema* is given separately."""
    if schema is None and "." in name:
        head, tail = name.split(".", 1)
        return head, tail
    return schema, name
