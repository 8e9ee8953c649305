"""Policy layer: read-only gate, filter screening, row-limit enrichment."""

from __future__ import annotations

from querygate.errors import ValidationError
from querygate.policy._types import ValidationResult
from querygate.policy.enrich import DEFAULT_LIMIT, apply_row_limit, paginate
from querygate.policy.safety import (
    FORBIDDEN_KEYWORDS,
    split_qualified,
    validate_filter_expression,
    validate_identifier,
    validate_query,
)

__all__ = [
    "DEFAULT_LIMIT",
    "FORBIDDEN_KEYWORDS",
    "ValidationResult",
    "apply_row_limit",
    "ensure_identifier",
    "ensure_read_only",
    "paginate",
    "split_qualified",
    "validate_filter_expression",
    "validate_identifier",
    "validate_query",
]


def ensure_read_only(sql: str) -> None:
    """Raise ValidationError unless *sql* passes validate_query()."""
    result = validate_query(sql)
    if not result.is_valid:
        raise ValidationError(result.error or "Invalid query")


def ensure_identifier(name: str, *, what: str = "identifier") -> None:
    result = validate_identifier(name)
    if not result.is_valid:
        raise ValidationError(f"Invalid {what}: {name!r}")
