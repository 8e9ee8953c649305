"""Internal types for the policy layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(is_valid=True)

    @classmethod
    def reject(cls, error: str) -> ValidationResult:
        return cls(is_valid=False, error=error)
