from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

"""Validation result models for the bulk client import."""

__all__ = [
    "ValidationError",
    "ValidationWarning",
    "ValidationResult",
]


@dataclass(frozen=True)
class ValidationError:
    """Business-rule violation for one field of one row (blocks the row)."""
    row: int
    field: str
    message: str
    value: str | None = None  # offending input, when there is one


@dataclass(frozen=True)
class ValidationWarning:
    """Non-blocking advisory, e.g. a potential duplicate of an existing client."""
    row: int
    field: str
    message: str
    existing_id: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    total_rows: int
    valid_rows: int  # rows with zero errors (warnings do not disqualify)
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error_rows(self) -> set[int]:
        return {e.row for e in self.errors}

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "errors": [asdict(e) for e in self.errors],
            "warnings": [asdict(w) for w in self.warnings],
        }
