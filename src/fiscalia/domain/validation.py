"""Synchronous validation result shared by regime and cancellation checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[ValidationIssue, ...] = field(default=())
    warnings: tuple[ValidationIssue, ...] = field(default=())

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> ValidationIssue | None:
        return self.errors[0] if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }
