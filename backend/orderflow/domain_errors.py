"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class ValidationError(DomainError):
    """Illegal transition or malformed input."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=400, message=message, details=details)


class NotFoundError(DomainError):
    """Missing entity. Tenant mismatches are reported through this type as well."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=404, message=message, details=details)


class ConflictError(DomainError):
    """Deliberate duplicate whose inputs differ from the stored row."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=409, message=message, details=details)


class CascadeFailure(Exception):
    """Raised inside a cascade; caught by the orchestrator and never surfaced."""

    def __init__(self, cascade: str, cause: BaseException) -> None:
        super().__init__(f"{cascade} failed: {cause}")
        self.cascade = cascade
        self.cause = cause
