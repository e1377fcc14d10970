from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


class DictStoreError(RuntimeError):
    """Base class for storage engine failures."""


class UninitializedError(DictStoreError):
    """Raised when the engine is used before ensure_initialized() succeeded."""


class DatabaseConnectionError(DictStoreError):
    """Raised when the backend is unreachable or misconfigured."""


class WriteError(DictStoreError):
    """Raised when an insert, update or delete could not be completed."""


class ReadError(DictStoreError):
    """Raised by a backend when a lookup fails; repositories absorb it."""


class IntegrityViolation(WriteError):
    """Raised when a write conflicts with a uniqueness constraint."""


@dataclass(frozen=True, slots=True)
class StepWarning:
    step: str
    message: str

    def __str__(self) -> str:
        return f"{self.step}: {self.message}"


@dataclass(frozen=True)
class OperationReport(Generic[T]):
    """Outcome of a best-effort step together with the problems it tolerated."""

    outcome: T
    warnings: tuple[StepWarning, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.warnings
