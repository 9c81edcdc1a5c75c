from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class HybridMemError(Exception):
    """Base class for engine errors."""


class InvalidQueryError(HybridMemError, ValueError):
    """A query predicate is malformed. Raised before any I/O happens."""


class TransientServiceError(HybridMemError):
    """An external store timed out or dropped the connection; safe to retry."""


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a call that crosses the external-service boundary.

    ``degraded`` marks a value that was served from a cache or a partial
    result set because the live service could not be reached.
    """

    value: T | None = None
    error: Exception | None = None
    degraded: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, degraded: bool = False) -> "Outcome[T]":
        return cls(value=value, degraded=degraded)

    @classmethod
    def failure(cls, error: Exception, fallback: T | None = None) -> "Outcome[T]":
        return cls(value=fallback, error=error, degraded=True)

    def value_or(self, default: T) -> T:
        return self.value if self.value is not None else default
