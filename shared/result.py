"""Result values handed from the lifecycle services to the UI layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar


T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Result(Generic[T, E]):
    """Discriminated union capturing either a success value or an error.

    ``None`` is a legitimate success value (for example a completed restart),
    so success is decided by the absence of an error, not by ``value``.
    """

    value: Optional[T] = None
    error: Optional[E] = None

    @classmethod
    def ok(cls, value: T = None) -> "Result[T, E]":  # type: ignore[assignment]
        return cls(value=value)

    @classmethod
    def err(cls, error: E) -> "Result[T, E]":
        if error is None:
            raise ValueError("Result.err requires an error value")
        return cls(error=error)

    def is_ok(self) -> bool:
        return self.error is None

    def is_err(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        if self.error is not None:
            raise RuntimeError(f"Tried to unwrap error result: {self.error}")
        return self.value  # type: ignore[return-value]

    def unwrap_err(self) -> E:
        if self.error is None:
            raise RuntimeError("Tried to unwrap the error of a successful result")
        return self.error

    def value_or(self, default: T) -> T:
        if self.error is not None:
            return default
        return self.value  # type: ignore[return-value]


__all__ = ["Result"]
