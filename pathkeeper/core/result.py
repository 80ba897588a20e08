"""Success/failure result type returned by command and query handlers."""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .errors import DomainError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation: either a value or a DomainError."""

    _value: T | None = None
    error: DomainError | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(_value=value)

    @classmethod
    def failure(cls, error: DomainError | str, code: str = "GENERAL.INVALID_OPERATION") -> "Result[T]":
        """Create a failed result.

        Args:
            error: A DomainError, or a plain message wrapped under ``code``
            code: Error code used when ``error`` is a string
        """
        if isinstance(error, str):
            error = DomainError(code, error)
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @property
    def value(self) -> T:
        if self.error is not None:
            raise ValueError(f"Cannot read value of a failed result ({self.error.code})")
        return self._value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if self.error is not None:
            return {"success": False, "error": self.error.to_dict()}
        return {"success": True, "value": self._value}
