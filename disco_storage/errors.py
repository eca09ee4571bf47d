"""Result values and the storage error taxonomy.

Storage operations never raise across component boundaries. They return a
``Result`` that is either successful (optionally carrying a value) or failed
with one or more ``StorageError`` entries. Each error carries a kind tag, an
HTTP-ish status for the outer layer, free-form metadata and an optional
causing exception. Failures of several parts are reported as sibling errors
on the same result.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Generic
from typing import Iterable
from typing import Optional
from typing import TypeVar


T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"
    NOT_IMPLEMENTED = "not_implemented"


@dataclass
class StorageError:
    message: str
    kind: ErrorKind = ErrorKind.INTERNAL
    http_status: int = 500
    metadata: dict[str, Any] = field(default_factory=dict)
    cause: Optional[BaseException] = None

    def caused_by(self, exc: BaseException) -> "StorageError":
        self.cause = exc
        return self

    def with_metadata(self, **metadata: Any) -> "StorageError":
        self.metadata.update(metadata)
        return self

    def describe(self) -> str:
        """One-line description including the cause, for logs and CLI output."""
        text = self.message
        if self.cause is not None:
            text += f" (caused by {type(self.cause).__name__}: {self.cause})"
        return text

    def __str__(self) -> str:
        return self.describe()


class ValidationError(StorageError):
    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message, ErrorKind.VALIDATION, 400, dict(metadata))


class NotFoundError(StorageError):
    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message, ErrorKind.NOT_FOUND, 404, dict(metadata))


class InternalServerError(StorageError):
    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message, ErrorKind.INTERNAL, 500, dict(metadata))


class NotImplementedYetError(StorageError):
    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message, ErrorKind.NOT_IMPLEMENTED, 501, dict(metadata))


class ResultValueError(RuntimeError):
    """Raised when reading ``value`` from a failed result."""


@dataclass
class Result(Generic[T]):
    errors: list[StorageError] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    _value: Optional[T] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(_value=value)

    @classmethod
    def fail(cls, *errors: StorageError) -> "Result[T]":
        if not errors:
            raise ValueError("Result.fail() needs at least one error")
        return cls(errors=list(errors))

    @property
    def is_success(self) -> bool:
        return not self.errors

    @property
    def is_failed(self) -> bool:
        return bool(self.errors)

    @property
    def value(self) -> T:
        if self.errors:
            raise ResultValueError(f"Result is failed: {self.error_messages()}")
        return self._value  # type: ignore[return-value]

    @property
    def value_or_none(self) -> Optional[T]:
        return None if self.errors else self._value

    def with_errors(self, errors: Iterable[StorageError]) -> "Result[T]":
        self.errors.extend(errors)
        return self

    def with_metadata(self, **metadata: Any) -> "Result[T]":
        self.metadata.update(metadata)
        return self

    def has_error_kind(self, kind: ErrorKind) -> bool:
        return any(e.kind == kind for e in self.errors)

    def error_messages(self) -> list[str]:
        return [e.describe() for e in self.errors]

    def cast(self) -> "Result[Any]":
        """Re-type a failed result so it can be returned from another operation."""
        if self.is_success:
            raise ResultValueError("Only failed results can be cast")
        return Result(errors=list(self.errors), metadata=dict(self.metadata))
