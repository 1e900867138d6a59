"""Error taxonomy and the Result type returned by every store operation.

Store operations never raise across the API boundary; they return a Result
that is either ok (carrying a value) or failed (carrying a StoreError).

    res = store.create_note("todo", "Work", "hello")
    if not res.ok:
        if res.error.kind is ErrorKind.NAME_COLLISION:
            ...
    note = res.unwrap()     # raises the StoreError instead
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(enum.Enum):
    NAME_COLLISION = "name_collision"      # target already exists
    PROTECTED_GROUP = "protected_group"    # operation on the root/default group
    INVALID_MOVE = "invalid_move"          # group moved into itself or a descendant
    NOT_FOUND = "not_found"                # source vanished between check and act
    IO_FAILURE = "io_failure"              # wrapped OSError
    INVALID_PATH = "invalid_path"          # traversal, absolute path, illegal characters
    INVALID_DATA = "invalid_data"          # undecodable attachment payload


class StoreError(Exception):
    """A tagged store failure. Raised only by Result.unwrap() and internal helpers."""

    def __init__(self, kind: ErrorKind, message: str, path: str | Path | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.path = str(path) if path is not None else None

    def __str__(self) -> str:
        if self.path:
            return f"[{self.kind.value}] {self.message} ({self.path})"
        return f"[{self.kind.value}] {self.message}"

    def __repr__(self) -> str:
        return f"StoreError({self.kind.name}, {self.message!r}, path={self.path!r})"

    @classmethod
    def from_os_error(cls, exc: OSError, path: str | Path | None = None) -> StoreError:
        """Wrap an OSError, mapping the errno-specific subclasses onto the taxonomy."""
        target = path if path is not None else exc.filename
        if isinstance(exc, FileNotFoundError):
            return cls(ErrorKind.NOT_FOUND, exc.strerror or str(exc), target)
        if isinstance(exc, FileExistsError):
            return cls(ErrorKind.NAME_COLLISION, exc.strerror or str(exc), target)
        return cls(ErrorKind.IO_FAILURE, exc.strerror or str(exc), target)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success-or-tagged-failure value."""

    value: T | None = None
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, path: str | Path | None = None) -> Result[T]:
        return cls(error=StoreError(kind, message, path))

    @classmethod
    def from_error(cls, error: StoreError) -> Result[T]:
        return cls(error=error)


__all__ = ["ErrorKind", "Result", "StoreError"]
