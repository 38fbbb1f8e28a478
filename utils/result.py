"""
Railway-style results for the checkout pipelines.

Every step returns either Success(value) or Failure(error). Chaining with
bind() stops at the first Failure, so later steps never run after an
earlier one failed.
"""

from typing import Any, Awaitable, Callable, Generic, TypeVar

from core.errors import AppError

T = TypeVar("T")
U = TypeVar("U")


class Success(Generic[T]):
    __slots__ = ("value",)

    def __init__(self, value: T = None):
        self.value = value

    @property
    def is_success(self) -> bool:
        return True

    @property
    def is_failure(self) -> bool:
        return False

    def bind(self, fn: Callable[[T], "Result"]) -> "Result":
        return fn(self.value)

    async def bind_async(self, fn: Callable[[T], Awaitable["Result"]]) -> "Result":
        return await fn(self.value)

    def map(self, fn: Callable[[T], U]) -> "Success[U]":
        return Success(fn(self.value))

    def unwrap(self) -> T:
        return self.value

    def __eq__(self, other):
        return isinstance(other, Success) and self.value == other.value

    def __repr__(self):
        return f"Success({self.value!r})"


class Failure:
    __slots__ = ("error",)

    def __init__(self, error: AppError):
        self.error = error

    @property
    def is_success(self) -> bool:
        return False

    @property
    def is_failure(self) -> bool:
        return True

    def bind(self, fn: Callable[[Any], "Result"]) -> "Failure":
        return self

    async def bind_async(self, fn: Callable[[Any], Awaitable["Result"]]) -> "Failure":
        return self

    def map(self, fn: Callable[[Any], Any]) -> "Failure":
        return self

    def unwrap(self):
        raise RuntimeError(f"unwrap() called on {self!r}")

    def __eq__(self, other):
        return isinstance(other, Failure) and self.error == other.error

    def __repr__(self):
        return f"Failure({self.error!r})"


Result = Success | Failure
