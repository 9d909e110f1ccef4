"""Success/failure result returned by the engine's control surface."""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union


T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def is_success(self) -> bool:
        return True

    @property
    def is_failure(self) -> bool:
        return False

    @property
    def error(self) -> None:
        return None

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failure:
    error: Exception

    @property
    def is_success(self) -> bool:
        return False

    @property
    def is_failure(self) -> bool:
        return True

    @property
    def value(self) -> None:
        return None

    def unwrap(self) -> Any:
        """Raise the carried error."""
        raise self.error


Result = Union[Success[T], Failure]


def success(value: Optional[T] = None) -> "Success[Optional[T]]":
    return Success(value)


def failure(error: Exception) -> Failure:
    return Failure(error)
