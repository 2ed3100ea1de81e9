"""Ok/Err values for steps whose failure is reported but does not abort the run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Tuple, Type, TypeGuard, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: Exception
    context: str = ""

    def log(self, logger: logging.Logger, level: int = logging.WARNING) -> None:
        logger.log(level, "%s: %s", self.context or "Operation failed", self.error)


Result = Union[Ok[T], Err]


def attempt(
    func: Callable[..., T],
    *args,
    context: str = "",
    catch: Tuple[Type[Exception], ...] = (OSError,),
) -> Result[T]:
    """Call ``func(*args)``, turning the exceptions in ``catch`` into an ``Err``."""
    try:
        return Ok(func(*args))
    except catch as exc:
        return Err(exc, context)


def is_err(result: Result[T]) -> TypeGuard[Err]:
    return isinstance(result, Err)
