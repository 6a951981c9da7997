"""Explicit success/failure values returned by pipeline components.

    result = await ledger.reserve(lines)
    if isinstance(result, Err):
        return result
    reservation_id = result.value

Routers call ``unwrap()``, which raises the carried ``OrderPipelineError`` for
the app's exception handler.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from services.orders_service.errors import OrderPipelineError

T = TypeVar("T")
E = TypeVar("E", bound=OrderPipelineError)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err[E]]
