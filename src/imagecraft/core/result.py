"""Tagged success/failure result returned by every public entry point.

Callers match on the two variants instead of catching exceptions:

    match await orchestrator.generate_structured_prompt(prompt):
        case Success(value=result):
            print(result.structured_prompt)
        case Failure(error=error):
            print(error.code, error)
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from imagecraft.core.errors import ImagecraftError

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    """A successful outcome carrying its value."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """A failed outcome carrying the error that caused it."""

    error: ImagecraftError

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return str(self.error)


Result = Union[Success[T], Failure]
