from __future__ import annotations
from typing import Generic, Optional, TypeVar
import uuid

T = TypeVar("T")


def gen_id() -> str:
    return uuid.uuid4().hex


class Result(Generic[T]):
    """
    Retour des opérations distantes : soit une valeur, soit une erreur typée.
    Les services ne laissent pas remonter d'exception au-delà de leur frontière.
    """

    __slots__ = ("value", "error")

    def __init__(self, value: Optional[T] = None, error: Optional[Exception] = None) -> None:
        self.value = value
        self.error = error

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def __repr__(self) -> str:
        if self.ok:
            return f"Result.success({self.value!r})"
        return f"Result.failure({self.error!r})"
