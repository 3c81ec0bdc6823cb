"""One-shot outcome of a single field extractor.

An extractor either ``Found`` a value or reports why it is ``Absent``; it never raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Found(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Absent:
    """``reason`` is ``"not-found"`` when nothing matched, ``"error"`` when the lookup failed."""

    reason: str = "not-found"
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def failed(self) -> bool:
        return self.reason == "error"


Result = Union[Found[T], Absent]

