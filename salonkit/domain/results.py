"""
Tagged result types for calls against the customer portal.

Every remote call resolves to either ``Ok(data)`` or ``Err(kind, message)``
so call sites branch on a type instead of inspecting response shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories surfaced by the core."""

    NETWORK_ERROR = "network_error"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    OUT_OF_STOCK = "out_of_stock"
    MISSING_VARIANT = "missing_variant"

    @property
    def transient(self) -> bool:
        """Whether trying again later could succeed without user action."""
        return self in (ErrorKind.NETWORK_ERROR, ErrorKind.UPSTREAM_UNAVAILABLE)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    status: Optional[int] = None
    data: Any = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
