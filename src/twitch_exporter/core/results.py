"""Tagged per-item outcome used by the scrape orchestrator.

Each upstream lookup of a scrape resolves to an :class:`ItemResult`: either
``ok(value)`` or ``failed(default, cause)``.  The failure is only collapsed
to its default value when the metric sample is emitted, so the cause stays
inspectable (tests, logs) independently of the exported number.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ItemResult(Generic[T]):
    """Outcome of one upstream lookup.

    Attributes:
        value: The looked-up value, ``None`` when the lookup failed.
        default: Value exported in place of a failed lookup.
        error: The failure cause, ``None`` on success.
    """

    value: T | None = None
    default: T | None = None
    error: BaseException | None = None

    @classmethod
    def ok(cls, value: T) -> ItemResult[T]:
        return cls(value=value)

    @classmethod
    def failed(cls, default: T, cause: BaseException) -> ItemResult[T]:
        return cls(default=default, error=cause)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def collapse(self) -> T:
        """Return the value to export: the result on success, the default otherwise."""
        if self.succeeded:
            return self.value  # type: ignore[return-value]
        return self.default  # type: ignore[return-value]
