"""Time-bounded memoization for dashboard views."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CachedValue(Generic[T]):
    """A computed value and the instant it was computed."""

    value: T
    computed_at: datetime

    def is_stale(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.computed_at >= ttl


def refresh_if_stale(
    cached: CachedValue[T] | None,
    now: datetime,
    ttl: timedelta,
    build: Callable[[], T],
) -> CachedValue[T]:
    """Return ``cached`` while it is fresh, otherwise a new value from ``build()``."""
    if cached is not None and not cached.is_stale(now, ttl):
        return cached
    return CachedValue(value=build(), computed_at=now)
