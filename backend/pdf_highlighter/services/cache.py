"""Caller-owned cache values for tag listings."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


def monotonic_now() -> float:
    return time.monotonic()


@dataclass(slots=True, frozen=True)
class SuggestionCache(Generic[T]):
    """A fetched value together with when and for which key it was fetched."""

    data: T
    fetched_at: float
    key: str

    def is_fresh(self, now: float, ttl: float, key: str | None = None) -> bool:
        """True while younger than ``ttl`` seconds and, if given, for the same key."""

        if key is not None and key != self.key:
            return False
        return 0 <= now - self.fetched_at < ttl
