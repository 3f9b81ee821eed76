"""Half-open interval arithmetic over slots and occupied periods."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol

from backend.domain.models import OccupiedInterval


class Interval(Protocol):
    @property
    def start(self) -> datetime: ...

    @property
    def end(self) -> datetime: ...


def overlaps(a: Interval, b: Interval) -> bool:
    """Return True when ``[a.start, a.end)`` and ``[b.start, b.end)`` intersect.

    Back-to-back intervals (one ending exactly where the other starts) do not
    overlap.
    """
    return a.start < b.end and a.end > b.start


def first_overlap(
    requested: Interval,
    intervals: Iterable[OccupiedInterval],
) -> Optional[OccupiedInterval]:
    """Return the first occupying interval that collides with ``requested``."""
    for interval in intervals:
        if not interval.is_occupying:
            continue
        if overlaps(requested, interval):
            return interval
    return None
