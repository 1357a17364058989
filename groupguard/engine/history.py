"""
groupguard.engine.history — Bounded occupancy samples
======================================================

One sample per wall-clock second at most.  A sample whose second is equal
to (or, with clock skew, earlier than) the last stored sample overwrites
that sample's count instead of appending, so bursts of joins collapse into
a single point.  The series is capped; the oldest samples fall off first.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime

from groupguard.constants import DEFAULT_HISTORY_CAPACITY
from groupguard.engine.events import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Sample:
    timestamp: datetime
    active_count: int

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp.isoformat(), "count": self.active_count}

    @classmethod
    def from_dict(cls, data: dict) -> Sample:
        return cls(
            timestamp=parse_timestamp(data.get("timestamp")),
            active_count=int(data.get("count", data.get("active_count", 0))),
        )


def _second(ts: datetime) -> int:
    return int(ts.timestamp())


class OccupancyHistory:
    """Not thread-safe on its own; the tracker's lock guards it."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY, samples: Iterable[Sample] = ()) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._samples: deque[Sample] = deque(samples, maxlen=capacity)

    def record(self, timestamp: datetime, active_count: int) -> None:
        if self._samples and _second(timestamp) <= _second(self._samples[-1].timestamp):
            self._samples[-1] = replace(self._samples[-1], active_count=active_count)
            return
        if len(self._samples) == self.capacity:
            logger.debug("Occupancy history full (%d); dropping oldest sample", self.capacity)
        self._samples.append(Sample(timestamp=timestamp, active_count=active_count))

    def clear(self) -> None:
        self._samples.clear()

    def samples(self) -> tuple[Sample, ...]:
        return tuple(self._samples)

    def __len__(self) -> int:
        return len(self._samples)
