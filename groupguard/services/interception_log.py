"""
groupguard.services.interception_log — Bounded, newest-first decision log
==========================================================================

The hot log holds the most recent REJECT decisions for the dashboard.  It
is a :class:`collections.deque` with ``maxlen`` so appending at capacity
silently evicts the oldest entry; the newest write is never refused.

Entries are immutable.  The only mutation is dismissal (:meth:`remove`).
Reversing a decision (an unban) happens out of band and leaves the entry
untouched.

An optional *sink* receives every recorded entry for long-term archiving
(see :mod:`groupguard.services.audit_service`).  A failing sink is logged
and otherwise ignored so the hot log keeps working.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from groupguard.constants import DEFAULT_INTERCEPTION_CAPACITY
from groupguard.engine.evaluator import Candidate, Decision

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InterceptionLogEntry:
    subject_id: str
    subject_display_name: str
    session_group_id: str | None
    decision: Decision
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "subjectId": self.subject_id,
            "subjectDisplayName": self.subject_display_name,
            "sessionGroupId": self.session_group_id,
            "decision": self.decision.to_dict(),
        }


InterceptionSink = Callable[[InterceptionLogEntry], None]


class InterceptionLog:
    """Thread-safe ring buffer of :class:`InterceptionLogEntry`."""

    def __init__(
        self,
        capacity: int = DEFAULT_INTERCEPTION_CAPACITY,
        sink: InterceptionSink | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque[InterceptionLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._total = 0
        self._sink = sink

    def append(self, entry: InterceptionLogEntry) -> InterceptionLogEntry:
        with self._lock:
            if len(self._entries) == self.capacity:
                logger.debug(
                    "Interception log full (%d); evicting %s",
                    self.capacity, self._entries[-1].id,
                )
            self._entries.appendleft(entry)
            self._total += 1

        if self._sink is not None:
            try:
                self._sink(entry)
            except Exception:
                logger.exception("Interception sink failed for entry %s", entry.id)
        return entry

    def record(
        self,
        candidate: Candidate,
        decision: Decision,
        group_id: str | None = None,
    ) -> InterceptionLogEntry:
        """Build an entry for *candidate* and append it."""
        entry = InterceptionLogEntry(
            subject_id=candidate.id,
            subject_display_name=candidate.display_name,
            session_group_id=group_id,
            decision=decision,
        )
        logger.info(
            "Intercepted %s (%s): %s",
            candidate.display_name, candidate.id, decision.reason,
        )
        return self.append(entry)

    def list(self, limit: int | None = None) -> list[InterceptionLogEntry]:
        """Newest first, at most *limit* entries."""
        with self._lock:
            entries = list(self._entries)
        return entries if limit is None else entries[: max(limit, 0)]

    def get(self, entry_id: str) -> InterceptionLogEntry | None:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        return None

    def remove(self, entry_id: str) -> bool:
        """Dismiss one entry.  Returns ``False`` if it is not (or no longer) held."""
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    self._entries.remove(entry)
                    return True
        return False

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def total_intercepted(self) -> int:
        """Every entry ever appended, including evicted and dismissed ones."""
        with self._lock:
            return self._total

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
