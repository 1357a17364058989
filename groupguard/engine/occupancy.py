"""
groupguard.engine.occupancy — Event-sourced occupancy tracker
==============================================================

The tracker owns three pieces of state: the **entity set** (who has been
seen in the current session and in what state), the **occupancy history**
(active head-count over time) and the **session context**.  All three are
mutated only by :meth:`OccupancyTracker.apply`, one event at a time, under
a lock; readers get immutable :class:`OccupancySnapshot` objects.

Identity reconciliation
-----------------------
Log lines often name an occupant before their stable id is known.  Such an
entity is keyed ``log:<displayName>``.  Lookups try the stable id first and
fall back to the display-name index, and when a later event carries the
stable id the synthetic entry is re-keyed in place (or folded into an
existing entry for that id) so one person is never counted twice.

Session boundaries
------------------
A ``LocationChanged`` for the instance we are already in only refreshes
world metadata.  A different instance id wipes the entity set and history
in the same critical section.  ``SessionEnded`` wipes everything,
including the session context.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from groupguard.constants import (
    DEFAULT_HISTORY_CAPACITY,
    PENDING_RANK,
    SYNTHETIC_KEY_PREFIX,
)
from groupguard.engine.events import (
    EntityUpdated,
    GroupChanged,
    Joined,
    Kicked,
    Left,
    LocationChanged,
    PresenceEvent,
    SessionEnded,
    parse_timestamp,
)
from groupguard.engine.history import OccupancyHistory, Sample
from groupguard.engine.session import SessionContext, group_from_location

logger = logging.getLogger(__name__)

OccupancyObserver = Callable[[PresenceEvent, "OccupancySnapshot"], None]


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
class EntityStatus(enum.StrEnum):
    JOINING = "joining"
    ACTIVE = "active"
    LEFT = "left"
    KICKED = "kicked"


def synthetic_key(display_name: str) -> str:
    return f"{SYNTHETIC_KEY_PREFIX}{display_name}"


@dataclass(frozen=True, slots=True)
class Entity:
    id: str
    display_name: str
    status: EntityStatus
    last_updated: datetime
    rank: str = PENDING_RANK
    is_group_member: bool = False
    avatar_url: str | None = None
    friend_status: str | None = None
    metrics: dict[str, Any] | None = None
    is_age_verified: bool | None = None

    @property
    def is_synthetic(self) -> bool:
        return self.id.startswith(SYNTHETIC_KEY_PREFIX)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "status": self.status.value,
            "rank": self.rank,
            "isGroupMember": self.is_group_member,
            "lastUpdated": self.last_updated.isoformat(),
            "avatarUrl": self.avatar_url,
            "friendStatus": self.friend_status,
            "metrics": self.metrics,
            "isAgeVerified": self.is_age_verified,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        return cls(
            id=str(data["id"]),
            display_name=str(data.get("displayName") or ""),
            status=EntityStatus(data.get("status", EntityStatus.ACTIVE)),
            last_updated=parse_timestamp(data.get("lastUpdated")),
            rank=data.get("rank") or PENDING_RANK,
            is_group_member=bool(data.get("isGroupMember", False)),
            avatar_url=data.get("avatarUrl"),
            friend_status=data.get("friendStatus"),
            metrics=data.get("metrics"),
            is_age_verified=data.get("isAgeVerified"),
        )


@dataclass(frozen=True, slots=True)
class OccupancySnapshot:
    """Read-only view handed to observers and API callers."""

    entities: tuple[Entity, ...]
    history: tuple[Sample, ...]
    session: SessionContext

    @property
    def active_count(self) -> int:
        return sum(1 for e in self.entities if e.status == EntityStatus.ACTIVE)

    def get(self, entity_id: str) -> Entity | None:
        for entity in self.entities:
            if entity.id == entity_id:
                return entity
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "activeCount": self.active_count,
            "entities": [e.to_dict() for e in self.entities],
            "history": [s.to_dict() for s in self.history],
        }


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------
class OccupancyTracker:
    """Single-writer reducer over :mod:`groupguard.engine.events`."""

    def __init__(
        self,
        capacity: int = DEFAULT_HISTORY_CAPACITY,
        *,
        history: Iterable[Sample] = (),
        session: SessionContext | None = None,
        entities: Iterable[Entity] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._history = OccupancyHistory(capacity, history)
        self._session = session or SessionContext()
        self._entities: dict[str, Entity] = {}
        self._by_name: dict[str, str] = {}
        self._observers: list[OccupancyObserver] = []
        for entity in entities:
            self._store(entity)

    # -- persistence ---------------------------------------------------------
    @classmethod
    def from_state(
        cls, state: dict[str, Any] | None, capacity: int = DEFAULT_HISTORY_CAPACITY
    ) -> OccupancyTracker:
        """Rebuild a tracker from the layout produced by :meth:`to_state`."""
        state = state or {}
        instance_id = state.get("currentInstanceId")
        session = SessionContext(
            instance_id=instance_id,
            world_name=state.get("currentWorldName"),
            location=state.get("currentLocation"),
            group_id=state.get("currentGroupId"),
        )
        return cls(
            capacity,
            history=[Sample.from_dict(s) for s in state.get("history") or ()],
            session=session,
            entities=[Entity.from_dict(e) for e in state.get("liveEntities") or ()],
        )

    def to_state(self) -> dict[str, Any]:
        with self._lock:
            return {
                "history": [s.to_dict() for s in self._history.samples()],
                "currentInstanceId": self._session.instance_id,
                "currentWorldName": self._session.world_name,
                "currentLocation": self._session.location,
                "currentGroupId": self._session.group_id,
                "liveEntities": [e.to_dict() for e in self._entities.values()],
            }

    # -- observers -----------------------------------------------------------
    def on_occupancy_changed(self, callback: OccupancyObserver) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, event: PresenceEvent, snapshot: OccupancySnapshot) -> None:
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(event, snapshot)
            except Exception:
                logger.exception("Occupancy observer %r failed", callback)

    # -- reads ---------------------------------------------------------------
    def get_current_occupancy(self) -> OccupancySnapshot:
        with self._lock:
            return self._snapshot()

    @property
    def session(self) -> SessionContext:
        with self._lock:
            return self._session

    def _snapshot(self) -> OccupancySnapshot:
        return OccupancySnapshot(
            entities=tuple(self._entities.values()),
            history=self._history.samples(),
            session=self._session,
        )

    def _active_count(self) -> int:
        return sum(1 for e in self._entities.values() if e.status == EntityStatus.ACTIVE)

    # -- identity ------------------------------------------------------------
    def _store(self, entity: Entity) -> None:
        previous = self._entities.get(entity.id)
        if previous is not None and previous.display_name != entity.display_name:
            if self._by_name.get(previous.display_name) == entity.id:
                del self._by_name[previous.display_name]
        self._entities[entity.id] = entity
        if entity.display_name:
            self._by_name[entity.display_name] = entity.id

    def _resolve(self, subject_id: str | None, display_name: str) -> str | None:
        if subject_id and subject_id in self._entities:
            return subject_id
        key = self._by_name.get(display_name)
        if key is not None and subject_id and not key.startswith(SYNTHETIC_KEY_PREFIX):
            # Same display name, different stable id: a different person
            return None
        return key

    def _rekey(self, old_key: str, new_key: str) -> Entity:
        """Move *old_key* to *new_key*, folding into an existing entry."""
        moved = self._entities.pop(old_key)
        if self._by_name.get(moved.display_name) == old_key:
            del self._by_name[moved.display_name]

        existing = self._entities.get(new_key)
        if existing is None:
            merged = replace(moved, id=new_key)
        else:
            newer = moved if moved.last_updated >= existing.last_updated else existing
            merged = replace(
                existing,
                display_name=moved.display_name or existing.display_name,
                status=newer.status,
                last_updated=max(moved.last_updated, existing.last_updated),
            )
        self._store(merged)
        logger.debug("Merged identity %s → %s", old_key, new_key)
        return merged

    def merge_identity(self, old_key: str, new_key: str) -> bool:
        """Re-key *old_key* to *new_key*.  Returns ``False`` if *old_key* is unknown."""
        with self._lock:
            if old_key == new_key or old_key not in self._entities:
                return False
            self._rekey(old_key, new_key)
            return True

    def _locate(self, subject_id: str | None, display_name: str) -> Entity | None:
        if subject_id and subject_id in self._entities:
            # A placeholder recorded under the new name belongs to this id
            stray = self._by_name.get(display_name)
            if stray is not None and stray != subject_id and stray.startswith(SYNTHETIC_KEY_PREFIX):
                return self._rekey(stray, subject_id)
        key = self._resolve(subject_id, display_name)
        if key is None:
            return None
        if subject_id and key != subject_id:
            return self._rekey(key, subject_id)
        return self._entities[key]

    # -- reducer -------------------------------------------------------------
    def apply(self, event: PresenceEvent) -> OccupancySnapshot:
        """Apply one event and return the resulting snapshot."""
        with self._lock:
            if isinstance(event, Joined):
                self._on_presence(event, EntityStatus.ACTIVE)
            elif isinstance(event, Left):
                self._on_presence(event, EntityStatus.LEFT)
            elif isinstance(event, Kicked):
                self._on_presence(event, EntityStatus.KICKED)
            elif isinstance(event, EntityUpdated):
                self._on_entity_updated(event)
            elif isinstance(event, LocationChanged):
                self._on_location(event)
            elif isinstance(event, GroupChanged):
                self._session = replace(self._session, group_id=event.group_id)
            elif isinstance(event, SessionEnded):
                self._reset()
                self._session = SessionContext()
                logger.info("Session ended; occupancy cleared")
            else:
                raise TypeError(f"Not a presence event: {event!r}")

            if isinstance(event, (Joined, Left, Kicked, EntityUpdated)):
                self._history.record(event.timestamp, self._active_count())
            snapshot = self._snapshot()

        self._notify(event, snapshot)
        return snapshot

    def _on_presence(self, event: Joined | Left | Kicked, status: EntityStatus) -> None:
        entity = self._locate(event.subject_id, event.display_name)
        if entity is None:
            if status != EntityStatus.ACTIVE:
                logger.warning(
                    "%s for unseen occupant %r; recording placeholder",
                    type(event).__name__, event.display_name,
                )
            entity = Entity(
                id=event.subject_id or synthetic_key(event.display_name),
                display_name=event.display_name,
                status=status,
                last_updated=event.timestamp,
            )
        else:
            entity = replace(
                entity,
                display_name=event.display_name or entity.display_name,
                status=status,
                last_updated=event.timestamp,
            )
        self._store(entity)

    def _on_entity_updated(self, event: EntityUpdated) -> None:
        entity = self._locate(event.entity_id, event.display_name)
        if entity is None:
            entity = Entity(
                id=event.entity_id,
                display_name=event.display_name,
                status=EntityStatus.JOINING,
                last_updated=event.timestamp,
            )
        changes: dict[str, Any] = {"last_updated": event.timestamp}
        if event.display_name:
            changes["display_name"] = event.display_name
        for name in ("rank", "is_group_member", "avatar_url", "friend_status",
                     "metrics", "is_age_verified"):
            value = getattr(event, name)
            if value is not None:
                changes[name] = value
        self._store(replace(entity, **changes))

    def _on_location(self, event: LocationChanged) -> None:
        group_id = group_from_location(event.location)
        if event.session_id == self._session.instance_id:
            self._session = replace(
                self._session,
                world_id=event.world_id or self._session.world_id,
                world_name=event.world_name or self._session.world_name,
                location=event.location or self._session.location,
                group_id=group_id or self._session.group_id,
            )
            return

        logger.info(
            "Instance changed %s → %s; resetting occupancy",
            self._session.instance_id, event.session_id,
        )
        self._reset()
        self._session = SessionContext(
            instance_id=event.session_id,
            world_id=event.world_id,
            world_name=event.world_name,
            location=event.location,
            group_id=group_id,
        )

    def _reset(self) -> None:
        self._entities.clear()
        self._by_name.clear()
        self._history.clear()

    def reset(self) -> None:
        """Explicit hard reset (entities, history and session)."""
        with self._lock:
            self._reset()
            self._session = SessionContext()
