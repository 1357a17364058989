"""
groupguard.engine.events — Presence event variants
===================================================

Everything the occupancy tracker reacts to is one of the frozen dataclasses
below.  The log watcher (an external collaborator) publishes JSON objects
with a ``type`` discriminator; :func:`event_from_dict` turns those into
typed events and rejects anything it does not recognise.

Timestamps are timezone-aware UTC ``datetime`` objects.  Wire payloads may
carry ISO-8601 strings or epoch seconds/milliseconds; a missing timestamp
means "now".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Union


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Coerce an ISO string, epoch number or datetime into aware UTC."""
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        # Millisecond epochs are what the watcher emits; seconds also accepted
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValueError(f"Unsupported timestamp: {value!r}")


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Joined:
    display_name: str
    subject_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class Left:
    display_name: str
    subject_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class Kicked:
    display_name: str
    subject_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class LocationChanged:
    session_id: str
    world_id: str | None = None
    world_name: str | None = None
    location: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class EntityUpdated:
    """Enrichment for one entity.  ``None`` fields leave the entity as is."""

    entity_id: str
    display_name: str
    rank: str | None = None
    is_group_member: bool | None = None
    avatar_url: str | None = None
    friend_status: str | None = None
    metrics: dict[str, Any] | None = None
    is_age_verified: bool | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class GroupChanged:
    group_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class SessionEnded:
    timestamp: datetime = field(default_factory=utcnow)


PresenceEvent = Union[
    Joined, Left, Kicked, LocationChanged, EntityUpdated, GroupChanged, SessionEnded
]

ENTITY_EVENTS = (Joined, Left, Kicked, EntityUpdated)


# ---------------------------------------------------------------------------
# Wire parsing
# ---------------------------------------------------------------------------
def _required(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{key}' is required for {data.get('type')!r} events")
    return value


def event_from_dict(data: dict[str, Any]) -> PresenceEvent:
    """Parse one watcher payload.

    Raises
    ------
    ValueError
        Unknown ``type`` or a required field missing.
    """
    kind = data.get("type")
    ts = parse_timestamp(data.get("timestamp"))

    if kind in ("player-joined", "player-left", "player-kicked"):
        cls = {"player-joined": Joined, "player-left": Left, "player-kicked": Kicked}[kind]
        return cls(
            display_name=_required(data, "displayName"),
            subject_id=data.get("userId") or None,
            timestamp=ts,
        )
    if kind == "location":
        location = data.get("location") or None
        session_id = data.get("instanceId") or location
        if not session_id:
            raise ValueError("'instanceId' or 'location' is required for location events")
        return LocationChanged(
            session_id=session_id,
            world_id=data.get("worldId") or None,
            world_name=data.get("worldName") or None,
            location=location,
            timestamp=ts,
        )
    if kind == "entity-updated":
        metrics = data.get("metrics")
        return EntityUpdated(
            entity_id=_required(data, "id"),
            display_name=data.get("displayName") or "",
            rank=data.get("rank"),
            is_group_member=data.get("isGroupMember"),
            avatar_url=data.get("avatarUrl"),
            friend_status=data.get("friendStatus"),
            metrics=dict(metrics) if isinstance(metrics, dict) else None,
            is_age_verified=data.get("isAgeVerified"),
            timestamp=ts,
        )
    if kind == "group-changed":
        return GroupChanged(group_id=data.get("groupId") or None, timestamp=ts)
    if kind == "game-closed":
        return SessionEnded(timestamp=ts)
    raise ValueError(f"Unknown presence event type: {kind!r}")
