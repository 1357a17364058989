"""
groupguard.engine.session — Current session context
====================================================
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_GROUP_RE = re.compile(r"~group\((grp_[^)]+)\)")


def group_from_location(location: str | None) -> str | None:
    """Extract the owning group id from a location string, if any."""
    if not location:
        return None
    match = _GROUP_RE.search(location)
    return match.group(1) if match else None


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Which instance we are in, what world it is, and which group owns it."""

    instance_id: str | None = None
    world_id: str | None = None
    world_name: str | None = None
    location: str | None = None
    group_id: str | None = None

    @property
    def active(self) -> bool:
        return self.instance_id is not None

    def to_dict(self) -> dict:
        return {
            "instanceId": self.instance_id,
            "worldId": self.world_id,
            "worldName": self.world_name,
            "location": self.location,
            "groupId": self.group_id,
        }
