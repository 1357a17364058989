"""
groupguard.services.snapshot_store — Tracker state persistence
===============================================================

Saves the tracker layout (history, current instance, world name and live
entities) under one settings key and restores it on startup.  Raw event
history and rules are not part of the snapshot.
"""

from __future__ import annotations

import logging

from groupguard.engine.occupancy import OccupancyTracker
from groupguard.services.settings_service import (
    OCCUPANCY_SNAPSHOT_KEY,
    read_setting,
    upsert_setting,
)

logger = logging.getLogger(__name__)


def save_tracker(engine, tracker: OccupancyTracker) -> None:
    state = tracker.to_state()
    upsert_setting(engine, key=OCCUPANCY_SNAPSHOT_KEY, value=state, category="occupancy")
    logger.info(
        "Saved occupancy snapshot: %d entities, %d samples",
        len(state["liveEntities"]), len(state["history"]),
    )


def load_tracker(engine, capacity: int) -> OccupancyTracker:
    """Restore a tracker, or start empty when nothing usable is stored."""
    state = read_setting(engine, OCCUPANCY_SNAPSHOT_KEY)
    if not isinstance(state, dict):
        return OccupancyTracker(capacity)
    try:
        tracker = OccupancyTracker.from_state(state, capacity)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Discarding unreadable occupancy snapshot: %s", exc)
        return OccupancyTracker(capacity)
    logger.info("Restored occupancy for instance %s", tracker.session.instance_id)
    return tracker
