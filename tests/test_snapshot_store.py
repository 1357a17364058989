"""
tests/test_snapshot_store.py — Tracker Persistence Tests
=========================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from groupguard.engine.events import EntityUpdated, Joined, LocationChanged
from groupguard.engine.occupancy import OccupancyTracker
from groupguard.services.settings_service import OCCUPANCY_SNAPSHOT_KEY, upsert_setting
from groupguard.services.snapshot_store import load_tracker, save_tracker

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class TestSnapshotStore:
    def test_round_trip(self, db_engine):
        tracker = OccupancyTracker()
        tracker.apply(LocationChanged(
            "wrld_1:123~group(grp_home)", world_name="Lobby",
            location="wrld_1:123~group(grp_home)", timestamp=T0,
        ))
        tracker.apply(Joined("Alice", "usr_a", T0))
        tracker.apply(Joined("Bob", timestamp=T0 + timedelta(seconds=2)))
        tracker.apply(EntityUpdated("usr_a", "Alice", rank="Known", timestamp=T0 + timedelta(seconds=3)))
        save_tracker(db_engine, tracker)

        restored = load_tracker(db_engine, capacity=100)
        before = tracker.get_current_occupancy()
        after = restored.get_current_occupancy()
        assert after.session.instance_id == before.session.instance_id
        assert after.session.group_id == "grp_home"
        assert after.session.world_name == "Lobby"
        assert after.history == before.history
        assert {e.id for e in after.entities} == {"usr_a", "log:Bob"}
        assert after.get("usr_a").rank == "Known"

    def test_missing_snapshot_gives_empty_tracker(self, db_engine):
        tracker = load_tracker(db_engine, capacity=10)
        assert tracker.get_current_occupancy().entities == ()
        assert not tracker.session.active

    def test_unreadable_snapshot_discarded(self, db_engine):
        upsert_setting(db_engine, key=OCCUPANCY_SNAPSHOT_KEY, value={"liveEntities": [{"name": "x"}]})
        tracker = load_tracker(db_engine, capacity=10)
        assert tracker.get_current_occupancy().entities == ()

    def test_restored_history_respects_capacity(self, db_engine):
        tracker = OccupancyTracker()
        for i in range(5):
            tracker.apply(Joined(f"P{i}", f"usr_{i}", T0 + timedelta(seconds=i)))
        save_tracker(db_engine, tracker)
        restored = load_tracker(db_engine, capacity=3)
        counts = [s.active_count for s in restored.get_current_occupancy().history]
        assert counts == [3, 4, 5]
