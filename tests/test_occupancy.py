"""
tests/test_occupancy.py — Occupancy Tracker Tests
==================================================

Identity reconciliation, session boundaries, history sampling, observers
and the persisted state layout.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

from groupguard.engine.events import (
    EntityUpdated,
    GroupChanged,
    Joined,
    Kicked,
    Left,
    LocationChanged,
    SessionEnded,
)
from groupguard.engine.history import OccupancyHistory
from groupguard.engine.occupancy import EntityStatus, OccupancyTracker

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class TestIdentity:
    def test_synthetic_then_stable_id_is_one_entity(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="Bob", timestamp=at(0)))
        tracker.apply(EntityUpdated(entity_id="u_1", display_name="Bob", rank="User", timestamp=at(1)))
        snapshot = tracker.apply(Left(display_name="Bob", timestamp=at(2)))

        assert len(snapshot.entities) == 1
        entity = snapshot.entities[0]
        assert entity.id == "u_1"
        assert entity.status == EntityStatus.LEFT
        assert entity.rank == "User"

    def test_synthetic_key_used_until_id_known(self):
        tracker = OccupancyTracker()
        snapshot = tracker.apply(Joined(display_name="Bob", timestamp=at(0)))
        assert snapshot.entities[0].id == "log:Bob"
        assert snapshot.entities[0].is_synthetic
        assert snapshot.entities[0].rank == "Loading..."

    def test_joined_with_id_after_synthetic_is_merged(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="Bob", timestamp=at(0)))
        snapshot = tracker.apply(Joined(display_name="Bob", subject_id="u_1", timestamp=at(1)))
        assert [e.id for e in snapshot.entities] == ["u_1"]

    def test_merge_identity_folds_into_existing(self):
        tracker = OccupancyTracker()
        tracker.apply(EntityUpdated(entity_id="u_1", display_name="Bob", rank="Known", timestamp=at(0)))
        tracker.apply(Joined(display_name="Robert", timestamp=at(5)))

        assert tracker.merge_identity("log:Robert", "u_1")
        entities = tracker.get_current_occupancy().entities
        assert len(entities) == 1
        assert entities[0].id == "u_1"
        assert entities[0].rank == "Known"
        assert entities[0].status == EntityStatus.ACTIVE
        assert entities[0].display_name == "Robert"

    def test_merge_identity_unknown_key(self):
        assert not OccupancyTracker().merge_identity("log:Nobody", "u_1")

    def test_renamed_occupant_placeholder_folded_into_known_id(self):
        tracker = OccupancyTracker()
        tracker.apply(EntityUpdated(entity_id="u_1", display_name="OldName", timestamp=at(0)))
        tracker.apply(Joined(display_name="NewName", timestamp=at(1)))
        snapshot = tracker.apply(EntityUpdated(entity_id="u_1", display_name="NewName", rank="User", timestamp=at(2)))

        assert [e.id for e in snapshot.entities] == ["u_1"]
        entity = snapshot.entities[0]
        assert entity.display_name == "NewName"
        assert entity.status == EntityStatus.ACTIVE
        assert entity.rank == "User"

        snapshot = tracker.apply(Left(display_name="NewName", timestamp=at(3)))
        assert snapshot.active_count == 0
        assert len(snapshot.entities) == 1

    def test_same_name_different_stable_ids_are_two_people(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="Sam", subject_id="u_1", timestamp=at(0)))
        snapshot = tracker.apply(Joined(display_name="Sam", subject_id="u_2", timestamp=at(1)))
        assert {e.id for e in snapshot.entities} == {"u_1", "u_2"}


class TestLifecycle:
    def test_left_for_unseen_entity_creates_placeholder(self, caplog):
        tracker = OccupancyTracker()
        with caplog.at_level(logging.WARNING):
            snapshot = tracker.apply(Left(display_name="Ghost", timestamp=at(0)))
        assert snapshot.entities[0].status == EntityStatus.LEFT
        assert snapshot.entities[0].id == "log:Ghost"
        assert "unseen occupant" in caplog.text

    def test_kicked(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="Eve", subject_id="u_9", timestamp=at(0)))
        snapshot = tracker.apply(Kicked(display_name="Eve", subject_id="u_9", timestamp=at(1)))
        assert snapshot.get("u_9").status == EntityStatus.KICKED
        assert snapshot.active_count == 0

    def test_entity_updated_for_unknown_creates_joining(self):
        tracker = OccupancyTracker()
        snapshot = tracker.apply(
            EntityUpdated(entity_id="u_3", display_name="Cat", is_group_member=True, timestamp=at(0))
        )
        entity = snapshot.get("u_3")
        assert entity.status == EntityStatus.JOINING
        assert entity.is_group_member is True
        assert snapshot.active_count == 0

    def test_entity_updated_keeps_fields_not_supplied(self):
        tracker = OccupancyTracker()
        tracker.apply(EntityUpdated(entity_id="u_3", display_name="Cat", rank="Trusted", timestamp=at(0)))
        snapshot = tracker.apply(
            EntityUpdated(entity_id="u_3", display_name="Cat", avatar_url="http://a", timestamp=at(1))
        )
        assert snapshot.get("u_3").rank == "Trusted"
        assert snapshot.get("u_3").avatar_url == "http://a"

    def test_rejoin_after_left_is_active(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="Bob", subject_id="u_1", timestamp=at(0)))
        tracker.apply(Left(display_name="Bob", subject_id="u_1", timestamp=at(1)))
        snapshot = tracker.apply(Joined(display_name="Bob", subject_id="u_1", timestamp=at(2)))
        assert snapshot.get("u_1").status == EntityStatus.ACTIVE
        assert len(snapshot.entities) == 1


class TestSessionBoundaries:
    def _populated(self) -> OccupancyTracker:
        tracker = OccupancyTracker()
        tracker.apply(LocationChanged(session_id="A", world_id="wrld_1", timestamp=at(0)))
        tracker.apply(Joined(display_name="Bob", subject_id="u_1", timestamp=at(1)))
        tracker.apply(Joined(display_name="Amy", subject_id="u_2", timestamp=at(2)))
        return tracker

    def test_same_instance_is_idempotent(self):
        tracker = self._populated()
        before = tracker.get_current_occupancy()
        after = tracker.apply(
            LocationChanged(session_id="A", world_id="wrld_1", world_name="Plaza", timestamp=at(3))
        )
        assert after.entities == before.entities
        assert after.history == before.history
        assert after.session.world_name == "Plaza"

    def test_new_instance_resets_entities_and_history(self):
        tracker = self._populated()
        snapshot = tracker.apply(LocationChanged(session_id="B", world_id="wrld_2", timestamp=at(3)))
        assert snapshot.entities == ()
        assert snapshot.history == ()
        assert snapshot.session.instance_id == "B"

    def test_session_ended_clears_everything(self):
        tracker = self._populated()
        tracker.apply(GroupChanged(group_id="grp_1"))
        snapshot = tracker.apply(SessionEnded(timestamp=at(4)))
        assert snapshot.entities == ()
        assert snapshot.history == ()
        assert snapshot.session.instance_id is None
        assert snapshot.session.group_id is None

    def test_group_parsed_from_location(self):
        tracker = OccupancyTracker()
        snapshot = tracker.apply(LocationChanged(
            session_id="wrld_1:123~group(grp_abc)~groupAccessType(members)",
            location="wrld_1:123~group(grp_abc)~groupAccessType(members)",
        ))
        assert snapshot.session.group_id == "grp_abc"

    def test_group_changed(self):
        tracker = OccupancyTracker()
        assert tracker.apply(GroupChanged(group_id="grp_q")).session.group_id == "grp_q"


class TestHistory:
    def test_burst_in_same_second_coalesces(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="A", timestamp=at(0.1)))
        snapshot = tracker.apply(Joined(display_name="B", timestamp=at(0.7)))
        assert len(snapshot.history) == 1
        assert snapshot.history[0].active_count == 2

    def test_new_second_appends(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="A", timestamp=at(0)))
        snapshot = tracker.apply(Left(display_name="A", timestamp=at(1)))
        assert [s.active_count for s in snapshot.history] == [1, 0]

    def test_earlier_second_replaces_last(self):
        history = OccupancyHistory(10)
        history.record(at(5), 3)
        history.record(at(2), 7)
        samples = history.samples()
        assert len(samples) == 1
        assert samples[0].active_count == 7
        assert samples[0].timestamp == at(5)

    def test_never_exceeds_capacity(self):
        tracker = OccupancyTracker(capacity=5)
        for i in range(50):
            tracker.apply(Joined(display_name=f"p{i}", timestamp=at(i)))
        history = tracker.get_current_occupancy().history
        assert len(history) == 5
        assert history[0].timestamp == at(45)
        assert history[-1].active_count == 50

    def test_location_events_do_not_sample(self):
        tracker = OccupancyTracker()
        snapshot = tracker.apply(LocationChanged(session_id="A", timestamp=at(0)))
        assert snapshot.history == ()


class TestObservers:
    def test_observer_receives_event_and_snapshot(self):
        tracker = OccupancyTracker()
        observer = MagicMock()
        tracker.on_occupancy_changed(observer)
        event = Joined(display_name="Bob", timestamp=at(0))
        tracker.apply(event)
        observer.assert_called_once()
        got_event, snapshot = observer.call_args.args
        assert got_event is event
        assert snapshot.active_count == 1

    def test_unsubscribe(self):
        tracker = OccupancyTracker()
        observer = MagicMock()
        unsubscribe = tracker.on_occupancy_changed(observer)
        unsubscribe()
        tracker.apply(Joined(display_name="Bob", timestamp=at(0)))
        observer.assert_not_called()

    def test_failing_observer_is_contained(self, caplog):
        tracker = OccupancyTracker()
        tracker.on_occupancy_changed(MagicMock(side_effect=RuntimeError("boom")))
        healthy = MagicMock()
        tracker.on_occupancy_changed(healthy)
        with caplog.at_level(logging.ERROR):
            snapshot = tracker.apply(Joined(display_name="Bob", timestamp=at(0)))
        assert snapshot.active_count == 1
        healthy.assert_called_once()
        assert "observer" in caplog.text


class TestPersistedState:
    def test_layout_keys(self):
        state = OccupancyTracker().to_state()
        for key in ("history", "currentInstanceId", "currentWorldName", "liveEntities"):
            assert key in state

    def test_round_trip_restores_entities_and_session(self):
        tracker = OccupancyTracker()
        tracker.apply(LocationChanged(session_id="A", world_name="Plaza", timestamp=at(0)))
        tracker.apply(Joined(display_name="Bob", subject_id="u_1", timestamp=at(1)))
        tracker.apply(Joined(display_name="Amy", timestamp=at(2)))

        restored = OccupancyTracker.from_state(tracker.to_state())
        snapshot = restored.get_current_occupancy()
        assert snapshot.session.instance_id == "A"
        assert snapshot.session.world_name == "Plaza"
        assert {e.id for e in snapshot.entities} == {"u_1", "log:Amy"}
        assert [s.active_count for s in snapshot.history] == [1, 2]

    def test_restored_name_index_still_reconciles(self):
        tracker = OccupancyTracker()
        tracker.apply(Joined(display_name="Amy", timestamp=at(0)))
        restored = OccupancyTracker.from_state(tracker.to_state())
        snapshot = restored.apply(EntityUpdated(entity_id="u_7", display_name="Amy", timestamp=at(1)))
        assert [e.id for e in snapshot.entities] == ["u_7"]
        assert snapshot.entities[0].status == EntityStatus.ACTIVE

    def test_from_empty_state(self):
        snapshot = OccupancyTracker.from_state(None).get_current_occupancy()
        assert snapshot.entities == ()
        assert not snapshot.session.active
