"""
tests/test_rule_store.py — Rule Store Tests
============================================

Audited CRUD against SQLite, snapshot publication and degradation of
malformed stored rules.
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from groupguard.database.models import AdminLog, AutoModRule
from groupguard.engine.rules import RuleType
from groupguard.errors import ConfigurationError
from groupguard.services import rule_store
from groupguard.services.rule_store import RuleConfigStore


@pytest.fixture
def store(db_engine):
    s = RuleConfigStore(db_engine)
    s.reload()
    return s


def _admin_rows(engine) -> list[AdminLog]:
    with Session(engine) as session:
        return list(session.scalars(select(AdminLog).order_by(AdminLog.id)).all())


class TestWrites:
    def test_create_publishes_new_snapshot(self, store, db_engine):
        before = store.snapshot()
        row = store.upsert_rule(
            name="Words", rule_type="KEYWORD_BLOCK", config={"keywords": ["bad"]}, actor_id="42"
        )
        after = store.snapshot()

        assert after.revision == before.revision + 1
        assert before.rules == ()
        assert [r.id for r in after.rules] == [str(row["id"])]
        assert after.rules[0].config.keywords == ("bad",)

    def test_create_writes_audit_row(self, store, db_engine):
        store.upsert_rule(name="Words", rule_type="KEYWORD_BLOCK", config=["bad"], actor_id="42")
        rows = _admin_rows(db_engine)
        assert len(rows) == 1
        assert rows[0].action_type == "CREATE"
        assert rows[0].target_table == "automod_rules"
        assert rows[0].actor_id == "42"
        assert rows[0].before_snapshot is None

    def test_update_records_before_and_after(self, store, db_engine):
        row = store.upsert_rule(name="Words", rule_type="KEYWORD_BLOCK", config=["a"], actor_id="1")
        store.upsert_rule(
            rule_id=row["id"], name="Words v2", rule_type="KEYWORD_BLOCK", config=["b"], actor_id="1"
        )
        update = _admin_rows(db_engine)[-1]
        assert update.action_type == "UPDATE"
        assert update.before_snapshot["name"] == "Words"
        assert update.after_snapshot["name"] == "Words v2"
        assert store.snapshot().rules[0].config.keywords == ("b",)

    def test_update_unknown_rule(self, store):
        with pytest.raises(LookupError):
            store.upsert_rule(rule_id=999, name="x", rule_type="KEYWORD_BLOCK", actor_id="1")

    def test_invalid_config_writes_nothing(self, store, db_engine):
        with pytest.raises(ConfigurationError):
            store.upsert_rule(
                name="Bad", rule_type="TRUST_CHECK", config={"minRank": "Wizard"}, actor_id="1"
            )
        assert store.list_rows() == []
        assert _admin_rows(db_engine) == []

    def test_delete(self, store, db_engine):
        row = store.upsert_rule(name="Age", rule_type="AGE_VERIFICATION", config={}, actor_id="1")
        assert store.delete_rule(row["id"], actor_id="1")
        assert store.snapshot().rules == ()
        assert _admin_rows(db_engine)[-1].action_type == "DELETE"
        assert not store.delete_rule(row["id"], actor_id="1")

    def test_old_snapshot_is_untouched_by_writes(self, store):
        store.upsert_rule(name="A", rule_type="KEYWORD_BLOCK", config=["a"], actor_id="1")
        held = store.snapshot()
        store.upsert_rule(name="B", rule_type="KEYWORD_BLOCK", config=["b"], actor_id="1")
        assert len(held.rules) == 1
        assert len(store.snapshot().rules) == 2


class TestDegradation:
    def test_malformed_row_disabled_others_active(self, store, db_engine):
        with Session(db_engine) as session:
            session.add(AutoModRule(name="Corrupt", rule_type="AGE_VERIFICATION", config_json="{oops"))
            session.add(AutoModRule(name="Fine", rule_type="KEYWORD_BLOCK", config_json='["x"]'))
            session.add(AutoModRule(name="Alien", rule_type="SOMETHING_ELSE", config_json="{}"))
            session.commit()

        ruleset = store.reload()
        by_name = {r.name: r for r in ruleset.rules}
        assert set(by_name) == {"Corrupt", "Fine"}
        assert not by_name["Corrupt"].active
        assert by_name["Corrupt"].config_error
        assert by_name["Fine"].active


class TestPriority:
    def test_set_priority_persists(self, store, db_engine):
        store.set_priority(["KEYWORD_BLOCK"], actor_id="1")
        assert store.snapshot().priority[0] == RuleType.KEYWORD_BLOCK

        fresh = RuleConfigStore(db_engine)
        assert fresh.reload().priority[0] == RuleType.KEYWORD_BLOCK
        assert _admin_rows(db_engine)[-1].target_table == "settings"

    def test_configured_default_priority(self, db_engine):
        store = RuleConfigStore(db_engine, default_priority=("AGE_VERIFICATION",))
        assert store.reload().priority[0] == RuleType.AGE_VERIFICATION


class TestConcurrentReload:
    def test_reload_waiting_on_another_publishes_latest_rows(self, store, db_engine):
        start = store.snapshot().revision
        real_read = rule_store.get_setting_value
        first_read_done = threading.Event()
        release = threading.Event()
        calls = []

        def slow_read(session, key):
            calls.append(key)
            if len(calls) == 1:
                first_read_done.set()
                release.wait(timeout=5)
            return real_read(session, key)

        with patch("groupguard.services.rule_store.get_setting_value", side_effect=slow_read):
            first = threading.Thread(target=store.reload)
            first.start()
            assert first_read_done.wait(timeout=5)

            # Written after the first reload has already read its rows
            with Session(db_engine) as session:
                session.add(AutoModRule(name="Late", rule_type="KEYWORD_BLOCK", config_json='["x"]'))
                session.commit()

            second = threading.Thread(target=store.reload)
            second.start()
            second.join(timeout=0.2)
            assert second.is_alive()

            release.set()
            first.join(timeout=5)
            second.join(timeout=5)

        final = store.snapshot()
        assert final.revision == start + 2
        assert [r.name for r in final.rules] == ["Late"]
