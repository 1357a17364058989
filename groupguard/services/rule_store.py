"""
groupguard.services.rule_store — Rule CRUD & RuleSet snapshots
===============================================================

The store is the only writer of rules.  Every admin write follows the
same pattern:

  1. Open a transaction
  2. Read the "before" snapshot
  3. Apply the change
  4. Write ``admin_log`` with before/after
  5. Commit
  6. Rebuild and publish a fresh :class:`RuleSet`

Evaluations hold on to whichever :class:`RuleSet` they started with; a
publish swaps the pointer under a lock and never touches the old snapshot.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupguard.database.models import AdminLog, AutoModRule
from groupguard.engine.rules import (
    ActionType,
    Rule,
    RuleSet,
    RuleType,
    build_rule,
    parse_config,
    parse_priority,
)
from groupguard.services.settings_service import (
    RULE_PRIORITY_KEY,
    get_setting_value,
    upsert_setting,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: AutoModRule | None) -> dict | None:
    """Convert a rule row to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _encode_config(config: Any) -> str | None:
    if config is None:
        return None
    if isinstance(config, str):
        return config
    return json.dumps(config)


def rule_from_row(row: AutoModRule) -> Rule | None:
    return build_rule(
        row.id,
        row.name,
        row.rule_type,
        enabled=row.enabled,
        config=row.config_json,
        action_type=row.action_type,
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class RuleConfigStore:
    """SQLAlchemy-backed rule repository that publishes RuleSet snapshots."""

    def __init__(self, engine, default_priority: Iterable[str] | None = None) -> None:
        self._engine = engine
        self._default_priority = tuple(default_priority or ())
        self._lock = threading.Lock()
        # Serialises read + publish so revisions follow read order
        self._reload_lock = threading.Lock()
        self._ruleset = RuleSet(priority=parse_priority(self._default_priority))

    # -- snapshots -----------------------------------------------------------
    def snapshot(self) -> RuleSet:
        """The current immutable RuleSet."""
        with self._lock:
            return self._ruleset

    def reload(self) -> RuleSet:
        """Re-read every rule and the priority order, then publish."""
        with self._reload_lock:
            with Session(self._engine) as session:
                rows = session.scalars(select(AutoModRule).order_by(AutoModRule.id)).all()
                rules = tuple(r for r in (rule_from_row(row) for row in rows) if r is not None)
                stored_priority = get_setting_value(session, RULE_PRIORITY_KEY)

            priority = parse_priority(stored_priority or self._default_priority)
            with self._lock:
                self._ruleset = RuleSet(
                    rules=rules,
                    priority=priority,
                    revision=self._ruleset.revision + 1,
                )
                ruleset = self._ruleset

        broken = [r.id for r in rules if r.config_error]
        logger.info(
            "Published rule set r%d: %d rules (%d disabled by config errors)",
            ruleset.revision, len(rules), len(broken),
        )
        return ruleset

    # -- reads ---------------------------------------------------------------
    def list_rows(self) -> list[dict]:
        with Session(self._engine) as session:
            rows = session.scalars(select(AutoModRule).order_by(AutoModRule.id)).all()
            return [_row_to_dict(row) for row in rows]

    # -- writes --------------------------------------------------------------
    def upsert_rule(
        self,
        *,
        name: str,
        rule_type: str,
        config: Any = None,
        enabled: bool = True,
        action_type: str = "REJECT",
        rule_id: int | None = None,
        actor_id: str,
        ip_address: str | None = None,
    ) -> dict:
        """Create (``rule_id=None``) or update a rule and republish.

        Raises
        ------
        ConfigurationError
            The config does not parse for *rule_type*; nothing is written.
        LookupError
            *rule_id* was given but does not exist.
        ValueError
            *rule_type* or *action_type* is not a known value.
        """
        kind = RuleType(rule_type.upper())
        action = ActionType(action_type.upper())
        config_json = _encode_config(config)
        parse_config(kind, config_json, str(rule_id) if rule_id is not None else None)

        with Session(self._engine, expire_on_commit=False) as session:
            if rule_id is None:
                row = AutoModRule(name=name, rule_type=kind.value)
                session.add(row)
                before = None
                audit_action = "CREATE"
            else:
                row = session.get(AutoModRule, rule_id)
                if row is None:
                    raise LookupError(f"Rule {rule_id} not found")
                before = _row_to_dict(row)
                audit_action = "UPDATE"

            row.name = name
            row.rule_type = kind.value
            row.enabled = enabled
            row.action_type = action.value
            row.config_json = config_json
            session.flush()

            after = _row_to_dict(row)
            session.add(AdminLog(
                actor_id=actor_id,
                action_type=audit_action,
                target_table="automod_rules",
                target_id=str(row.id),
                before_snapshot=before,
                after_snapshot=after,
                ip_address=ip_address,
            ))
            session.commit()

        self.reload()
        return after

    def delete_rule(self, rule_id: int, *, actor_id: str, ip_address: str | None = None) -> bool:
        """Delete a rule.  Returns ``True`` if it existed."""
        with Session(self._engine) as session:
            row = session.get(AutoModRule, rule_id)
            if row is None:
                return False
            session.add(AdminLog(
                actor_id=actor_id,
                action_type="DELETE",
                target_table="automod_rules",
                target_id=str(row.id),
                before_snapshot=_row_to_dict(row),
                after_snapshot=None,
                ip_address=ip_address,
            ))
            session.delete(row)
            session.commit()

        self.reload()
        return True

    def set_priority(self, order: Iterable[str], *, actor_id: str) -> tuple[RuleType, ...]:
        """Store a new rule-type priority and republish."""
        priority = parse_priority(order)
        upsert_setting(
            self._engine,
            key=RULE_PRIORITY_KEY,
            value=[p.value for p in priority],
            category="rules",
            actor_id=actor_id,
        )
        self.reload()
        return priority
