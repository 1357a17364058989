"""
groupguard.services.settings_service — Key-value settings
==========================================================

Typed read/write access to the ``settings`` table.  Values are stored as
JSON text.  Writes made on behalf of an admin are recorded in
``admin_log`` with before/after snapshots.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from groupguard.database.models import AdminLog, Setting

logger = logging.getLogger(__name__)

RULE_PRIORITY_KEY = "rules.priority"
OCCUPANCY_SNAPSHOT_KEY = "occupancy.snapshot"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns *default* when the key does not exist or holds invalid JSON.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Setting %s holds invalid JSON; using default", key)
        return default


def read_setting(engine, key: str, default=None):
    with Session(engine) as session:
        return get_setting_value(session, key, default)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def upsert_setting(
    engine,
    *,
    key: str,
    value: Any,
    category: str = "general",
    actor_id: str | None = None,
) -> None:
    """Insert or update one setting; audited when *actor_id* is given."""
    value_json = json.dumps(value)
    with Session(engine) as session:
        existing = session.get(Setting, key)
        before = None
        if existing is not None:
            before = {"key": key, "value": get_setting_value(session, key)}
            existing.value_json = value_json
            existing.category = category
        else:
            session.add(Setting(key=key, value_json=value_json, category=category))

        if actor_id is not None:
            after = {"key": key, "value": value}
            if before != after:
                session.add(AdminLog(
                    actor_id=actor_id,
                    action_type="UPDATE" if before else "CREATE",
                    target_table="settings",
                    target_id=key,
                    before_snapshot=before,
                    after_snapshot=after,
                ))
        session.commit()
