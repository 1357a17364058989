"""
groupguard.services.audit_service — Long-term interception archive
===================================================================

The hot interception log only keeps the newest entries.  This sink copies
every entry into the ``interception_log`` table so older decisions remain
queryable after they are evicted or dismissed from the hot log.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupguard.database.engine import get_session
from groupguard.database.models import InterceptionRecord
from groupguard.services.interception_log import InterceptionLogEntry

logger = logging.getLogger(__name__)


class InterceptionArchive:
    """Callable sink for :class:`InterceptionLog`."""

    def __init__(self, engine) -> None:
        self._engine = engine

    def __call__(self, entry: InterceptionLogEntry) -> None:
        decision = entry.decision
        with get_session(self._engine) as session:
            session.add(InterceptionRecord(
                id=entry.id,
                timestamp=entry.timestamp,
                subject_id=entry.subject_id,
                subject_display_name=entry.subject_display_name,
                session_group_id=entry.session_group_id,
                action=decision.action.value,
                rule_id=decision.rule_id,
                rule_name=decision.rule_name,
                reason=decision.reason,
                incomplete=decision.incomplete,
            ))

    def history(self, subject_id: str | None = None, limit: int = 100) -> list[dict]:
        """Archived entries, newest first, optionally for one subject."""
        stmt = select(InterceptionRecord).order_by(InterceptionRecord.timestamp.desc())
        if subject_id:
            stmt = stmt.where(InterceptionRecord.subject_id == subject_id)
        with Session(self._engine) as session:
            rows = session.scalars(stmt.limit(limit)).all()
            return [
                {
                    "id": r.id,
                    "timestamp": r.timestamp.isoformat(),
                    "subjectId": r.subject_id,
                    "subjectDisplayName": r.subject_display_name,
                    "sessionGroupId": r.session_group_id,
                    "action": r.action,
                    "ruleId": r.rule_id,
                    "ruleName": r.rule_name,
                    "reason": r.reason,
                    "incomplete": r.incomplete,
                }
                for r in rows
            ]
