"""
groupguard.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- automod_rules     — Configured moderation rules (config kept as an opaque JSON blob)
- interception_log  — Long-term archive of REJECT decisions
- admin_log         — Append-only audit trail of admin mutations
- settings          — Key-value JSON store (rule priority, tracker snapshot)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all GroupGuard ORM models."""


# ---------------------------------------------------------------------------
# AutoModRule — one configured rule
# ---------------------------------------------------------------------------
class AutoModRule(Base):
    __tablename__ = "automod_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False, default="REJECT")
    # Raw JSON text; parsed into a typed config by groupguard.engine.rules
    config_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<AutoModRule id={self.id} type={self.rule_type} enabled={self.enabled}>"


# ---------------------------------------------------------------------------
# InterceptionRecord — archived interception log entry
# ---------------------------------------------------------------------------
class InterceptionRecord(Base):
    __tablename__ = "interception_log"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    session_group_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    rule_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rule_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    incomplete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_interception_subject_time", "subject_id", "timestamp"),
        Index("ix_interception_group_time", "session_group_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<InterceptionRecord id={self.id} subject={self.subject_id} action={self.action}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting — key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value store.  Values are JSON strings.

    Known keys: ``rules.priority`` (list of rule types) and
    ``occupancy.snapshot`` (the persisted tracker layout).
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key}>"
