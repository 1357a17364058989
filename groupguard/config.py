"""
groupguard.config — YAML Configuration Loader
==============================================

This module reads ``config.yaml`` for **infrastructure and tuning**
settings (buffer capacities, directory endpoint, scan pacing).  Secrets
(``DATABASE_URL``, ``JWT_SECRET``, ``DIRECTORY_API_TOKEN``,
``ALERT_WEBHOOK_URL``) stay in the environment / ``.env`` file.

Moderation rules themselves are *not* configured here; they live in the
``automod_rules`` table and are edited through the admin API.

Usage::

    from groupguard.config import load_config

    cfg = load_config()                    # reads ./config.yaml by default
    print(cfg.interception_log_capacity)   # 50
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from groupguard.constants import DEFAULT_HISTORY_CAPACITY, DEFAULT_INTERCEPTION_CAPACITY

DEFAULT_RULE_PRIORITY: tuple[str, ...] = (
    "BLACKLISTED_GROUPS",
    "AGE_VERIFICATION",
    "TRUST_CHECK",
    "KEYWORD_BLOCK",
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GroupGuardConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str = "GroupGuard"

    # Buffers
    interception_log_capacity: int = DEFAULT_INTERCEPTION_CAPACITY
    history_capacity: int = DEFAULT_HISTORY_CAPACITY

    # Rule evaluation order (first match wins)
    rule_priority: tuple[str, ...] = DEFAULT_RULE_PRIORITY

    # Remote directory
    directory_base_url: str | None = None
    directory_timeout_seconds: float = 10.0

    # Retroactive scans
    scan_delay_seconds: float = 0.5
    scan_page_size: int = 100

    # Gatekeeper: respond to join requests automatically
    auto_process: bool = False

    # API
    api_port: int = 8000


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> GroupGuardConfig:
    """Read *path* and return a :class:`GroupGuardConfig` instance.

    Every key is optional; missing keys keep their dataclass default.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a capacity is not a positive integer.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return config_from_dict(raw)


def config_from_dict(raw: dict) -> GroupGuardConfig:
    """Build a :class:`GroupGuardConfig` from an already-parsed mapping."""
    defaults = GroupGuardConfig()

    log_capacity = int(raw.get("interception_log_capacity", defaults.interception_log_capacity))
    history_capacity = int(raw.get("history_capacity", defaults.history_capacity))
    if log_capacity < 1 or history_capacity < 1:
        raise ValueError("interception_log_capacity and history_capacity must be >= 1")

    priority = raw.get("rule_priority")
    return GroupGuardConfig(
        community_name=raw.get("community_name", defaults.community_name),
        interception_log_capacity=log_capacity,
        history_capacity=history_capacity,
        rule_priority=(
            tuple(str(p).upper() for p in priority) if priority else defaults.rule_priority
        ),
        directory_base_url=raw.get("directory_base_url") or None,
        directory_timeout_seconds=float(
            raw.get("directory_timeout_seconds", defaults.directory_timeout_seconds)
        ),
        scan_delay_seconds=float(raw.get("scan_delay_seconds", defaults.scan_delay_seconds)),
        scan_page_size=int(raw.get("scan_page_size", defaults.scan_page_size)),
        auto_process=bool(raw.get("auto_process", defaults.auto_process)),
        api_port=int(raw.get("api_port", defaults.api_port)),
    )
