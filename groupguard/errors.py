"""
groupguard.errors — Exception types shared across engines and services
=======================================================================

None of these are fatal.  Each is raised at a boundary and caught by the
caller one level up, which degrades locally (disables a rule, evaluates with
partial data) and keeps going.
"""

from __future__ import annotations


class GroupGuardError(Exception):
    """Base class for all GroupGuard errors."""


class ConfigurationError(GroupGuardError):
    """A stored rule payload could not be parsed into a typed config."""

    def __init__(self, rule_id: str | None, message: str) -> None:
        super().__init__(f"rule {rule_id}: {message}" if rule_id else message)
        self.rule_id = rule_id


class UpstreamFetchError(GroupGuardError):
    """A directory lookup failed, timed out, or returned an unusable body."""

    def __init__(self, resource: str, message: str) -> None:
        super().__init__(f"{resource}: {message}")
        self.resource = resource
