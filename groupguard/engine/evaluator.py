"""
groupguard.engine.evaluator — Candidate → Decision
===================================================

The rule engine is pure: given a :class:`Candidate` and a :class:`RuleSet`
snapshot it returns one :class:`Decision` and touches nothing else.  The
interception log, the directory and any alerting are the caller's concern.

Rules are visited in :meth:`RuleSet.ordered` order.  Disabled rules and
rules whose config failed to parse are skipped; the first remaining rule
whose predicate fires owns the decision.  If none fires the candidate is
allowed.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from groupguard.constants import (
    AGE_VERIFIED_MARKER,
    UNKNOWN_RANK,
    trust_rank_from_tags,
    trust_rank_index,
)
from groupguard.engine.matching import find_keyword
from groupguard.engine.rules import (
    AgeVerificationConfig,
    BlacklistedGroupsConfig,
    KeywordBlockConfig,
    Rule,
    RuleSet,
    RuleType,
    TrustCheckConfig,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Candidate
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Candidate:
    """Read-only view of a prospective or existing member."""

    id: str
    display_name: str
    bio: str = ""
    status_description: str = ""
    pronouns: str = ""
    tags: tuple[str, ...] = ()
    age_verified: bool = False
    age_verification_status: str | None = None
    group_memberships: frozenset[str] | None = None

    @classmethod
    def from_profile(cls, profile: dict[str, Any]) -> Candidate:
        """Build a candidate from a directory profile payload."""
        memberships = _membership_ids(profile.get("groups", profile.get("groupIds")))
        return cls(
            id=str(profile.get("id") or profile.get("userId") or ""),
            display_name=str(profile.get("displayName") or ""),
            bio=profile.get("bio") or "",
            status_description=profile.get("statusDescription") or "",
            pronouns=profile.get("pronouns") or "",
            tags=tuple(profile.get("tags") or ()),
            age_verified=bool(profile.get("ageVerified", False)),
            age_verification_status=profile.get("ageVerificationStatus") or None,
            group_memberships=memberships,
        )

    def merged_with(self, profile: dict[str, Any]) -> Candidate:
        """Fill blanks in this candidate from a freshly fetched profile."""
        fresh = Candidate.from_profile({"id": self.id, **profile})
        return replace(
            self,
            display_name=self.display_name or fresh.display_name,
            bio=self.bio or fresh.bio,
            status_description=self.status_description or fresh.status_description,
            pronouns=self.pronouns or fresh.pronouns,
            tags=self.tags or fresh.tags,
            age_verified=self.age_verified or fresh.age_verified,
            age_verification_status=(
                self.age_verification_status or fresh.age_verification_status
            ),
            group_memberships=(
                self.group_memberships
                if self.group_memberships is not None
                else fresh.group_memberships
            ),
        )

    def with_memberships(self, group_ids: Iterable[str]) -> Candidate:
        return replace(self, group_memberships=frozenset(group_ids))

    @property
    def is_age_verified(self) -> bool:
        if self.age_verification_status is not None:
            return self.age_verification_status == AGE_VERIFIED_MARKER
        return self.age_verified


def _membership_ids(raw: Any) -> frozenset[str] | None:
    if raw is None:
        return None
    ids: set[str] = set()
    for item in raw:
        if isinstance(item, str):
            ids.add(item)
        elif isinstance(item, dict):
            gid = item.get("groupId") or item.get("id")
            if gid:
                ids.add(str(gid))
    return frozenset(ids)


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------
class DecisionAction(enum.StrEnum):
    ALLOW = "ALLOW"
    REJECT = "REJECT"


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of evaluating one candidate.  At most one rule owns it."""

    action: DecisionAction
    rule_id: str | None = None
    rule_name: str | None = None
    reason: str | None = None
    # Set when a directory lookup failed and evaluation used partial data
    incomplete: bool = False

    @classmethod
    def allow(cls) -> Decision:
        return cls(action=DecisionAction.ALLOW)

    @property
    def rejected(self) -> bool:
        return self.action == DecisionAction.REJECT

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "reason": self.reason,
            "incomplete": self.incomplete,
        }


# ---------------------------------------------------------------------------
# Predicates: each returns a Decision when the rule fires, else None
# ---------------------------------------------------------------------------
_KEYWORD_FIELDS = (
    ("displayName", "display_name", "scan_display_name"),
    ("bio", "bio", "scan_bio"),
    ("statusDescription", "status_description", "scan_status"),
    ("pronouns", "pronouns", "scan_pronouns"),
)


def _reject(rule: Rule, reason: str) -> Decision:
    return Decision(
        action=DecisionAction(rule.action_type.value),
        rule_id=rule.id,
        rule_name=rule.name,
        reason=reason,
    )


def _check_keywords(rule: Rule, cfg: KeywordBlockConfig, candidate: Candidate) -> Decision | None:
    if not cfg.keywords:
        return None
    fields = [
        (label, getattr(candidate, attr))
        for label, attr, flag in _KEYWORD_FIELDS
        if getattr(cfg, flag)
    ]
    # Keyword order decides the reason; field order only picks the label
    for keyword in cfg.keywords:
        for label, text in fields:
            if find_keyword(text, keyword, cfg.match_mode, cfg.whitelist):
                return _reject(rule, f'Keyword: "{keyword}" ({label})')
    return None


def _check_age(rule: Rule, cfg: AgeVerificationConfig, candidate: Candidate) -> Decision | None:
    status = candidate.age_verification_status
    if candidate.is_age_verified:
        if cfg.auto_accept_verified:
            return Decision(
                action=DecisionAction.ALLOW,
                rule_id=rule.id,
                rule_name=rule.name,
                reason="Age verified (auto-accept)",
            )
        return None
    if status is None:
        # Nothing known about the candidate's age: do not reject
        return None
    return _reject(rule, f"Age Verification Required (Found: {status})")


def _check_blacklist(
    rule: Rule, cfg: BlacklistedGroupsConfig, candidate: Candidate
) -> Decision | None:
    if candidate.group_memberships is None or not cfg.group_ids:
        return None
    hits = sorted(candidate.group_memberships & cfg.group_ids)
    if not hits:
        return None
    group_id = hits[0]
    name = cfg.group_names.get(group_id)
    label = f"{name} ({group_id})" if name else group_id
    return _reject(rule, f"Member of blacklisted group: {label}")


def _check_trust(rule: Rule, cfg: TrustCheckConfig, candidate: Candidate) -> Decision | None:
    rank = trust_rank_from_tags(candidate.tags)
    if rank == UNKNOWN_RANK:
        return None if cfg.allow_unknown else _reject(rule, "Trust rank unknown")
    if trust_rank_index(rank) < trust_rank_index(cfg.min_rank):
        return _reject(rule, f"Trust rank {rank} is below {cfg.min_rank}")
    return None


_PREDICATES = {
    RuleType.KEYWORD_BLOCK: _check_keywords,
    RuleType.AGE_VERIFICATION: _check_age,
    RuleType.BLACKLISTED_GROUPS: _check_blacklist,
    RuleType.TRUST_CHECK: _check_trust,
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class RuleEngine:
    """Stateless evaluator.  Safe to share between threads and tasks."""

    def evaluate(self, candidate: Candidate, ruleset: RuleSet) -> Decision:
        for rule in ruleset.ordered():
            if not rule.active:
                continue
            predicate = _PREDICATES.get(rule.type)
            if predicate is None:
                continue
            decision = predicate(rule, rule.config, candidate)
            if decision is not None:
                logger.debug(
                    "%s → %s by rule %s (%s)",
                    candidate.id, decision.action, rule.id, decision.reason,
                )
                return decision
        return Decision.allow()


_default_engine = RuleEngine()


def evaluate(candidate: Candidate, ruleset: RuleSet) -> Decision:
    """Module-level shortcut for :meth:`RuleEngine.evaluate`."""
    return _default_engine.evaluate(candidate, ruleset)
