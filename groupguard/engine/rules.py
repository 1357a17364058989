"""
groupguard.engine.rules — Rule / RuleSet tagged union
======================================================

Each rule type carries its own strongly typed, frozen pydantic config.
Stored payloads are opaque JSON blobs, so they are parsed here, at the
configuration boundary, and never trusted further in.

A payload that cannot be parsed raises :class:`ConfigurationError` inside
:func:`parse_config`; :func:`build_rule` catches it and hands back the rule
*disabled*, so a single corrupt rule never blocks the rest of the set.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from groupguard.config import DEFAULT_RULE_PRIORITY
from groupguard.constants import TRUST_RANKS, TRUST_TAGS
from groupguard.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "ActionType",
    "AgeVerificationConfig",
    "BlacklistedGroupsConfig",
    "KeywordBlockConfig",
    "MatchMode",
    "Rule",
    "RuleConfig",
    "RuleSet",
    "RuleType",
    "TrustCheckConfig",
    "build_rule",
    "config_to_payload",
    "parse_config",
    "parse_priority",
]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class RuleType(enum.StrEnum):
    KEYWORD_BLOCK = "KEYWORD_BLOCK"
    AGE_VERIFICATION = "AGE_VERIFICATION"
    BLACKLISTED_GROUPS = "BLACKLISTED_GROUPS"
    TRUST_CHECK = "TRUST_CHECK"


class ActionType(enum.StrEnum):
    """What a matching rule does to the candidate."""
    REJECT = "REJECT"


class MatchMode(enum.StrEnum):
    WHOLE_WORD = "WHOLE_WORD"
    PARTIAL = "PARTIAL"


# ---------------------------------------------------------------------------
# Typed configs
# ---------------------------------------------------------------------------
def _clean_terms(value: Any) -> tuple[str, ...]:
    """Strip, drop blanks and de-duplicate while keeping input order."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError("expected a list of strings")
    seen: set[str] = set()
    terms: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"expected a string, got {type(item).__name__}")
        term = item.strip()
        if term and term.casefold() not in seen:
            seen.add(term.casefold())
            terms.append(term)
    return tuple(terms)


class _FrozenConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class KeywordBlockConfig(_FrozenConfig):
    keywords: tuple[str, ...] = ()
    whitelist: tuple[str, ...] = ()
    match_mode: MatchMode = Field(default=MatchMode.WHOLE_WORD, alias="matchMode")
    scan_bio: bool = Field(default=True, alias="scanBio")
    scan_status: bool = Field(default=True, alias="scanStatus")
    scan_pronouns: bool = Field(default=False, alias="scanPronouns")
    scan_display_name: bool = Field(default=False, alias="scanDisplayName")

    @field_validator("keywords", "whitelist", mode="before")
    @classmethod
    def _terms(cls, value: Any) -> tuple[str, ...]:
        return _clean_terms(value)

    @field_validator("match_mode", mode="before")
    @classmethod
    def _mode(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


class AgeVerificationConfig(_FrozenConfig):
    auto_accept_verified: bool = Field(default=False, alias="autoAcceptVerified")


class BlacklistedGroupsConfig(_FrozenConfig):
    group_ids: frozenset[str] = Field(default=frozenset(), alias="groupIds")
    # Optional display names, keyed by group id, for readable reasons
    group_names: dict[str, str] = Field(default_factory=dict, alias="groupNames")

    @field_validator("group_ids", mode="before")
    @classmethod
    def _ids(cls, value: Any) -> frozenset[str]:
        return frozenset(_clean_terms(value))

    @classmethod
    def from_payload(cls, data: dict) -> BlacklistedGroupsConfig:
        """Accept the ``groups: [{id, name}]`` shape alongside ``groupIds``."""
        groups = data.get("groups") or []
        if not isinstance(groups, list):
            raise ValueError("groups must be a list")
        ids = list(data.get("groupIds") or data.get("group_ids") or [])
        names: dict[str, str] = {}
        for group in groups:
            if isinstance(group, dict) and isinstance(group.get("id"), str):
                ids.append(group["id"])
                if isinstance(group.get("name"), str):
                    names[group["id"]] = group["name"]
        return cls.model_validate({"groupIds": ids, "groupNames": names})


class TrustCheckConfig(_FrozenConfig):
    min_rank: str = Field(default="User", alias="minRank")
    allow_unknown: bool = Field(default=False, alias="allowUnknown")

    @field_validator("min_rank", mode="before")
    @classmethod
    def _rank(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("minRank must be a string")
        wanted = value.strip().lower()
        for tag, rank in TRUST_TAGS:
            if wanted == tag:
                return rank
        for rank in TRUST_RANKS:
            if wanted == rank.lower():
                return rank
        raise ValueError(f"unknown trust rank {value!r}")


RuleConfig = Union[
    KeywordBlockConfig, AgeVerificationConfig, BlacklistedGroupsConfig, TrustCheckConfig
]

CONFIG_MODELS: dict[RuleType, type[BaseModel]] = {
    RuleType.KEYWORD_BLOCK: KeywordBlockConfig,
    RuleType.AGE_VERIFICATION: AgeVerificationConfig,
    RuleType.BLACKLISTED_GROUPS: BlacklistedGroupsConfig,
    RuleType.TRUST_CHECK: TrustCheckConfig,
}


# ---------------------------------------------------------------------------
# Parsing (the configuration boundary)
# ---------------------------------------------------------------------------
def _coerce_payload(rule_type: RuleType, raw: Any, rule_id: str | None) -> dict:
    """Normalise legacy payload shapes into a dict for model validation."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            if rule_type == RuleType.KEYWORD_BLOCK:
                # Very old rows stored a single bare keyword
                return {"keywords": [raw.decode() if isinstance(raw, bytes) else raw]}
            raise ConfigurationError(rule_id, "config is not valid JSON")

    if isinstance(raw, dict):
        return raw
    if rule_type == RuleType.KEYWORD_BLOCK and isinstance(raw, (list, str)):
        return {"keywords": raw}
    if rule_type == RuleType.TRUST_CHECK and isinstance(raw, str):
        return {"minRank": raw}
    raise ConfigurationError(
        rule_id, f"expected an object for {rule_type}, got {type(raw).__name__}"
    )


def parse_config(rule_type: RuleType, raw: Any, rule_id: str | None = None) -> RuleConfig:
    """Parse a stored payload into the typed config for *rule_type*.

    Raises
    ------
    ConfigurationError
        If the payload is unparseable or fails validation.
    """
    data = _coerce_payload(rule_type, raw, rule_id)
    try:
        if rule_type == RuleType.BLACKLISTED_GROUPS:
            return BlacklistedGroupsConfig.from_payload(data)
        return CONFIG_MODELS[rule_type].model_validate(data)  # type: ignore[return-value]
    except (ValidationError, ValueError) as exc:
        raise ConfigurationError(rule_id, str(exc)) from exc


def config_to_payload(config: RuleConfig) -> dict:
    """Serialise a typed config back to its stored (camelCase) shape."""
    payload = config.model_dump(by_alias=True, mode="json")
    if isinstance(config, BlacklistedGroupsConfig):
        payload["groupIds"] = sorted(config.group_ids)
    return payload


# ---------------------------------------------------------------------------
# Rule & RuleSet
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Rule:
    """One configured moderation rule.  Never mutated by the engine."""

    id: str
    name: str
    type: RuleType
    enabled: bool
    config: RuleConfig | None
    action_type: ActionType = ActionType.REJECT
    config_error: str | None = None

    @property
    def active(self) -> bool:
        """Enabled *and* carrying a valid config."""
        return self.enabled and self.config is not None


def build_rule(
    rule_id: Any,
    name: str,
    rule_type: str,
    *,
    enabled: bool = True,
    config: Any = None,
    action_type: str = "REJECT",
) -> Rule | None:
    """Build a :class:`Rule` from stored fields, degrading bad configs.

    Returns ``None`` only when *rule_type* is not a known rule type.
    """
    try:
        kind = RuleType(str(rule_type).upper())
    except ValueError:
        logger.warning("Skipping rule %s: unknown rule type %r", rule_id, rule_type)
        return None

    rid = str(rule_id)
    try:
        action = ActionType(str(action_type).upper())
        parsed = parse_config(kind, config, rid)
    except (ConfigurationError, ValueError) as exc:
        logger.warning("Rule %s (%s) disabled: %s", rid, name, exc)
        return Rule(
            id=rid,
            name=name,
            type=kind,
            enabled=False,
            config=None,
            config_error=str(exc),
        )

    return Rule(
        id=rid,
        name=name,
        type=kind,
        enabled=bool(enabled),
        config=parsed,
        action_type=action,
    )


def parse_priority(names: Iterable[str] | None) -> tuple[RuleType, ...]:
    """Turn configured type names into a full priority order.

    Unknown names are dropped; types missing from *names* are appended in
    their default position so every rule type is always reachable.
    """
    order: list[RuleType] = []
    for name in names or ():
        try:
            kind = RuleType(str(name).strip().upper())
        except ValueError:
            logger.warning("Ignoring unknown rule type in priority list: %r", name)
            continue
        if kind not in order:
            order.append(kind)
    for name in DEFAULT_RULE_PRIORITY:
        kind = RuleType(name)
        if kind not in order:
            order.append(kind)
    return tuple(order)


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Immutable snapshot of all configured rules at a point in time."""

    rules: tuple[Rule, ...] = ()
    priority: tuple[RuleType, ...] = field(default_factory=lambda: parse_priority(None))
    revision: int = 0

    def ordered(self) -> list[Rule]:
        """Rules in evaluation order (stable within a rule type)."""
        rank = {kind: i for i, kind in enumerate(self.priority)}
        return sorted(self.rules, key=lambda r: rank.get(r.type, len(rank)))

    def active_rules(self) -> list[Rule]:
        return [r for r in self.ordered() if r.active]

    def has_active(self, rule_type: RuleType) -> bool:
        return any(r.active and r.type == rule_type for r in self.rules)

    def get(self, rule_id: str) -> Rule | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None
