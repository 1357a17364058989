"""
groupguard.constants — Shared Constants & Helpers
==================================================

Single source of truth for markers, default capacities and the trust-rank
ladder.  Import from here instead of duplicating in engines and services.
"""

from __future__ import annotations

from collections.abc import Iterable

# ---------------------------------------------------------------------------
# Age verification
# ---------------------------------------------------------------------------
AGE_VERIFIED_MARKER = "18+"

# ---------------------------------------------------------------------------
# Occupancy defaults
# ---------------------------------------------------------------------------
PENDING_RANK = "Loading..."
SYNTHETIC_KEY_PREFIX = "log:"
DEFAULT_HISTORY_CAPACITY = 2000

# ---------------------------------------------------------------------------
# Interception log defaults
# ---------------------------------------------------------------------------
DEFAULT_INTERCEPTION_CAPACITY = 50

# ---------------------------------------------------------------------------
# Trust ladder (lowest → highest)
# ---------------------------------------------------------------------------
UNKNOWN_RANK = "Unknown"

TRUST_RANKS: tuple[str, ...] = (
    "Visitor",
    "New User",
    "User",
    "Known",
    "Trusted",
    "Legend",
)

# Checked highest first; a profile carries every tag it has earned.
TRUST_TAGS: tuple[tuple[str, str], ...] = (
    ("system_trust_legend", "Legend"),
    ("system_trust_veteran", "Trusted"),
    ("system_trust_trusted", "Known"),
    ("system_trust_known", "User"),
    ("system_trust_basic", "New User"),
    ("system_trust_visitor", "Visitor"),
)


def trust_rank_from_tags(tags: Iterable[str] | None) -> str:
    """Return the highest trust rank implied by *tags*, or ``"Unknown"``."""
    if not tags:
        return UNKNOWN_RANK
    tag_set = set(tags)
    for tag, rank in TRUST_TAGS:
        if tag in tag_set:
            return rank
    return UNKNOWN_RANK


def trust_rank_index(rank: str) -> int:
    """Position of *rank* on the ladder; ``-1`` for unknown ranks."""
    try:
        return TRUST_RANKS.index(rank)
    except ValueError:
        return -1
