"""
groupguard.engine.matching — Keyword matching
==============================================

Three matching behaviours, all case-insensitive (``str.casefold``):

* **WHOLE_WORD** — the keyword must be bounded by a non-alphanumeric
  character or a string edge.  Whitespace inside a phrase matches any run
  of whitespace.
* **Acronym** — a WHOLE_WORD keyword containing ``.`` (``d.i.d``).  Its
  letters must appear as isolated tokens separated by at least one
  non-alphanumeric character, so ``d.i.d``, ``D.I.D.``, ``d i d`` and
  ``d-i-d`` match while ``did`` and ``candid`` do not.
* **PARTIAL** — raw substring, including inside other words.

A match is suppressed when its *enclosing token* (the matched span widened
to the surrounding alphanumeric run) is whitelisted; later occurrences in
the same text are still tried.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable

from groupguard.engine.rules import MatchMode

# Lookarounds that treat letters and digits as "inside a word" and
# everything else (including ``_``) as a boundary.
_START = r"(?<![^\W_])"
_END = r"(?![^\W_])"
_SEPARATOR = r"[\W_]+"


def is_acronym(keyword: str) -> bool:
    """True when *keyword* is written with dots between its letters."""
    return "." in keyword and len([p for p in keyword.split(".") if p.strip()]) > 1


@functools.lru_cache(maxsize=2048)
def compile_keyword(keyword: str, mode: MatchMode) -> re.Pattern[str] | None:
    """Compile *keyword* for *mode*; ``None`` when nothing could ever match."""
    folded = keyword.casefold().strip()
    if not folded:
        return None

    if mode == MatchMode.PARTIAL:
        return re.compile(re.escape(folded))

    if is_acronym(folded):
        parts = [p.strip() for p in folded.split(".") if p.strip()]
        body = _SEPARATOR.join(re.escape(p) for p in parts)
    else:
        parts = folded.replace(".", " ").split()
        if not parts:
            return None
        body = r"\s+".join(re.escape(p) for p in parts)
    return re.compile(_START + body + _END)


def enclosing_token(text: str, start: int, end: int) -> str:
    """Widen ``text[start:end]`` to the full alphanumeric run around it."""
    while start > 0 and text[start - 1].isalnum():
        start -= 1
    while end < len(text) and text[end].isalnum():
        end += 1
    return text[start:end]


def find_keyword(
    text: str,
    keyword: str,
    mode: MatchMode,
    whitelist: Iterable[str] = (),
) -> bool:
    """Does *keyword* occur in *text* outside any whitelisted token?"""
    if not text:
        return False
    allowed = {w.casefold() for w in whitelist}
    if keyword.casefold().strip() in allowed:
        return False

    pattern = compile_keyword(keyword, mode)
    if pattern is None:
        return False

    folded = text.casefold()
    for match in pattern.finditer(folded):
        if not allowed:
            return True
        if enclosing_token(folded, match.start(), match.end()) not in allowed:
            return True
    return False


def first_match(
    text: str,
    keywords: Iterable[str],
    mode: MatchMode,
    whitelist: Iterable[str] = (),
) -> str | None:
    """Return the first keyword (in input order) found in *text*."""
    whitelist = tuple(whitelist)
    for keyword in keywords:
        if find_keyword(text, keyword, mode, whitelist):
            return keyword
    return None
