"""
groupguard.services.scan_service — Retroactive member scans
============================================================

Re-evaluates existing members against the current rules.  Scans are
read-only: they report violations but never write the interception log
and never act on members.

Cancellation is cooperative.  The token is checked between candidates, so
a scan stops after the candidate in flight and reports ``cancelled=True``
with the results gathered so far.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from groupguard.engine.evaluator import Candidate, Decision, RuleEngine
from groupguard.engine.rules import RuleSet, RuleType
from groupguard.errors import UpstreamFetchError
from groupguard.services.directory_client import Directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScanResult:
    candidate: Candidate
    decision: Decision

    def to_dict(self) -> dict:
        return {
            "subjectId": self.candidate.id,
            "subjectDisplayName": self.candidate.display_name,
            "decision": self.decision.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class ScanReport:
    scanned: int
    violations: int
    results: tuple[ScanResult, ...] = field(default=())
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "violations": self.violations,
            "cancelled": self.cancelled,
            "results": [r.to_dict() for r in self.results],
        }


async def _enrich(
    candidate: Candidate,
    ruleset: RuleSet,
    directory: Directory | None,
    timeout: float,
) -> tuple[Candidate, bool]:
    if directory is None:
        return candidate, False

    incomplete = False
    try:
        profile = await asyncio.wait_for(
            directory.fetch_candidate_profile(candidate.id), timeout
        )
        candidate = candidate.merged_with(profile)
    except (UpstreamFetchError, TimeoutError) as exc:
        logger.warning("Scan: profile for %s unavailable (%s)", candidate.id, str(exc) or "timeout")
        incomplete = True

    if candidate.group_memberships is None and ruleset.has_active(RuleType.BLACKLISTED_GROUPS):
        try:
            groups = await asyncio.wait_for(
                directory.fetch_group_membership(candidate.id), timeout
            )
            candidate = candidate.with_memberships(groups)
        except (UpstreamFetchError, TimeoutError) as exc:
            logger.warning("Scan: groups for %s unavailable (%s)", candidate.id, str(exc) or "timeout")
            incomplete = True

    return candidate, incomplete


async def scan_population(
    members: Iterable[Candidate],
    ruleset: RuleSet,
    directory: Directory | None = None,
    cancel: threading.Event | None = None,
    delay: float = 0.0,
    *,
    timeout: float = 10.0,
    engine: RuleEngine | None = None,
) -> ScanReport:
    """Evaluate every candidate in *members* against one RuleSet snapshot."""
    engine = engine or RuleEngine()
    results: list[ScanResult] = []
    violations = 0
    cancelled = False

    for i, member in enumerate(members):
        if cancel is not None and cancel.is_set():
            cancelled = True
            break
        if i and delay:
            await asyncio.sleep(delay)

        candidate, incomplete = await _enrich(member, ruleset, directory, timeout)
        decision = engine.evaluate(candidate, ruleset)
        if incomplete:
            decision = replace(decision, incomplete=True)
        if decision.rejected:
            violations += 1
        results.append(ScanResult(candidate=candidate, decision=decision))

    report = ScanReport(
        scanned=len(results),
        violations=violations,
        results=tuple(results),
        cancelled=cancelled,
    )
    logger.info(
        "Scan %s: %d scanned, %d violations",
        "cancelled" if cancelled else "finished", report.scanned, report.violations,
    )
    return report


class ScanService:
    """Runs one group scan at a time and lets another caller cancel it."""

    def __init__(
        self,
        directory: Directory,
        *,
        page_size: int = 100,
        delay: float = 0.5,
        timeout: float = 10.0,
    ) -> None:
        self._directory = directory
        self._page_size = page_size
        self._delay = delay
        self._timeout = timeout
        self._cancel: threading.Event | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._cancel is not None

    def cancel(self) -> bool:
        """Ask the running scan to stop.  Returns ``False`` if none is running."""
        with self._lock:
            if self._cancel is None:
                return False
            self._cancel.set()
            return True

    async def fetch_members(self, group_id: str) -> list[Candidate]:
        """Page through the member list of *group_id*."""
        members: list[Candidate] = []
        offset = 0
        while True:
            page = await self._directory.list_members(group_id, offset, self._page_size)
            for item in page:
                user = item.get("user") if isinstance(item.get("user"), dict) else item
                candidate = Candidate.from_profile(user)
                if candidate.id:
                    members.append(candidate)
            if len(page) < self._page_size:
                break
            offset += self._page_size
        return members

    async def scan_group(self, group_id: str, ruleset: RuleSet) -> ScanReport:
        with self._lock:
            if self._cancel is not None:
                raise RuntimeError("A scan is already running")
            self._cancel = cancel = threading.Event()
        try:
            members = await self.fetch_members(group_id)
            logger.info("Scanning %d members of %s", len(members), group_id)
            return await scan_population(
                members,
                ruleset,
                self._directory,
                cancel,
                self._delay,
                timeout=self._timeout,
            )
        finally:
            with self._lock:
                self._cancel = None
