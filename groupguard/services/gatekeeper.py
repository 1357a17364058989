"""
groupguard.services.gatekeeper — Live join-request handling
============================================================

Pipeline for one join request:

  1. Skip requests already seen (bounded duplicate cache)
  2. Complete the profile through the directory if fields are missing
  3. Evaluate against the *current* RuleSet snapshot
  4. Record REJECT decisions in the interception log
  5. Optionally respond accept/reject through the directory
  6. Optionally post a Discord alert

A directory failure at step 2 is not fatal: the candidate is evaluated on
whatever fields it already carries and the decision is flagged
``incomplete``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import replace

from groupguard.engine.evaluator import Candidate, Decision, RuleEngine
from groupguard.engine.rules import RuleSet, RuleType
from groupguard.errors import UpstreamFetchError
from groupguard.services.alert_service import AlertService
from groupguard.services.directory_client import Directory
from groupguard.services.interception_log import InterceptionLog

logger = logging.getLogger(__name__)

PROCESSED_CACHE_LIMIT = 1000


def needs_profile(candidate: Candidate) -> bool:
    """True when the candidate lacks the fields rules usually inspect."""
    return not candidate.tags or not candidate.display_name


class Gatekeeper:
    def __init__(
        self,
        *,
        rules: Callable[[], RuleSet],
        log: InterceptionLog,
        directory: Directory | None = None,
        alerts: AlertService | None = None,
        engine: RuleEngine | None = None,
        auto_process: bool = False,
        request_delay: float = 0.5,
    ) -> None:
        self._rules = rules
        self._log = log
        self._directory = directory
        self._alerts = alerts
        self._engine = engine or RuleEngine()
        self.auto_process = auto_process
        self._request_delay = request_delay
        self._processed: OrderedDict[str, None] = OrderedDict()

    # -- duplicate cache -----------------------------------------------------
    def _seen(self, key: str) -> bool:
        if key in self._processed:
            return True
        self._processed[key] = None
        if len(self._processed) > PROCESSED_CACHE_LIMIT:
            # Drop the oldest half in one go
            for _ in range(len(self._processed) // 2):
                self._processed.popitem(last=False)
        return False

    def forget(self, group_id: str, user_id: str) -> None:
        self._processed.pop(f"{group_id}:{user_id}", None)

    # -- enrichment ----------------------------------------------------------
    async def complete_candidate(
        self, candidate: Candidate, ruleset: RuleSet
    ) -> tuple[Candidate, bool]:
        """Fill in missing profile and membership data.

        Returns the (possibly enriched) candidate and whether any lookup failed.
        """
        if self._directory is None:
            return candidate, False

        incomplete = False
        if needs_profile(candidate):
            try:
                profile = await self._directory.fetch_candidate_profile(candidate.id)
                candidate = candidate.merged_with(profile)
            except UpstreamFetchError as exc:
                logger.warning("Profile lookup for %s failed: %s", candidate.id, exc)
                incomplete = True

        if candidate.group_memberships is None and ruleset.has_active(RuleType.BLACKLISTED_GROUPS):
            try:
                groups = await self._directory.fetch_group_membership(candidate.id)
                candidate = candidate.with_memberships(groups)
            except UpstreamFetchError as exc:
                logger.warning("Membership lookup for %s failed: %s", candidate.id, exc)
                incomplete = True

        return candidate, incomplete

    # -- pipeline ------------------------------------------------------------
    async def process_join_request(self, group_id: str, candidate: Candidate) -> Decision | None:
        """Handle one join request.  Returns ``None`` for duplicates."""
        if self._seen(f"{group_id}:{candidate.id}"):
            logger.debug("Join request %s/%s already processed", group_id, candidate.id)
            return None

        ruleset = self._rules()
        candidate, incomplete = await self.complete_candidate(candidate, ruleset)
        decision = self._engine.evaluate(candidate, ruleset)
        if incomplete:
            decision = replace(decision, incomplete=True)

        if decision.rejected:
            self._log.record(candidate, decision, group_id)

        if self.auto_process and self._directory is not None:
            action = "reject" if decision.rejected else "accept"
            try:
                await self._directory.respond_to_join_request(group_id, candidate.id, action)
            except UpstreamFetchError as exc:
                logger.error("Could not %s join request %s: %s", action, candidate.id, exc)
                # Allow a retry on the next pass
                self.forget(group_id, candidate.id)

        if decision.rejected and self._alerts is not None:
            await self._alerts.send_rejection(candidate, decision, group_id)

        return decision

    async def process_pending(self, group_id: str) -> list[Decision]:
        """Pull the pending request list and process each request in turn."""
        if self._directory is None:
            raise RuntimeError("No directory configured")

        requests = await self._directory.list_join_requests(group_id)
        logger.info("Processing %d pending join requests for %s", len(requests), group_id)

        decisions: list[Decision] = []
        for i, request in enumerate(requests):
            user = request.get("user") if isinstance(request.get("user"), dict) else request
            candidate = Candidate.from_profile(user)
            if not candidate.id:
                logger.warning("Skipping join request without a user id: %r", request)
                continue
            decision = await self.process_join_request(group_id, candidate)
            if decision is not None:
                decisions.append(decision)
            if i < len(requests) - 1 and self._request_delay:
                await asyncio.sleep(self._request_delay)
        return decisions

    async def reverse(self, entry_id: str) -> bool:
        """Undo a rejection out of band (unban).  The log entry is kept.

        Returns ``False`` if the entry is unknown or carries no group id.
        """
        entry = self._log.get(entry_id)
        if entry is None or entry.session_group_id is None:
            return False
        if self._directory is None:
            raise RuntimeError("No directory configured")
        await self._directory.unban_member(entry.session_group_id, entry.subject_id)
        self.forget(entry.session_group_id, entry.subject_id)
        return True
