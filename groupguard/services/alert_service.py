"""
groupguard.services.alert_service — Discord webhook alerts
===========================================================

Posts rejection and scan-summary embeds to a Discord webhook.  Alerts are
best effort: a failed post is logged and the moderation flow carries on.
"""

from __future__ import annotations

import logging

import discord
import httpx

from groupguard.engine.evaluator import Candidate, Decision
from groupguard.services.embeds import build_rejection_embed, build_scan_summary_embed

logger = logging.getLogger(__name__)


class AlertService:
    def __init__(
        self,
        webhook_url: str,
        *,
        community_name: str = "GroupGuard",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = webhook_url
        self._community_name = community_name
        self._transport = transport

    async def _post(self, embed: discord.Embed) -> bool:
        payload = {"username": self._community_name, "embeds": [embed.to_dict()]}
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        try:
            async with httpx.AsyncClient(timeout=10, transport=transport) as client:
                resp = await client.post(self._url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Discord webhook post failed: %s", exc)
            return False
        return True

    async def send_rejection(
        self, candidate: Candidate, decision: Decision, group_id: str | None
    ) -> bool:
        embed = build_rejection_embed(candidate, decision, group_id, self._community_name)
        return await self._post(embed)

    async def send_scan_summary(
        self, group_id: str, scanned: int, violations: int, cancelled: bool
    ) -> bool:
        embed = build_scan_summary_embed(
            group_id, scanned, violations, cancelled, self._community_name
        )
        return await self._post(embed)
