"""
groupguard.services.embeds — Discord embed builders for moderation alerts
==========================================================================

All embed construction lives here so the alert service only has to
supply data.
"""

from __future__ import annotations

import discord

from groupguard.engine.evaluator import Candidate, Decision


def build_rejection_embed(
    candidate: Candidate,
    decision: Decision,
    group_id: str | None,
    community_name: str,
) -> discord.Embed:
    """Embed announcing that a candidate was intercepted."""
    embed = discord.Embed(
        title="\U0001f6e1️ Join Request Intercepted",
        description=f"**{candidate.display_name or candidate.id}** was blocked by **{decision.rule_name or 'AutoMod'}**.",
        color=discord.Color.red(),
    )
    embed.add_field(name="Reason", value=decision.reason or "No reason recorded", inline=False)
    embed.add_field(name="User ID", value=f"`{candidate.id}`", inline=True)
    if group_id:
        embed.add_field(name="Group", value=f"`{group_id}`", inline=True)
    if decision.incomplete:
        embed.add_field(
            name="⚠️ Partial data",
            value="Profile lookup failed; decided on the fields available.",
            inline=False,
        )
    embed.set_footer(text=community_name)
    return embed


def build_scan_summary_embed(
    group_id: str,
    scanned: int,
    violations: int,
    cancelled: bool,
    community_name: str,
) -> discord.Embed:
    """Embed summarising a retroactive member scan."""
    color = discord.Color.orange() if violations else discord.Color.green()
    title = "\U0001f50d Member Scan Cancelled" if cancelled else "\U0001f50d Member Scan Complete"
    embed = discord.Embed(
        title=title,
        description=f"Scanned **{scanned}** members of `{group_id}`.",
        color=color,
    )
    embed.add_field(name="Violations", value=str(violations), inline=True)
    embed.set_footer(text=community_name)
    return embed
