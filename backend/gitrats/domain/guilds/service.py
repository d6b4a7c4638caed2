"""Guild aggregate maintenance.

Guild totals are a cached sum and count over current members. Every path that changes a
character's ``total_xp`` calls ``recalculate_for_user`` after that write has
been committed; the sum is always rebuilt from a fresh membership read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from gitrats.domain.sync.repository import XPRepository
from gitrats.domain.xp.models import Guild
from gitrats.obs import metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GuildRecount:
    guild_id: str
    previous_total_xp: int
    total_xp: int
    previous_total_members: int
    total_members: int

    @property
    def changed(self) -> bool:
        return (
            self.previous_total_xp != self.total_xp
            or self.previous_total_members != self.total_members
        )


class GuildService:
    def __init__(self, repository: XPRepository) -> None:
        self._repo = repository

    async def recalculate_guild(self, guild_id: str, *, recount_members: bool = False) -> Guild | None:
        member_ids = await self._repo.list_guild_member_ids(guild_id)
        total_xp = await self._repo.sum_character_xp(member_ids) if member_ids else 0
        return await self._repo.update_guild_totals(
            guild_id,
            total_xp=total_xp,
            total_members=len(member_ids) if recount_members else None,
        )

    async def recalculate_for_user(self, user_id: str, *, trigger: str = "xp_change") -> list[Guild]:
        """Rebuild total_xp and total_members for every guild the user belongs to."""
        updated: list[Guild] = []
        for guild_id in await self._repo.list_guild_ids_for_user(user_id):
            guild = await self.recalculate_guild(guild_id, recount_members=True)
            if guild is not None:
                updated.append(guild)
        if updated:
            metrics.inc_guild_recalculation(trigger, len(updated))
            logger.info(
                "guild_totals_recalculated",
                extra={"member_id": user_id, "guild_ids": [g.id for g in updated], "trigger": trigger},
            )
        return updated

    async def recalculate_all(self) -> Sequence[GuildRecount]:
        """Recount members and XP for every guild."""
        report: list[GuildRecount] = []
        for guild in await self._repo.list_guilds():
            refreshed = await self.recalculate_guild(guild.id, recount_members=True)
            if refreshed is None:
                continue
            report.append(
                GuildRecount(
                    guild_id=guild.id,
                    previous_total_xp=guild.total_xp,
                    total_xp=refreshed.total_xp,
                    previous_total_members=guild.total_members,
                    total_members=refreshed.total_members,
                )
            )
        metrics.inc_guild_recalculation("full_recount", len(report))
        logger.info(
            "guild_totals_recounted",
            extra={"guilds": len(report), "changed": sum(1 for item in report if item.changed)},
        )
        return report
