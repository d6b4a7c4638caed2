"""One-shot achievement XP grants."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from gitrats.domain.errors import AchievementNotFound, CharacterNotFound
from gitrats.domain.guilds.service import GuildService
from gitrats.domain.sync.repository import XPRepository
from gitrats.domain.xp import levels
from gitrats.domain.xp.models import Character
from gitrats.obs import metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AchievementGrantResult:
    user_id: str
    code: str
    granted: bool
    new_total_xp: Optional[int] = None
    new_level: Optional[int] = None


class AchievementService:
    def __init__(self, repository: XPRepository, guilds: GuildService | None = None) -> None:
        self._repo = repository
        self._guilds = guilds or GuildService(repository)

    async def grant_achievement(
        self,
        user_id: str,
        code: str,
        *,
        granted_by: Optional[str] = None,
    ) -> AchievementGrantResult:
        """Grant ``code`` to ``user_id`` at most once.

        An existing grant is an expected outcome and returns ``granted=False``.
        The repository records the grant and updates the character together,
        so a concurrent duplicate loses on the grant insert.
        """
        achievement = await self._repo.get_achievement(code)
        if achievement is None:
            raise AchievementNotFound(code)
        if await self._repo.get_character(user_id) is None:
            raise CharacterNotFound(user_id)
        if await self._repo.has_achievement(user_id, code):
            metrics.inc_achievement_grant("already_granted")
            return AchievementGrantResult(user_id=user_id, code=code, granted=False)

        reward = max(0, achievement.xp_reward)

        def _award(character: Character) -> Character:
            updated = levels.with_total_xp(character, character.total_xp + reward)
            levels.check_consistent(updated)
            return updated

        updated = await self._repo.grant_achievement(user_id, achievement, granted_by=granted_by, mutate=_award)
        if updated is None:
            metrics.inc_achievement_grant("already_granted")
            return AchievementGrantResult(user_id=user_id, code=code, granted=False)

        await self._guilds.recalculate_for_user(user_id, trigger="achievement")
        metrics.inc_achievement_grant("granted")
        metrics.inc_xp_granted("achievement", reward)
        logger.info(
            "achievement_granted",
            extra={
                "target_user_id": user_id,
                "code": code,
                "xp_reward": reward,
                "new_total_xp": updated.total_xp,
                "new_level": updated.level,
                "granted_by": granted_by,
            },
        )
        return AchievementGrantResult(
            user_id=user_id,
            code=code,
            granted=True,
            new_total_xp=updated.total_xp,
            new_level=updated.level,
        )
