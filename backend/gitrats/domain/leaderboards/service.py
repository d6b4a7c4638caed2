"""Read-side rankings over character and guild XP."""

from __future__ import annotations

from gitrats.domain.leaderboards.schemas import (
	GuildLeaderboardSchema,
	GuildRankSchema,
	UserLeaderboardSchema,
	UserRankSchema,
)
from gitrats.domain.sync.repository import XPRepository

MAX_LIMIT = 100


def _clamp(limit: int) -> int:
	return max(1, min(MAX_LIMIT, limit))


class LeaderboardService:
	def __init__(self, repository: XPRepository) -> None:
		self._repo = repository

	async def top_users(self, limit: int = 50) -> UserLeaderboardSchema:
		rows = await self._repo.top_characters(_clamp(limit))
		return UserLeaderboardSchema(
			items=[
				UserRankSchema(
					rank=index,
					user_id=user.id,
					username=user.github_login,
					character_class=character.character_class,
					level=character.level,
					total_xp=character.total_xp,
				)
				for index, (user, character) in enumerate(rows, start=1)
			]
		)

	async def top_guilds(self, limit: int = 50) -> GuildLeaderboardSchema:
		guilds = await self._repo.top_guilds(_clamp(limit))
		return GuildLeaderboardSchema(
			items=[
				GuildRankSchema(
					rank=index,
					guild_id=guild.id,
					name=guild.name,
					total_members=guild.total_members,
					total_xp=guild.total_xp,
				)
				for index, guild in enumerate(guilds, start=1)
			]
		)
