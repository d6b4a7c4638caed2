"""Pydantic schemas for leaderboard responses."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel


class UserRankSchema(BaseModel):
	rank: int
	user_id: str
	username: str
	character_class: str
	level: int
	total_xp: int


class GuildRankSchema(BaseModel):
	rank: int
	guild_id: str
	name: str
	total_members: int
	total_xp: int


class UserLeaderboardSchema(BaseModel):
	items: List[UserRankSchema]


class GuildLeaderboardSchema(BaseModel):
	items: List[GuildRankSchema]
