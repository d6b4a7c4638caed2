"""FastAPI routes for XP leaderboards."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from gitrats.api.deps import get_leaderboard_service
from gitrats.domain.leaderboards.schemas import GuildLeaderboardSchema, UserLeaderboardSchema
from gitrats.domain.leaderboards.service import MAX_LIMIT, LeaderboardService

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("/users", response_model=UserLeaderboardSchema)
async def user_leaderboard_endpoint(
	limit: int = Query(default=50, ge=1, le=MAX_LIMIT),
	service: LeaderboardService = Depends(get_leaderboard_service),
) -> UserLeaderboardSchema:
	return await service.top_users(limit)


@router.get("/guilds", response_model=GuildLeaderboardSchema)
async def guild_leaderboard_endpoint(
	limit: int = Query(default=50, ge=1, le=MAX_LIMIT),
	service: LeaderboardService = Depends(get_leaderboard_service),
) -> GuildLeaderboardSchema:
	return await service.top_guilds(limit)
