"""FastAPI dependency providers for XP services."""

from __future__ import annotations

from fastapi import Depends

from gitrats.domain.achievements.service import AchievementService
from gitrats.domain.github.client import ActivitySourceFactory, GitHubSourceFactory
from gitrats.domain.guilds.service import GuildService
from gitrats.domain.leaderboards.service import LeaderboardService
from gitrats.domain.sync.repository import XPRepository
from gitrats.domain.sync.service import ReconcileService
from gitrats.infra.http import get_http_client
from gitrats.infra.postgres import get_pool
from gitrats.infra.xp_repository import PostgresXPRepository
from gitrats.settings import settings


async def get_xp_repository() -> XPRepository:
    return PostgresXPRepository(await get_pool())


def get_source_factory() -> ActivitySourceFactory:
    return GitHubSourceFactory(
        http=get_http_client(),
        graphql_url=settings.github_graphql_url,
        user_agent=settings.github_user_agent,
        request_timeout=settings.github_timeout_seconds,
        history_years=settings.github_history_years,
    )


def get_guild_service(repo: XPRepository = Depends(get_xp_repository)) -> GuildService:
    return GuildService(repo)


def get_reconcile_service(
    repo: XPRepository = Depends(get_xp_repository),
    sources: ActivitySourceFactory = Depends(get_source_factory),
    guilds: GuildService = Depends(get_guild_service),
) -> ReconcileService:
    return ReconcileService(repo, sources, guilds=guilds)


def get_achievement_service(
    repo: XPRepository = Depends(get_xp_repository),
    guilds: GuildService = Depends(get_guild_service),
) -> AchievementService:
    return AchievementService(repo, guilds)


def get_leaderboard_service(repo: XPRepository = Depends(get_xp_repository)) -> LeaderboardService:
    return LeaderboardService(repo)
