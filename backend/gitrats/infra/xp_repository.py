"""PostgreSQL persistence for stats, characters, guilds and achievements."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

import asyncpg

from gitrats.domain.errors import CharacterNotFound
from gitrats.domain.sync.repository import CharacterMutation, XPRepository
from gitrats.domain.xp.models import Achievement, Character, GithubStats, Guild, UserAccount

_USER_COLUMNS = """
    u.id, u.github_username, u.github_access_token,
    COALESCE(u.created_at, c.created_at) AS created_at
"""

_CHARACTER_COLUMNS = "id, user_id, name, class, level, total_xp, current_xp, created_at"

_STATS_COLUMNS = """
    user_id, total_commits, total_prs, total_issues,
    baseline_commits, baseline_prs, baseline_issues, last_sync_at
"""


def _row_to_user(row: asyncpg.Record) -> UserAccount:
    return UserAccount(
        id=str(row["id"]),
        github_login=str(row["github_username"] or ""),
        created_at=row["created_at"],
        github_token=row["github_access_token"],
    )


def _row_to_character(row: asyncpg.Record) -> Character:
    return Character(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        character_class=str(row["class"]),
        level=int(row["level"]),
        total_xp=int(row["total_xp"]),
        current_xp=int(row["current_xp"]),
        name=row["name"],
        created_at=row["created_at"],
    )


def _row_to_stats(row: asyncpg.Record) -> GithubStats:
    return GithubStats(
        user_id=str(row["user_id"]),
        total_commits=int(row["total_commits"]),
        total_prs=int(row["total_prs"]),
        total_issues=int(row["total_issues"]),
        baseline_commits=int(row["baseline_commits"]),
        baseline_prs=int(row["baseline_prs"]),
        baseline_issues=int(row["baseline_issues"]),
        last_sync_at=row["last_sync_at"],
    )


def _row_to_guild(row: asyncpg.Record) -> Guild:
    return Guild(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        name=str(row["name"] or ""),
        total_members=int(row["total_members"]),
        total_xp=int(row["total_xp"]),
    )


def _row_to_achievement(row: asyncpg.Record) -> Achievement:
    return Achievement(
        code=str(row["code"]),
        name=str(row["name"]),
        xp_reward=int(row["xp_reward"]),
        is_active=bool(row["is_active"]),
    )


class PostgresXPRepository(XPRepository):
    """Reads and writes the game tables through an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_user(self, user_id: str) -> UserAccount | None:
        row = await self._pool.fetchrow(
            f"""
            SELECT {_USER_COLUMNS}
            FROM users u
            LEFT JOIN characters c ON c.user_id = u.id
            WHERE u.id = $1
            """,
            user_id,
        )
        return _row_to_user(row) if row else None

    async def list_users(self) -> Sequence[UserAccount]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_USER_COLUMNS}
            FROM users u
            JOIN characters c ON c.user_id = u.id
            ORDER BY u.created_at ASC NULLS LAST, u.id
            """
        )
        return [_row_to_user(row) for row in rows]

    async def get_character(self, user_id: str) -> Character | None:
        row = await self._pool.fetchrow(
            f"SELECT {_CHARACTER_COLUMNS} FROM characters WHERE user_id = $1",
            user_id,
        )
        return _row_to_character(row) if row else None

    async def ensure_stats(self, user_id: str) -> GithubStats:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO github_stats (user_id, total_commits, total_prs, total_issues,
                    baseline_commits, baseline_prs, baseline_issues, last_sync_at)
                VALUES ($1, 0, 0, 0, 0, 0, 0, NULL)
                ON CONFLICT (user_id) DO NOTHING
                """,
                user_id,
            )
            row = await conn.fetchrow(f"SELECT {_STATS_COLUMNS} FROM github_stats WHERE user_id = $1", user_id)
        if row is None:  # pragma: no cover - the insert above guarantees a row
            raise RuntimeError("Failed to create github_stats row")
        return _row_to_stats(row)

    async def apply_reconciliation(
        self,
        stats: GithubStats,
        *,
        expected_last_sync_at: Optional[datetime],
        mutate: CharacterMutation,
    ) -> Character | None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                locked = await conn.fetchval(
                    """
                    SELECT user_id FROM github_stats
                    WHERE user_id = $1 AND last_sync_at IS NOT DISTINCT FROM $2
                    FOR UPDATE
                    """,
                    stats.user_id,
                    expected_last_sync_at,
                )
                if locked is None:
                    return None
                row = await conn.fetchrow(
                    f"SELECT {_CHARACTER_COLUMNS} FROM characters WHERE user_id = $1 FOR UPDATE",
                    stats.user_id,
                )
                if row is None:
                    raise CharacterNotFound(stats.user_id)
                updated = mutate(_row_to_character(row))
                await conn.execute(
                    """
                    UPDATE github_stats
                    SET total_commits = $2, total_prs = $3, total_issues = $4,
                        baseline_commits = $5, baseline_prs = $6, baseline_issues = $7,
                        last_sync_at = $8, updated_at = NOW()
                    WHERE user_id = $1
                    """,
                    stats.user_id,
                    stats.total_commits,
                    stats.total_prs,
                    stats.total_issues,
                    stats.baseline_commits,
                    stats.baseline_prs,
                    stats.baseline_issues,
                    stats.last_sync_at,
                )
                await self._write_character(conn, updated)
        return updated

    async def get_achievement(self, code: str) -> Achievement | None:
        row = await self._pool.fetchrow(
            "SELECT code, name, xp_reward, is_active FROM achievements WHERE code = $1 AND is_active",
            code,
        )
        return _row_to_achievement(row) if row else None

    async def has_achievement(self, user_id: str, code: str) -> bool:
        found = await self._pool.fetchval(
            """
            SELECT 1 FROM user_achievements ua
            JOIN achievements a ON a.id = ua.achievement_id
            WHERE ua.user_id = $1 AND a.code = $2
            """,
            user_id,
            code,
        )
        return found is not None

    async def list_achievements_for_user(self, user_id: str) -> Sequence[Achievement]:
        rows = await self._pool.fetch(
            """
            SELECT a.code, a.name, a.xp_reward, a.is_active
            FROM user_achievements ua
            JOIN achievements a ON a.id = ua.achievement_id
            WHERE ua.user_id = $1
            ORDER BY ua.unlocked_at ASC
            """,
            user_id,
        )
        return [_row_to_achievement(row) for row in rows]

    async def grant_achievement(
        self,
        user_id: str,
        achievement: Achievement,
        *,
        granted_by: Optional[str],
        mutate: CharacterMutation,
    ) -> Character | None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                inserted = await conn.fetchval(
                    """
                    INSERT INTO user_achievements (user_id, achievement_id, granted_by, unlocked_at)
                    SELECT $1, a.id, $3, NOW() FROM achievements a WHERE a.code = $2
                    ON CONFLICT (user_id, achievement_id) DO NOTHING
                    RETURNING achievement_id
                    """,
                    user_id,
                    achievement.code,
                    granted_by,
                )
                if inserted is None:
                    return None
                row = await conn.fetchrow(
                    f"SELECT {_CHARACTER_COLUMNS} FROM characters WHERE user_id = $1 FOR UPDATE",
                    user_id,
                )
                if row is None:
                    raise CharacterNotFound(user_id)
                updated = mutate(_row_to_character(row))
                await self._write_character(conn, updated)
        return updated

    async def list_guild_ids_for_user(self, user_id: str) -> Sequence[str]:
        rows = await self._pool.fetch("SELECT guild_id FROM guild_members WHERE user_id = $1", user_id)
        return [str(row["guild_id"]) for row in rows]

    async def list_guild_member_ids(self, guild_id: str) -> Sequence[str]:
        rows = await self._pool.fetch("SELECT user_id FROM guild_members WHERE guild_id = $1", guild_id)
        return [str(row["user_id"]) for row in rows]

    async def sum_character_xp(self, user_ids: Sequence[str]) -> int:
        if not user_ids:
            return 0
        total = await self._pool.fetchval(
            "SELECT COALESCE(SUM(total_xp), 0) FROM characters WHERE user_id::text = ANY($1::text[])",
            list(user_ids),
        )
        return int(total or 0)

    async def update_guild_totals(
        self,
        guild_id: str,
        *,
        total_xp: int,
        total_members: Optional[int] = None,
    ) -> Guild | None:
        row = await self._pool.fetchrow(
            """
            UPDATE guilds
            SET total_xp = $2,
                total_members = COALESCE($3, total_members),
                updated_at = NOW()
            WHERE id = $1
            RETURNING id, owner_id, name, total_members, total_xp
            """,
            guild_id,
            total_xp,
            total_members,
        )
        return _row_to_guild(row) if row else None

    async def list_guilds(self) -> Sequence[Guild]:
        rows = await self._pool.fetch(
            "SELECT id, owner_id, name, total_members, total_xp FROM guilds ORDER BY created_at ASC"
        )
        return [_row_to_guild(row) for row in rows]

    async def top_characters(self, limit: int) -> Sequence[tuple[UserAccount, Character]]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_USER_COLUMNS},
                c.id AS character_id, c.name, c.class, c.level, c.total_xp, c.current_xp,
                c.created_at AS character_created_at
            FROM characters c
            JOIN users u ON u.id = c.user_id
            ORDER BY c.total_xp DESC, c.user_id
            LIMIT $1
            """,
            limit,
        )
        result: list[tuple[UserAccount, Character]] = []
        for row in rows:
            character = Character(
                id=str(row["character_id"]),
                user_id=str(row["id"]),
                character_class=str(row["class"]),
                level=int(row["level"]),
                total_xp=int(row["total_xp"]),
                current_xp=int(row["current_xp"]),
                name=row["name"],
                created_at=row["character_created_at"],
            )
            result.append((_row_to_user(row), character))
        return result

    async def top_guilds(self, limit: int) -> Sequence[Guild]:
        rows = await self._pool.fetch(
            """
            SELECT id, owner_id, name, total_members, total_xp
            FROM guilds
            ORDER BY total_xp DESC, id
            LIMIT $1
            """,
            limit,
        )
        return [_row_to_guild(row) for row in rows]

    async def _write_character(self, conn: asyncpg.Connection, character: Character) -> None:
        await conn.execute(
            """
            UPDATE characters
            SET level = $2, total_xp = $3, current_xp = $4, updated_at = NOW()
            WHERE user_id = $1
            """,
            character.user_id,
            character.level,
            character.total_xp,
            character.current_xp,
        )
