"""Persistence interface for stats, characters, guilds and achievements."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol, Sequence

from gitrats.domain.errors import CharacterNotFound
from gitrats.domain.xp.models import Achievement, Character, GithubStats, Guild, UserAccount

CharacterMutation = Callable[[Character], Character]


class XPRepository(Protocol):
    async def get_user(self, user_id: str) -> UserAccount | None:
        ...

    async def list_users(self) -> Sequence[UserAccount]:
        """Users that own a character, oldest first."""
        ...

    async def get_character(self, user_id: str) -> Character | None:
        ...

    async def ensure_stats(self, user_id: str) -> GithubStats:
        """Return the stats row, creating a zeroed never-synced one if absent."""
        ...

    async def apply_reconciliation(
        self,
        stats: GithubStats,
        *,
        expected_last_sync_at: Optional[datetime],
        mutate: CharacterMutation,
    ) -> Character | None:
        """Write stats and the mutated character as one unit.

        Returns None without writing when the stored ``last_sync_at`` no longer
        equals ``expected_last_sync_at``.
        """
        ...

    async def get_achievement(self, code: str) -> Achievement | None:
        ...

    async def has_achievement(self, user_id: str, code: str) -> bool:
        ...

    async def list_achievements_for_user(self, user_id: str) -> Sequence[Achievement]:
        ...

    async def grant_achievement(
        self,
        user_id: str,
        achievement: Achievement,
        *,
        granted_by: Optional[str],
        mutate: CharacterMutation,
    ) -> Character | None:
        """Record the grant and mutate the character; None if already granted."""
        ...

    async def list_guild_ids_for_user(self, user_id: str) -> Sequence[str]:
        ...

    async def list_guild_member_ids(self, guild_id: str) -> Sequence[str]:
        ...

    async def sum_character_xp(self, user_ids: Sequence[str]) -> int:
        ...

    async def update_guild_totals(
        self,
        guild_id: str,
        *,
        total_xp: int,
        total_members: Optional[int] = None,
    ) -> Guild | None:
        ...

    async def list_guilds(self) -> Sequence[Guild]:
        ...

    async def top_characters(self, limit: int) -> Sequence[tuple[UserAccount, Character]]:
        ...

    async def top_guilds(self, limit: int) -> Sequence[Guild]:
        ...


class InMemoryXPRepository(XPRepository):
    """Simple repository implementation for development and tests."""

    def __init__(self) -> None:
        self.users: dict[str, UserAccount] = {}
        self.characters: dict[str, Character] = {}
        self.stats: dict[str, GithubStats] = {}
        self.guilds: dict[str, Guild] = {}
        self.members: dict[str, list[str]] = {}
        self.achievements: dict[str, Achievement] = {}
        self.grants: dict[tuple[str, str], Optional[str]] = {}

    # -- seeding helpers --------------------------------------------------
    def add_user(self, user: UserAccount, character: Character | None = None) -> None:
        self.users[user.id] = user
        if character is not None:
            self.characters[user.id] = character
            self.stats.setdefault(user.id, GithubStats(user_id=user.id))

    def add_guild(self, guild: Guild, member_ids: Iterable[str] = ()) -> None:
        self.guilds[guild.id] = guild
        self.members[guild.id] = list(member_ids)

    def add_member(self, guild_id: str, user_id: str) -> None:
        self.members.setdefault(guild_id, []).append(user_id)

    def remove_member(self, guild_id: str, user_id: str) -> None:
        self.members[guild_id] = [uid for uid in self.members.get(guild_id, []) if uid != user_id]

    def add_achievement(self, achievement: Achievement) -> None:
        self.achievements[achievement.code] = achievement

    # -- XPRepository -----------------------------------------------------
    async def get_user(self, user_id: str) -> UserAccount | None:
        return self.users.get(user_id)

    async def list_users(self) -> Sequence[UserAccount]:
        return [user for uid, user in self.users.items() if uid in self.characters]

    async def get_character(self, user_id: str) -> Character | None:
        character = self.characters.get(user_id)
        return replace(character) if character is not None else None

    async def ensure_stats(self, user_id: str) -> GithubStats:
        stats = self.stats.setdefault(user_id, GithubStats(user_id=user_id))
        return replace(stats)

    async def apply_reconciliation(
        self,
        stats: GithubStats,
        *,
        expected_last_sync_at: Optional[datetime],
        mutate: CharacterMutation,
    ) -> Character | None:
        current = self.stats.get(stats.user_id)
        stored_last_sync = current.last_sync_at if current is not None else None
        if stored_last_sync != expected_last_sync_at:
            return None
        character = self.characters.get(stats.user_id)
        if character is None:
            raise CharacterNotFound(stats.user_id)
        updated = mutate(replace(character))
        self.stats[stats.user_id] = replace(stats)
        self.characters[stats.user_id] = updated
        return replace(updated)

    async def get_achievement(self, code: str) -> Achievement | None:
        achievement = self.achievements.get(code)
        if achievement is None or not achievement.is_active:
            return None
        return achievement

    async def has_achievement(self, user_id: str, code: str) -> bool:
        return (user_id, code) in self.grants

    async def list_achievements_for_user(self, user_id: str) -> Sequence[Achievement]:
        return [self.achievements[code] for (uid, code) in self.grants if uid == user_id and code in self.achievements]

    async def grant_achievement(
        self,
        user_id: str,
        achievement: Achievement,
        *,
        granted_by: Optional[str],
        mutate: CharacterMutation,
    ) -> Character | None:
        key = (user_id, achievement.code)
        if key in self.grants:
            return None
        character = self.characters.get(user_id)
        if character is None:
            raise CharacterNotFound(user_id)
        updated = mutate(replace(character))
        self.grants[key] = granted_by
        self.characters[user_id] = updated
        return replace(updated)

    async def list_guild_ids_for_user(self, user_id: str) -> Sequence[str]:
        return [gid for gid, members in self.members.items() if user_id in members and gid in self.guilds]

    async def list_guild_member_ids(self, guild_id: str) -> Sequence[str]:
        return list(self.members.get(guild_id, []))

    async def sum_character_xp(self, user_ids: Sequence[str]) -> int:
        return sum(self.characters[uid].total_xp for uid in user_ids if uid in self.characters)

    async def update_guild_totals(
        self,
        guild_id: str,
        *,
        total_xp: int,
        total_members: Optional[int] = None,
    ) -> Guild | None:
        guild = self.guilds.get(guild_id)
        if guild is None:
            return None
        guild.total_xp = total_xp
        if total_members is not None:
            guild.total_members = total_members
        return replace(guild)

    async def list_guilds(self) -> Sequence[Guild]:
        return [replace(guild) for guild in self.guilds.values()]

    async def top_characters(self, limit: int) -> Sequence[tuple[UserAccount, Character]]:
        ranked = sorted(
            (c for c in self.characters.values() if c.user_id in self.users),
            key=lambda c: (-c.total_xp, c.user_id),
        )
        return [(self.users[c.user_id], replace(c)) for c in ranked[:limit]]

    async def top_guilds(self, limit: int) -> Sequence[Guild]:
        ranked = sorted(self.guilds.values(), key=lambda g: (-g.total_xp, g.id))
        return [replace(g) for g in ranked[:limit]]
