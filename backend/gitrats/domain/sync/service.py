"""GitHub activity reconciliation.

Decides how much of a user's GitHub history earns XP and keeps that decision
stable across repeated syncs:

* never synced: lifetime totals minus the activity since signup (less a
  retroactive window) become the baseline; only the window earns XP.
* needs fix: an earlier sync baselined everything; the trailing window is
  carved out of the baseline and granted once.
* reconciled: XP for the increase in lifetime totals since the last sync.

Each reconciliation writes stats and character together or not at all, then
rebuilds the totals of every guild the user belongs to.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable

from redis.asyncio import Redis

from gitrats.domain.errors import (
    CharacterNotFound,
    CooldownActive,
    CredentialExpired,
    SourceUnavailable,
    SyncInProgress,
    UserNotFound,
    XPEngineError,
)
from gitrats.domain.github.client import (
    ActivitySource,
    ActivitySourceError,
    ActivitySourceFactory,
    AuthExpired,
    NotFound,
)
from gitrats.domain.guilds.service import GuildService
from gitrats.domain.sync import policy
from gitrats.domain.sync.models import (
    BulkReportEntry,
    ReconcileResult,
    RecalculationResult,
    SyncState,
    SyncStatus,
    XPAnalysis,
    XPVerification,
)
from gitrats.domain.sync.repository import XPRepository
from gitrats.domain.xp import levels
from gitrats.domain.xp.calculator import activity_xp, breakdown
from gitrats.domain.xp.models import ZERO_ACTIVITY, ActivityCounts, Character, GithubStats, UserAccount
from gitrats.infra.redis import RedisProxy, held_lock, redis_client
from gitrats.obs import metrics
from gitrats.settings import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _translate(exc: ActivitySourceError) -> XPEngineError:
    if isinstance(exc, AuthExpired):
        return CredentialExpired(str(exc))
    if isinstance(exc, NotFound):
        return UserNotFound(str(exc))
    return SourceUnavailable(str(exc))


@dataclass(slots=True)
class _ExpectedXP:
    lifetime: ActivityCounts
    baseline: ActivityCounts
    activity_xp: int
    achievement_xp: int
    window_degraded: bool

    @property
    def total(self) -> int:
        return self.activity_xp + self.achievement_xp


class ReconcileService:
    """Per-user and bulk reconciliation against an injected store and source."""

    def __init__(
        self,
        repository: XPRepository,
        sources: ActivitySourceFactory,
        *,
        redis: Redis | RedisProxy | None = None,
        guilds: GuildService | None = None,
        cooldown_seconds: int | None = None,
        retro_window_days: int | None = None,
        lock_ttl_seconds: int | None = None,
        pacing_seconds: float | None = None,
        fetch_timeout_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
        lock_prefix: str = "sync:lock",
    ) -> None:
        self._repo = repository
        self._sources = sources
        self._redis = redis if redis is not None else redis_client
        self._guilds = guilds or GuildService(repository)
        self._cooldown = settings.sync_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        self._window_days = settings.retro_window_days if retro_window_days is None else retro_window_days
        self._lock_ttl = settings.sync_lock_ttl_seconds if lock_ttl_seconds is None else lock_ttl_seconds
        self._pacing = settings.bulk_pacing_seconds if pacing_seconds is None else pacing_seconds
        self._fetch_timeout = (
            settings.github_timeout_seconds * 2 if fetch_timeout_seconds is None else fetch_timeout_seconds
        )
        self._clock = clock
        self._lock_prefix = lock_prefix

    # -- public operations ------------------------------------------------
    async def reconcile_user(self, user_id: str, *, enforce_cooldown: bool = True) -> ReconcileResult:
        started = time.perf_counter()
        user, character, stats = await self._load(user_id)
        state = policy.classify(stats)
        try:
            if enforce_cooldown:
                policy.enforce_cooldown(stats.last_sync_at, self._clock(), self._cooldown)
            async with self._user_lock(user_id):
                result = await self._reconcile_locked(user, character, stats, state)
        except XPEngineError as exc:
            metrics.record_sync(state.value, exc.code)
            if not isinstance(exc, CooldownActive):
                logger.warning(
                    "github_sync_failed",
                    extra={"target_user_id": user_id, "state": state.value, "error": exc.code},
                )
            raise
        metrics.record_sync(state.value, "ok", duration_seconds=time.perf_counter() - started)
        return result

    async def repair_user(self, user_id: str) -> ReconcileResult:
        """Run the needs-fix path if, and only if, the account is flagged."""
        user, character, stats = await self._load(user_id)
        state = policy.classify(stats)
        if state is not SyncState.NEEDS_FIX:
            return ReconcileResult(
                user_id=user_id,
                state=state,
                xp_granted=0,
                previous_level=character.level,
                new_level=character.level,
                total_xp=character.total_xp,
                current_xp=character.current_xp,
                activity=ZERO_ACTIVITY,
                synced_at=stats.last_sync_at or self._clock(),
            )
        async with self._user_lock(user_id):
            result = await self._reconcile_locked(user, character, stats, state)
        metrics.record_sync(state.value, "ok")
        return result

    async def reconcile_all_users(self) -> list[BulkReportEntry]:
        """Reconcile every user; failures are recorded, never raised."""

        async def _one(user_id: str) -> tuple[int, int]:
            result = await self.reconcile_user(user_id, enforce_cooldown=False)
            return result.xp_granted, result.total_xp

        return await self._run_bulk("sync", _one)

    async def recalculate_user(self, user_id: str) -> RecalculationResult:
        """Recompute XP from scratch: windowed activity plus achievement rewards.

        The only path allowed to lower ``total_xp``. Refused with
        ``SourceUnavailable`` when the activity window cannot be fetched.
        """
        user, character, stats = await self._load(user_id)
        now = self._clock()
        async with self._user_lock(user_id):
            expected = await self._expected_xp(user, character, now)
            if expected.window_degraded:
                raise SourceUnavailable("activity window unavailable")
            new_stats = stats.with_snapshot(expected.lifetime, expected.baseline, now)

            def _reset(current: Character) -> Character:
                updated = levels.with_total_xp(current, expected.total)
                levels.check_consistent(updated)
                return updated

            updated = await self._repo.apply_reconciliation(
                new_stats, expected_last_sync_at=stats.last_sync_at, mutate=_reset
            )
            if updated is None:
                raise SyncInProgress(user_id)
        await self._guilds.recalculate_for_user(user_id, trigger="recalculation")
        metrics.inc_xp_granted("recalculation", updated.total_xp - character.total_xp)
        logger.info(
            "xp_recalculated",
            extra={
                "target_user_id": user_id,
                "previous_total_xp": character.total_xp,
                "total_xp": updated.total_xp,
                "activity_xp": expected.activity_xp,
                "achievement_xp": expected.achievement_xp,
            },
        )
        return RecalculationResult(
            user_id=user_id,
            previous_total_xp=character.total_xp,
            total_xp=updated.total_xp,
            level=updated.level,
            activity_xp=expected.activity_xp,
            achievement_xp=expected.achievement_xp,
        )

    async def recalculate_all_users(self) -> list[BulkReportEntry]:
        async def _one(user_id: str) -> tuple[int, int]:
            result = await self.recalculate_user(user_id)
            return result.total_xp - result.previous_total_xp, result.total_xp

        return await self._run_bulk("recalculate", _one)

    async def verify_user(self, user_id: str) -> XPVerification:
        """Dry run of ``recalculate_user``; nothing is written."""
        user, character, _ = await self._load(user_id)
        expected = await self._expected_xp(user, character, self._clock())
        return XPVerification(
            user_id=user_id,
            current_total_xp=character.total_xp,
            expected_total_xp=expected.total,
            current_level=character.level,
            expected_level=levels.level_for_xp(expected.total),
            activity_xp=expected.activity_xp,
            achievement_xp=expected.achievement_xp,
        )

    async def analyze_user(self, user_id: str) -> XPAnalysis:
        """Explain stored XP from persisted counts; makes no upstream calls."""
        _, character, stats = await self._load(user_id)
        achievements = await self._repo.list_achievements_for_user(user_id)
        counted = stats.counted
        return XPAnalysis(
            user_id=user_id,
            character_class=character.character_class,
            stored_total_xp=character.total_xp,
            counted=counted,
            breakdown=breakdown(counted, character.character_class),
            achievement_xp=sum(a.xp_reward for a in achievements),
            achievement_codes=[a.code for a in achievements],
        )

    async def sync_status(self, user_id: str) -> SyncStatus:
        _, _, stats = await self._load(user_id)
        remaining = policy.cooldown_remaining(stats.last_sync_at, self._clock(), self._cooldown)
        return SyncStatus(
            user_id=user_id,
            state=policy.classify(stats),
            last_sync_at=stats.last_sync_at,
            cooldown_remaining_seconds=math.ceil(remaining),
        )

    # -- internals ----------------------------------------------------------
    async def _load(self, user_id: str) -> tuple[UserAccount, Character, GithubStats]:
        user = await self._repo.get_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        character = await self._repo.get_character(user_id)
        if character is None:
            raise CharacterNotFound(user_id)
        stats = await self._repo.ensure_stats(user_id)
        return user, character, stats

    async def _reconcile_locked(
        self,
        user: UserAccount,
        character: Character,
        stats: GithubStats,
        state: SyncState,
    ) -> ReconcileResult:
        now = self._clock()
        source = self._source_for(user)
        fresh = await self._fetch_lifetime(source, user)
        degraded = False

        if state is SyncState.NEVER_SYNCED:
            start, end = policy.first_sync_window(user.created_at, now, self._window_days)
            window, degraded = await self._fetch_window(source, user, start, end)
            baseline = policy.baseline_excluding(fresh, window)
            delta = fresh.minus(baseline)
        elif state is SyncState.NEEDS_FIX:
            start, end = policy.trailing_window(now, self._window_days)
            window, degraded = await self._fetch_window(source, user, start, end)
            baseline = policy.lowered_baseline(stats.baseline, fresh, window)
            delta = fresh.minus(baseline).minus(stats.counted)
        else:
            baseline = policy.carried_baseline(stats, fresh)
            delta = fresh.minus(stats.totals)

        granted = activity_xp(delta, character.character_class)

        def _grant(current: Character) -> Character:
            updated = levels.with_total_xp(current, current.total_xp + granted)
            levels.check_consistent(updated)
            return updated

        updated = await self._repo.apply_reconciliation(
            stats.with_snapshot(fresh, baseline, now),
            expected_last_sync_at=stats.last_sync_at,
            mutate=_grant,
        )
        if updated is None:
            raise SyncInProgress(user.id)

        await self._guilds.recalculate_for_user(user.id, trigger="sync")
        metrics.inc_xp_granted("sync", granted)
        previous_level = levels.level_for_xp(updated.total_xp - granted)
        logger.info(
            "github_sync_completed",
            extra={
                "target_user_id": user.id,
                "state": state.value,
                "xp_granted": granted,
                "activity": delta.as_dict(),
                "total_xp": updated.total_xp,
                "level": updated.level,
                "window_degraded": degraded,
            },
        )
        return ReconcileResult(
            user_id=user.id,
            state=state,
            xp_granted=granted,
            previous_level=previous_level,
            new_level=updated.level,
            total_xp=updated.total_xp,
            current_xp=updated.current_xp,
            activity=delta,
            synced_at=now,
            window_degraded=degraded,
        )

    async def _expected_xp(self, user: UserAccount, character: Character, now: datetime) -> _ExpectedXP:
        source = self._source_for(user)
        lifetime = await self._fetch_lifetime(source, user)
        start, end = policy.first_sync_window(user.created_at, now, self._window_days)
        window, degraded = await self._fetch_window(source, user, start, end)
        baseline = policy.baseline_excluding(lifetime, window)
        achievements = await self._repo.list_achievements_for_user(user.id)
        return _ExpectedXP(
            lifetime=lifetime,
            baseline=baseline,
            activity_xp=activity_xp(lifetime.minus(baseline), character.character_class),
            achievement_xp=sum(a.xp_reward for a in achievements),
            window_degraded=degraded,
        )

    def _source_for(self, user: UserAccount) -> ActivitySource:
        try:
            return self._sources.for_user(user)
        except ActivitySourceError as exc:
            raise _translate(exc) from exc

    async def _fetch_lifetime(self, source: ActivitySource, user: UserAccount) -> ActivityCounts:
        try:
            return await asyncio.wait_for(
                source.get_lifetime_stats(user.github_login), timeout=self._fetch_timeout
            )
        except ActivitySourceError as exc:
            raise _translate(exc) from exc
        except asyncio.TimeoutError as exc:
            raise SourceUnavailable("lifetime fetch timed out") from exc

    async def _fetch_window(
        self,
        source: ActivitySource,
        user: UserAccount,
        start: datetime,
        end: datetime,
    ) -> tuple[ActivityCounts, bool]:
        """Windowed counts, or zero with ``degraded=True`` when the fetch fails."""
        try:
            window = await asyncio.wait_for(
                source.get_activity_in_range(user.github_login, start, end), timeout=self._fetch_timeout
            )
            return window, False
        except (ActivitySourceError, asyncio.TimeoutError) as exc:
            metrics.inc_sync_window_degraded()
            logger.warning(
                "github_sync_window_degraded",
                extra={"target_user_id": user.id, "reason": exc.__class__.__name__},
            )
            return ZERO_ACTIVITY, True

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        key = f"{self._lock_prefix}:{user_id}"
        async with held_lock(key, self._lock_ttl, client=self._redis) as token:
            if token is None:
                raise SyncInProgress(user_id)
            yield

    async def _run_bulk(
        self,
        job: str,
        operation: Callable[[str], Awaitable[tuple[int, int]]],
    ) -> list[BulkReportEntry]:
        report: list[BulkReportEntry] = []
        try:
            users = await self._repo.list_users()
        except Exception:
            logger.exception("github_bulk_sync_list_failed", extra={"job": job})
            return report
        for index, user in enumerate(users):
            if index and self._pacing > 0:
                await asyncio.sleep(self._pacing)
            entry = BulkReportEntry(user_id=user.id, username=user.github_login, success=False)
            try:
                entry.xp_granted, entry.total_xp = await operation(user.id)
                entry.success = True
            except XPEngineError as exc:
                entry.error = exc.code
                logger.warning(
                    "github_bulk_sync_user_failed",
                    extra={"job": job, "target_user_id": user.id, "error": exc.code},
                )
            except Exception:
                entry.error = "internal_error"
                logger.exception("github_bulk_sync_user_failed", extra={"job": job, "target_user_id": user.id})
            metrics.inc_bulk_sync_user(job, "ok" if entry.success else "error")
            report.append(entry)
        return report
