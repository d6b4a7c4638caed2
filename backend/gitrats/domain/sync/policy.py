"""Pure rules for baseline state, windows and cooldown."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from gitrats.domain.errors import CooldownActive
from gitrats.domain.sync.models import SyncState
from gitrats.domain.xp.models import ActivityCounts, GithubStats


def classify(stats: GithubStats) -> SyncState:
    """Detect the reconciliation state from persisted stats.

    NEEDS_FIX flags accounts that were synced but never received their
    retroactive window: commits and PRs are fully baselined while commits exist.
    """
    if stats.last_sync_at is None:
        return SyncState.NEVER_SYNCED
    if (
        stats.baseline_commits == stats.total_commits
        and stats.baseline_prs == stats.total_prs
        and stats.total_commits > 0
    ):
        return SyncState.NEEDS_FIX
    return SyncState.RECONCILED


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def signup_anchor(created_at: Optional[datetime], now: datetime) -> datetime:
    """Account creation time, clamped to now when missing or in the future."""
    if created_at is None:
        return now
    created_at = _aware(created_at)
    return now if created_at > now else created_at


def first_sync_window(created_at: Optional[datetime], now: datetime, days: int) -> tuple[datetime, datetime]:
    return signup_anchor(created_at, now) - timedelta(days=days), now


def trailing_window(now: datetime, days: int) -> tuple[datetime, datetime]:
    return now - timedelta(days=days), now


def baseline_excluding(totals: ActivityCounts, window: ActivityCounts) -> ActivityCounts:
    """Everything except the windowed activity, never negative."""
    return totals.minus(window)


def lowered_baseline(stored: ActivityCounts, totals: ActivityCounts, window: ActivityCounts) -> ActivityCounts:
    """Repair baseline: only ever lowers the stored baseline."""
    candidate = baseline_excluding(totals, window)
    return ActivityCounts(
        commits=min(stored.commits, candidate.commits),
        pull_requests=min(stored.pull_requests, candidate.pull_requests),
        issues=min(stored.issues, candidate.issues),
    )


def carried_baseline(stats: GithubStats, fresh: ActivityCounts) -> ActivityCounts:
    """Baseline after upstream totals move, keeping already-counted activity.

    Rising totals leave the baseline alone. Falling totals lower it so that
    `fresh - baseline` still equals what was already counted.
    """
    baseline, counted = stats.baseline, stats.counted

    def _carry(stored: int, already: int, total: int) -> int:
        return max(0, min(stored, total - already))

    return ActivityCounts(
        commits=_carry(baseline.commits, counted.commits, fresh.commits),
        pull_requests=_carry(baseline.pull_requests, counted.pull_requests, fresh.pull_requests),
        issues=_carry(baseline.issues, counted.issues, fresh.issues),
    )


def cooldown_remaining(last_sync_at: Optional[datetime], now: datetime, cooldown_seconds: int) -> float:
    if last_sync_at is None or cooldown_seconds <= 0:
        return 0.0
    elapsed = (now - _aware(last_sync_at)).total_seconds()
    return max(0.0, cooldown_seconds - elapsed)


def enforce_cooldown(last_sync_at: Optional[datetime], now: datetime, cooldown_seconds: int) -> None:
    remaining = cooldown_remaining(last_sync_at, now, cooldown_seconds)
    if remaining > 0:
        raise CooldownActive(remaining)
