from datetime import datetime, timedelta, timezone

import pytest

from gitrats.domain.errors import CooldownActive
from gitrats.domain.sync import policy
from gitrats.domain.sync.models import SyncState
from gitrats.domain.xp.models import ActivityCounts, GithubStats

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def test_classify_never_synced():
    assert policy.classify(GithubStats(user_id="u1")) is SyncState.NEVER_SYNCED


def test_classify_needs_fix_when_fully_baselined():
    stats = GithubStats(
        user_id="u1",
        total_commits=50,
        baseline_commits=50,
        last_sync_at=NOW,
    )
    assert policy.classify(stats) is SyncState.NEEDS_FIX


def test_classify_reconciled():
    stats = GithubStats(user_id="u1", total_commits=50, baseline_commits=45, last_sync_at=NOW)
    assert policy.classify(stats) is SyncState.RECONCILED
    # an account with no commits is never flagged
    empty = GithubStats(user_id="u2", last_sync_at=NOW)
    assert policy.classify(empty) is SyncState.RECONCILED


def test_first_sync_window_anchors_on_signup():
    created = NOW - timedelta(days=30)
    start, end = policy.first_sync_window(created, NOW, 7)
    assert start == created - timedelta(days=7)
    assert end == NOW


def test_first_sync_window_clamps_missing_or_future_signup():
    assert policy.first_sync_window(None, NOW, 7) == (NOW - timedelta(days=7), NOW)
    future = NOW + timedelta(days=2)
    assert policy.first_sync_window(future, NOW, 7) == (NOW - timedelta(days=7), NOW)


def test_naive_signup_is_treated_as_utc():
    naive = datetime(2025, 6, 1, 0, 0)
    start, _ = policy.first_sync_window(naive, NOW, 7)
    assert start == datetime(2025, 5, 25, 0, 0, tzinfo=timezone.utc)


def test_lowered_baseline_never_raises():
    stored = ActivityCounts(commits=50, pull_requests=3)
    totals = ActivityCounts(commits=55, pull_requests=3)
    window = ActivityCounts(commits=2)
    assert policy.lowered_baseline(stored, totals, window) == ActivityCounts(commits=50, pull_requests=3)
    assert policy.lowered_baseline(stored, ActivityCounts(commits=50, pull_requests=3), window) == ActivityCounts(
        commits=48, pull_requests=3
    )


def test_carried_baseline_keeps_counted_activity():
    stats = GithubStats(
        user_id="u1", total_commits=50, total_prs=2, total_issues=1, baseline_commits=45, baseline_prs=2, baseline_issues=1
    )
    fresh = ActivityCounts(commits=40, pull_requests=5, issues=0)
    assert policy.carried_baseline(stats, fresh) == ActivityCounts(commits=35, pull_requests=2, issues=0)
    assert policy.carried_baseline(stats, ActivityCounts(commits=3, pull_requests=2, issues=1)) == ActivityCounts(
        commits=0, pull_requests=2, issues=1
    )


def test_cooldown_remaining():
    assert policy.cooldown_remaining(None, NOW, 300) == 0.0
    assert policy.cooldown_remaining(NOW - timedelta(seconds=100), NOW, 300) == 200.0
    assert policy.cooldown_remaining(NOW - timedelta(seconds=400), NOW, 300) == 0.0
    assert policy.cooldown_remaining(NOW, NOW, 0) == 0.0


def test_enforce_cooldown_reports_retry_after():
    with pytest.raises(CooldownActive) as exc_info:
        policy.enforce_cooldown(NOW - timedelta(seconds=299.5), NOW, 300)
    assert exc_info.value.retry_after == 1
    policy.enforce_cooldown(NOW - timedelta(seconds=300), NOW, 300)
