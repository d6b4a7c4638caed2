import asyncio
import random
from datetime import timedelta
from unittest.mock import patch

import pytest

from gitrats.domain.achievements.service import AchievementService
from gitrats.domain.errors import CooldownActive, CredentialExpired, SourceUnavailable, SyncInProgress, UserNotFound
from gitrats.domain.github.client import AuthExpired, NotFound, RateLimited, SourceError
from gitrats.domain.sync.models import SyncState
from gitrats.domain.sync.service import ReconcileService
from gitrats.domain.xp import levels
from gitrats.domain.xp.models import Achievement, ActivityCounts, GithubStats, Guild


@pytest.fixture
def service(repo, sources, fake_redis, clock):
    return ReconcileService(
        repo,
        sources,
        redis=fake_redis,
        cooldown_seconds=300,
        retro_window_days=7,
        pacing_seconds=0,
        fetch_timeout_seconds=5,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_first_sync_grants_only_the_window(service, repo, source, make_user, now):
    signup = now - timedelta(days=2)
    make_user("u1", character_class="warrior", created_at=signup)
    source.lifetime = ActivityCounts(commits=50, pull_requests=1)
    source.window = ActivityCounts(commits=5, pull_requests=1)

    result = await service.reconcile_user("u1")

    assert result.state is SyncState.NEVER_SYNCED
    assert result.xp_granted == 112
    assert result.activity == ActivityCounts(commits=5, pull_requests=1)
    stats = repo.stats["u1"]
    assert stats.baseline == ActivityCounts(commits=45, pull_requests=0)
    assert stats.totals == ActivityCounts(commits=50, pull_requests=1)
    assert stats.last_sync_at == now
    assert repo.characters["u1"].total_xp == 112
    levels.check_consistent(repo.characters["u1"])
    _, start, end = source.window_calls[0]
    assert start == signup - timedelta(days=7)
    assert end == now


@pytest.mark.asyncio
async def test_steady_state_sync_grants_delta(service, repo, source, make_user, clock, now):
    make_user("u1", character_class="orc", total_xp=200)
    repo.stats["u1"] = GithubStats(
        user_id="u1", total_commits=50, baseline_commits=45, last_sync_at=now - timedelta(hours=1)
    )
    source.lifetime = ActivityCounts(commits=53)

    result = await service.reconcile_user("u1")

    assert result.state is SyncState.RECONCILED
    assert result.xp_granted == 39
    assert result.total_xp == 239
    assert repo.stats["u1"].total_commits == 53
    assert repo.stats["u1"].baseline_commits == 45
    assert source.window_calls == []


@pytest.mark.asyncio
async def test_steady_state_without_new_activity_grants_nothing(service, repo, source, make_user, now):
    make_user("u1", total_xp=200)
    repo.stats["u1"] = GithubStats(
        user_id="u1", total_commits=50, baseline_commits=45, last_sync_at=now - timedelta(hours=1)
    )
    source.lifetime = ActivityCounts(commits=50)

    result = await service.reconcile_user("u1")

    assert result.xp_granted == 0
    assert repo.characters["u1"].total_xp == 200
    assert repo.stats["u1"].last_sync_at == now


@pytest.mark.asyncio
async def test_lowered_upstream_totals_keep_counted_activity(service, repo, source, make_user, now):
    make_user("u1", total_xp=200)
    repo.stats["u1"] = GithubStats(
        user_id="u1", total_commits=50, baseline_commits=45, last_sync_at=now - timedelta(hours=1)
    )
    source.lifetime = ActivityCounts(commits=40)

    result = await service.reconcile_user("u1")

    assert result.xp_granted == 0
    assert repo.characters["u1"].total_xp == 200
    assert repo.stats["u1"].baseline_commits == 35
    assert repo.stats["u1"].total_commits == 40


@pytest.mark.asyncio
async def test_year_rollover_does_not_regrant_counted_window(service, repo, source, make_user, clock, now):
    make_user("u1", character_class="warrior", total_xp=100)
    repo.stats["u1"] = GithubStats(
        user_id="u1",
        total_commits=100,
        total_prs=2,
        baseline_commits=95,
        baseline_prs=2,
        last_sync_at=now - timedelta(hours=1),
    )
    # the oldest calendar year fell out of the lifetime sum
    source.lifetime = ActivityCounts(commits=60, pull_requests=1)
    source.window = ActivityCounts(commits=5)

    first = await service.reconcile_user("u1")
    clock.now = now + timedelta(minutes=10)
    second = await service.reconcile_user("u1")

    assert first.state is SyncState.RECONCILED
    assert first.xp_granted == 0
    assert second.state is SyncState.RECONCILED
    assert second.xp_granted == 0
    assert source.window_calls == []
    assert repo.characters["u1"].total_xp == 100
    assert repo.stats["u1"].counted == ActivityCounts(commits=5)


@pytest.mark.asyncio
async def test_needs_fix_lowers_baseline_and_grants_window(service, repo, source, make_user, now):
    make_user("u1", character_class="warrior")
    repo.stats["u1"] = GithubStats(
        user_id="u1", total_commits=50, baseline_commits=50, last_sync_at=now - timedelta(days=1)
    )
    source.lifetime = ActivityCounts(commits=50)
    source.window = ActivityCounts(commits=2)

    result = await service.reconcile_user("u1")

    assert result.state is SyncState.NEEDS_FIX
    assert result.xp_granted == 20
    assert repo.stats["u1"].baseline_commits == 48
    _, start, end = source.window_calls[0]
    assert end - start == timedelta(days=7)


@pytest.mark.asyncio
async def test_repair_is_idempotent(service, repo, source, make_user, clock, now):
    make_user("u1", character_class="warrior")
    repo.stats["u1"] = GithubStats(
        user_id="u1", total_commits=50, baseline_commits=50, last_sync_at=now - timedelta(days=1)
    )
    source.lifetime = ActivityCounts(commits=50)
    source.window = ActivityCounts(commits=2)

    first = await service.repair_user("u1")
    clock.now = now + timedelta(minutes=1)
    second = await service.repair_user("u1")

    assert first.xp_granted == 20
    assert second.state is SyncState.RECONCILED
    assert second.xp_granted == 0
    assert repo.characters["u1"].total_xp == 20
    assert repo.stats["u1"].baseline_commits == 48


@pytest.mark.asyncio
async def test_credential_expired_writes_nothing(service, repo, source, make_user):
    make_user("u1", total_xp=100)
    source.lifetime_error = AuthExpired("bad token")
    before_stats = repo.stats["u1"]
    before_character = repo.characters["u1"]

    with pytest.raises(CredentialExpired):
        await service.reconcile_user("u1")

    assert repo.stats["u1"] == before_stats
    assert repo.characters["u1"] == before_character


@pytest.mark.asyncio
async def test_missing_token_is_credential_expired(service, make_user):
    make_user("u1", token=None)
    with pytest.raises(CredentialExpired):
        await service.reconcile_user("u1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (RateLimited("slow down"), SourceUnavailable),
        (SourceError("boom"), SourceUnavailable),
        (NotFound("gone"), UserNotFound),
    ],
)
async def test_lifetime_failures_are_translated(service, repo, source, make_user, error, expected):
    make_user("u1")
    source.lifetime_error = error
    with pytest.raises(expected):
        await service.reconcile_user("u1")
    assert repo.stats["u1"].last_sync_at is None


@pytest.mark.asyncio
async def test_lifetime_timeout_writes_nothing(repo, sources, source, fake_redis, clock, make_user):
    service = ReconcileService(repo, sources, redis=fake_redis, fetch_timeout_seconds=0.05, clock=clock)
    make_user("u1", total_xp=100)

    async def _slow(identity):
        await asyncio.sleep(1)
        return ActivityCounts(commits=10)

    source.get_lifetime_stats = _slow

    with pytest.raises(SourceUnavailable):
        await service.reconcile_user("u1")

    assert repo.stats["u1"].last_sync_at is None
    assert repo.characters["u1"].total_xp == 100
    assert source.window_calls == []
    assert await fake_redis.get("sync:lock:u1") is None


@pytest.mark.asyncio
async def test_unknown_user(service):
    with pytest.raises(UserNotFound):
        await service.reconcile_user("ghost")


@pytest.mark.asyncio
async def test_window_failure_degrades_to_zero_then_repairs(service, repo, source, make_user, clock, now):
    make_user("u1", character_class="warrior", created_at=now - timedelta(days=1))
    source.lifetime = ActivityCounts(commits=30)
    source.window_error = SourceError("flaky")

    result = await service.reconcile_user("u1")

    assert result.window_degraded is True
    assert result.xp_granted == 0
    assert repo.stats["u1"].baseline_commits == 30

    source.window_error = None
    source.window = ActivityCounts(commits=4)
    clock.now = now + timedelta(minutes=1)
    repaired = await service.repair_user("u1")

    assert repaired.state is SyncState.NEEDS_FIX
    assert repaired.xp_granted == 40
    assert repo.stats["u1"].baseline_commits == 26


@pytest.mark.asyncio
async def test_cooldown_reports_remaining_seconds(service, source, make_user, clock, now):
    make_user("u1")
    source.lifetime = ActivityCounts(commits=1)
    source.window = ActivityCounts(commits=1)
    await service.reconcile_user("u1")

    with pytest.raises(CooldownActive) as exc_info:
        await service.reconcile_user("u1")
    assert exc_info.value.retry_after == 300

    clock.now = now + timedelta(seconds=100)
    with pytest.raises(CooldownActive) as exc_info:
        await service.reconcile_user("u1")
    assert exc_info.value.retry_after == 200

    clock.now = now + timedelta(seconds=301)
    result = await service.reconcile_user("u1")
    assert result.state is SyncState.RECONCILED


@pytest.mark.asyncio
async def test_held_lock_rejects_concurrent_sync(service, repo, make_user, fake_redis):
    make_user("u1")
    await fake_redis.set("sync:lock:u1", "other-worker", ex=60)

    with pytest.raises(SyncInProgress):
        await service.reconcile_user("u1")

    assert repo.stats["u1"].last_sync_at is None
    assert await fake_redis.get("sync:lock:u1") == "other-worker"


@pytest.mark.asyncio
async def test_lock_is_released_after_failure(service, source, make_user, fake_redis):
    make_user("u1")
    source.lifetime_error = SourceError("down")
    with pytest.raises(SourceUnavailable):
        await service.reconcile_user("u1")
    assert await fake_redis.get("sync:lock:u1") is None


@pytest.mark.asyncio
async def test_stale_snapshot_loses_the_write(service, repo, source, make_user, now):
    make_user("u1")
    source.lifetime = ActivityCounts(commits=3)
    original_apply = repo.apply_reconciliation

    async def _racing_apply(stats, *, expected_last_sync_at, mutate):
        # another worker commits first
        repo.stats["u1"].last_sync_at = now - timedelta(seconds=1)
        return await original_apply(stats, expected_last_sync_at=expected_last_sync_at, mutate=mutate)

    repo.apply_reconciliation = _racing_apply

    with pytest.raises(SyncInProgress):
        await service.reconcile_user("u1")
    assert repo.characters["u1"].total_xp == 0


@pytest.mark.asyncio
async def test_sync_updates_guild_totals(service, repo, source, make_user, now):
    make_user("u1", character_class="warrior", created_at=now)
    make_user("u2", total_xp=100)
    repo.add_guild(Guild(id="g1", owner_id="u2", name="Rats", total_members=2, total_xp=100), ["u1", "u2"])
    source.lifetime = ActivityCounts(commits=5)
    source.window = ActivityCounts(commits=5)

    await service.reconcile_user("u1")

    assert repo.guilds["g1"].total_xp == 150


@pytest.mark.asyncio
async def test_bulk_sync_reports_every_user(service, sources, make_user, make_source):
    make_user("u1", created_at=None)
    make_user("u2", token=None)
    make_user("u3")
    sources.source.lifetime = ActivityCounts(commits=2)
    sources.source.window = ActivityCounts(commits=2)
    sources.per_user["u3"] = make_source()

    async def _explode(identity):
        raise RuntimeError("unexpected")

    sources.per_user["u3"].get_lifetime_stats = _explode

    report = await service.reconcile_all_users()

    by_user = {entry.user_id: entry for entry in report}
    assert [entry.user_id for entry in report] == ["u1", "u2", "u3"]
    assert by_user["u1"].success is True
    assert by_user["u1"].xp_granted == 20
    assert by_user["u1"].total_xp == 20
    assert by_user["u2"].success is False
    assert by_user["u2"].error == "github_credential_expired"
    assert by_user["u3"].success is False
    assert by_user["u3"].error == "internal_error"


@pytest.mark.asyncio
async def test_bulk_sync_ignores_cooldown(service, repo, source, make_user, now):
    make_user("u1")
    repo.stats["u1"] = GithubStats(
        user_id="u1", total_commits=10, baseline_commits=5, last_sync_at=now - timedelta(seconds=10)
    )
    source.lifetime = ActivityCounts(commits=11)

    report = await service.reconcile_all_users()

    assert report[0].success is True
    assert report[0].xp_granted == 10


@pytest.mark.asyncio
async def test_recalculate_resets_to_expected_total(service, repo, source, make_user, now):
    make_user("u1", character_class="warrior", total_xp=5000, created_at=now - timedelta(days=3))
    repo.add_achievement(Achievement(code="contributor", name="Contributor", xp_reward=300))
    repo.grants[("u1", "contributor")] = None
    source.lifetime = ActivityCounts(commits=50)
    source.window = ActivityCounts(commits=5)

    verification = await service.verify_user("u1")
    assert verification.matches is False
    assert verification.expected_total_xp == 350
    assert repo.characters["u1"].total_xp == 5000

    result = await service.recalculate_user("u1")

    assert result.previous_total_xp == 5000
    assert result.total_xp == 350
    assert result.activity_xp == 50
    assert result.achievement_xp == 300
    assert result.level == levels.level_for_xp(350)
    assert repo.stats["u1"].baseline_commits == 45
    levels.check_consistent(repo.characters["u1"])

    after = await service.verify_user("u1")
    assert after.matches is True


@pytest.mark.asyncio
async def test_recalculate_all_users(service, repo, source, make_user):
    make_user("u1", total_xp=10)
    make_user("u2", total_xp=20)
    source.lifetime = ActivityCounts(commits=1)
    source.window = ActivityCounts(commits=1)

    report = await service.recalculate_all_users()

    assert [entry.success for entry in report] == [True, True]
    assert [entry.total_xp for entry in report] == [10, 10]
    assert [entry.xp_granted for entry in report] == [0, -10]


@pytest.mark.asyncio
async def test_recalculate_refuses_degraded_window(service, repo, source, make_user, fake_redis, now):
    make_user("u1", character_class="warrior", total_xp=5000, created_at=now - timedelta(days=3))
    stored = GithubStats(user_id="u1", total_commits=900, baseline_commits=400, last_sync_at=now - timedelta(days=1))
    repo.stats["u1"] = stored
    source.lifetime = ActivityCounts(commits=900)
    source.window_error = SourceError("bad gateway")

    with pytest.raises(SourceUnavailable):
        await service.recalculate_user("u1")

    report = await service.recalculate_all_users()

    assert repo.characters["u1"].total_xp == 5000
    assert repo.stats["u1"] == stored
    assert report[0].success is False
    assert report[0].error == "github_unavailable"
    assert await fake_redis.get("sync:lock:u1") is None


@pytest.mark.asyncio
async def test_random_grant_sequences_keep_levels_consistent(service, repo, source, make_user, clock, now):
    rng = random.Random(1337)
    achievements = AchievementService(repo)
    make_user("u1", character_class="mage", created_at=now - timedelta(days=30))
    source.lifetime = ActivityCounts(commits=40, pull_requests=3, issues=2)
    source.window = ActivityCounts(commits=4, pull_requests=1)
    previous_total = 0

    for step in range(40):
        clock.now = now + timedelta(minutes=10 * step)
        if rng.random() < 0.25:
            code = f"badge-{step}"
            repo.add_achievement(Achievement(code=code, name=code, xp_reward=rng.randint(0, 1500)))
            await achievements.grant_achievement("u1", code)
        else:
            lifetime = source.lifetime
            source.lifetime = ActivityCounts(
                commits=lifetime.commits + rng.randint(0, 60),
                pull_requests=lifetime.pull_requests + rng.randint(0, 5),
                issues=lifetime.issues + rng.randint(0, 5),
            )
            await service.reconcile_user("u1")

        character = repo.characters["u1"]
        levels.check_consistent(character)
        assert character.level == levels.level_for_xp(character.total_xp)
        assert character.total_xp >= previous_total
        previous_total = character.total_xp


@pytest.mark.asyncio
async def test_analyze_explains_stored_xp(service, repo, source, make_user):
    make_user("u1", character_class="warrior", total_xp=442)
    repo.stats["u1"] = GithubStats(user_id="u1", total_commits=53, total_prs=1, baseline_commits=45)
    repo.add_achievement(Achievement(code="contributor", name="Contributor", xp_reward=300))
    repo.grants[("u1", "contributor")] = None

    analysis = await service.analyze_user("u1")

    assert analysis.counted == ActivityCounts(commits=8, pull_requests=1)
    assert analysis.activity_xp == 142
    assert analysis.achievement_xp == 300
    assert analysis.achievement_codes == ["contributor"]
    assert analysis.difference == 0
    assert source.lifetime_calls == []


@pytest.mark.asyncio
async def test_sync_status(service, source, make_user, clock, now):
    make_user("u1")
    status = await service.sync_status("u1")
    assert status.state is SyncState.NEVER_SYNCED
    assert status.cooldown_remaining_seconds == 0

    source.lifetime = ActivityCounts(commits=1)
    source.window = ActivityCounts(commits=1)
    await service.reconcile_user("u1")
    clock.now = now + timedelta(seconds=60.5)

    status = await service.sync_status("u1")
    assert status.state is SyncState.RECONCILED
    assert status.last_sync_at == now
    assert status.cooldown_remaining_seconds == 240


@pytest.mark.asyncio
async def test_outcomes_are_recorded_in_metrics(service, source, make_user):
    make_user("u1")
    source.lifetime_error = AuthExpired("revoked")

    with patch("gitrats.domain.sync.service.metrics") as metrics_mock:
        with pytest.raises(CredentialExpired):
            await service.reconcile_user("u1")

    metrics_mock.record_sync.assert_called_once_with("never_synced", "github_credential_expired")
