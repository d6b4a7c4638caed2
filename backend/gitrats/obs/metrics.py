"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info, Summary


REQUEST_COUNTER = Counter(
	"gitrats_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"gitrats_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SYNC_OUTCOMES = Counter(
	"gitrats_sync_total",
	"GitHub reconciliations by entry state and result",
	["state", "result"],
)

SYNC_WINDOW_DEGRADED = Counter(
	"gitrats_sync_window_degraded_total",
	"Reconciliations that treated the windowed fetch as zero",
)

SYNC_DURATION = Histogram(
	"gitrats_sync_duration_seconds",
	"Wall time of a single-user reconciliation",
	buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

XP_GRANTED = Counter(
	"gitrats_xp_granted_total",
	"XP granted to characters by source",
	["source"],
)

ACHIEVEMENT_GRANTS = Counter(
	"gitrats_achievement_grants_total",
	"Achievement grant attempts by result",
	["result"],
)

GUILD_RECALCULATIONS = Counter(
	"gitrats_guild_recalculations_total",
	"Guild aggregate recomputations",
	["trigger"],
)

BULK_SYNC_USERS = Counter(
	"gitrats_bulk_sync_users_total",
	"Users processed by bulk reconciliation by result",
	["job", "result"],
)

BUILD_INFO = Info("gitrats_build", "Service name, commit and environment of the running build")

REDIS_UP = Gauge("gitrats_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("gitrats_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("gitrats_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("gitrats_postgres_latency_seconds", "Postgres ping latency (seconds)")


def set_build_info(service: str, commit: str, environment: str) -> None:
	BUILD_INFO.info({"service": service, "commit": commit, "environment": environment})


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def record_sync(state: str, result: str, *, duration_seconds: float | None = None) -> None:
	SYNC_OUTCOMES.labels(state=state, result=result).inc()
	if duration_seconds is not None:
		SYNC_DURATION.observe(duration_seconds)


def inc_sync_window_degraded() -> None:
	SYNC_WINDOW_DEGRADED.inc()


def inc_xp_granted(source: str, amount: int) -> None:
	if amount > 0:
		XP_GRANTED.labels(source=source).inc(amount)


def inc_achievement_grant(result: str) -> None:
	ACHIEVEMENT_GRANTS.labels(result=result).inc()


def inc_guild_recalculation(trigger: str, count: int = 1) -> None:
	GUILD_RECALCULATIONS.labels(trigger=trigger).inc(count)


def inc_bulk_sync_user(job: str, result: str) -> None:
	BULK_SYNC_USERS.labels(job=job, result=result).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
