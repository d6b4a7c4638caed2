"""Liveness and readiness probes.

Readiness covers the two stores every sync touches: Redis for the per-user
lock and Postgres for stats and characters. GitHub is deliberately not probed;
its outages surface as ``github_unavailable`` on the sync itself.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Tuple

from gitrats.infra import postgres
from gitrats.infra.redis import redis_client
from gitrats.obs import metrics

LOGGER = logging.getLogger(__name__)

REDIS_TIMEOUT_SECONDS = 0.2
POSTGRES_TIMEOUT_SECONDS = 0.3


async def _redis_ping() -> float:
	started = perf_counter()
	await asyncio.wait_for(redis_client.ping(), timeout=REDIS_TIMEOUT_SECONDS)
	return perf_counter() - started


async def _probe(
	name: str,
	check: Callable[[], Awaitable[float]],
	mark: Callable[..., None],
) -> Dict[str, Any]:
	try:
		latency = await check()
	except Exception as exc:  # pragma: no cover - depends on runtime
		mark(False)
		LOGGER.warning("readiness_check_failed", extra={"dependency": name}, exc_info=True)
		return {"ok": False, "error": exc.__class__.__name__}
	mark(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state, postgres_state = await asyncio.gather(
		_probe("redis", _redis_ping, metrics.mark_redis),
		_probe("postgres", lambda: postgres.ping(POSTGRES_TIMEOUT_SECONDS), metrics.mark_postgres),
	)
	ok = redis_state["ok"] and postgres_state["ok"]
	return (
		200 if ok else 503,
		{"status": "ok" if ok else "degraded", "checks": {"redis": redis_state, "postgres": postgres_state}},
	)
