"""AsyncPG pool management for the backend."""

from __future__ import annotations

import asyncio
from time import perf_counter
from typing import Optional

import asyncpg

from gitrats.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			command_timeout=settings.postgres_command_timeout_seconds,
			server_settings={"application_name": settings.service_name},
		)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


async def ping(timeout: float) -> float:
	"""Round-trip ``SELECT 1`` on a pooled connection; returns latency in seconds."""
	pool = await get_pool()
	started = perf_counter()
	async with pool.acquire() as conn:
		await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
	return perf_counter() - started
