"""Redis connection management.

Provides a stable proxy object so imports like `from gitrats.infra.redis import redis_client`
always reference the same proxy instance. The underlying client can be swapped at
runtime (e.g., to fakeredis in tests) without breaking previously imported references.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import uuid4

import redis.asyncio as redis

from gitrats.settings import settings


class RedisProxy:
	"""Forwards attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


@asynccontextmanager
async def held_lock(
	key: str,
	ttl_seconds: int,
	*,
	client: redis.Redis | RedisProxy | None = None,
) -> AsyncIterator[Optional[str]]:
	"""Hold ``key`` via SET NX EX for the duration of the block.

	Yields the owner token, or None when someone else holds the key. The key is
	only deleted while it still carries our token, so an expired lock re-taken
	by another worker is left alone.
	"""
	target = client if client is not None else redis_client
	token = uuid4().hex
	if not await target.set(key, token, nx=True, ex=ttl_seconds):
		yield None
		return
	try:
		yield token
	finally:
		if await target.get(key) == token:
			await target.delete(key)
