"""Shared httpx client for outbound GitHub calls."""

from __future__ import annotations

from typing import Optional

import httpx

from gitrats.settings import settings

_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
	global _client
	if _client is None:
		_client = httpx.AsyncClient(
			timeout=httpx.Timeout(settings.github_timeout_seconds),
			headers={"User-Agent": settings.github_user_agent},
		)
	return _client


def set_http_client(client: Optional[httpx.AsyncClient]) -> None:
	global _client
	_client = client


async def close_http_client() -> None:
	global _client
	if _client is not None:
		await _client.aclose()
		_client = None
