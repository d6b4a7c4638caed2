import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from gitrats.domain.github.client import ActivitySourceError, AuthExpired
from gitrats.domain.sync.repository import InMemoryXPRepository
from gitrats.domain.xp.models import ActivityCounts, Character, UserAccount
from gitrats.infra import postgres
from gitrats.main import app
from gitrats.settings import settings


class StubActivitySource:
	"""Activity source returning canned counts and recording calls."""

	def __init__(
		self,
		lifetime: ActivityCounts | None = None,
		window: ActivityCounts | None = None,
		*,
		lifetime_error: ActivitySourceError | None = None,
		window_error: ActivitySourceError | None = None,
	) -> None:
		self.lifetime = lifetime or ActivityCounts()
		self.window = window or ActivityCounts()
		self.lifetime_error = lifetime_error
		self.window_error = window_error
		self.window_calls: list[tuple[str, datetime, datetime]] = []
		self.lifetime_calls: list[str] = []

	async def get_lifetime_stats(self, identity: str) -> ActivityCounts:
		self.lifetime_calls.append(identity)
		if self.lifetime_error is not None:
			raise self.lifetime_error
		return self.lifetime

	async def get_activity_in_range(self, identity: str, start: datetime, end: datetime) -> ActivityCounts:
		self.window_calls.append((identity, start, end))
		if self.window_error is not None:
			raise self.window_error
		return self.window


class StubSourceFactory:
	def __init__(self, source: StubActivitySource | None = None) -> None:
		self.source = source or StubActivitySource()
		self.per_user: dict[str, StubActivitySource] = {}

	def for_user(self, account: UserAccount) -> StubActivitySource:
		if not account.github_token:
			raise AuthExpired("no token")
		return self.per_user.get(account.id, self.source)


class FixedClock:
	def __init__(self, now: datetime) -> None:
		self.now = now

	def __call__(self) -> datetime:
		return self.now


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from gitrats.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-* headers, which are only accepted in dev mode."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def now() -> datetime:
	return datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now) -> FixedClock:
	return FixedClock(now)


@pytest.fixture
def repo() -> InMemoryXPRepository:
	return InMemoryXPRepository()


@pytest.fixture
def source() -> StubActivitySource:
	return StubActivitySource()


@pytest.fixture
def make_source():
	return StubActivitySource


@pytest.fixture
def sources(source) -> StubSourceFactory:
	return StubSourceFactory(source)


@pytest.fixture
def make_user(repo):
	def _make(
		user_id: str = "u1",
		*,
		login: str | None = None,
		character_class: str = "warrior",
		total_xp: int = 0,
		created_at: datetime | None = None,
		token: str | None = "gho_test",
	) -> UserAccount:
		from gitrats.domain.xp import levels

		user = UserAccount(
			id=user_id,
			github_login=login or f"{user_id}-gh",
			created_at=created_at,
			github_token=token,
		)
		character = levels.with_total_xp(
			Character(id=f"char-{user_id}", user_id=user_id, character_class=character_class),
			total_xp,
		)
		repo.add_user(user, character)
		return user

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
