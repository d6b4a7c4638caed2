"""GitHub contribution counts over the GraphQL API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Protocol

import httpx

from gitrats.domain.xp.models import ActivityCounts, UserAccount


class ActivitySourceError(RuntimeError):
    """Base class for activity source failures."""


class AuthExpired(ActivitySourceError):
    """Credential rejected by GitHub."""


class RateLimited(ActivitySourceError):
    def __init__(self, message: str, *, reset_at: datetime | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class NotFound(ActivitySourceError):
    """Login does not resolve to a GitHub user."""


class SourceError(ActivitySourceError):
    """Transport failure, timeout or unexpected response."""


class ActivitySource(Protocol):
    """Interface for per-user contribution counts."""

    async def get_lifetime_stats(self, identity: str) -> ActivityCounts:
        ...

    async def get_activity_in_range(self, identity: str, start: datetime, end: datetime) -> ActivityCounts:
        ...


_COLLECTION_FIELDS = """
      totalCommitContributions
      totalPullRequestContributions
      totalIssueContributions
"""

_RANGE_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {%s    }
  }
}
""" % _COLLECTION_FIELDS

# contributionsCollection rejects spans longer than a year
_MAX_RANGE = timedelta(days=365)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _lifetime_query(years: list[int]) -> str:
    parts = []
    for year in years:
        parts.append(
            f'    y{year}: contributionsCollection(from: "{year}-01-01T00:00:00Z", to: "{year}-12-31T23:59:59Z") {{'
            f"{_COLLECTION_FIELDS}    }}\n"
        )
    return "query($login: String!) {\n  user(login: $login) {\n" + "".join(parts) + "  }\n}\n"


def _counts(collection: Mapping[str, Any] | None) -> ActivityCounts:
    if not collection:
        return ActivityCounts()
    return ActivityCounts(
        commits=int(collection.get("totalCommitContributions") or 0),
        pull_requests=int(collection.get("totalPullRequestContributions") or 0),
        issues=int(collection.get("totalIssueContributions") or 0),
    )


def _sum(collections: list[ActivityCounts]) -> ActivityCounts:
    return ActivityCounts(
        commits=sum(item.commits for item in collections),
        pull_requests=sum(item.pull_requests for item in collections),
        issues=sum(item.issues for item in collections),
    )


def _rate_limit_reset(response: httpx.Response) -> datetime | None:
    raw = response.headers.get("x-ratelimit-reset")
    if not raw:
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except ValueError:
        return None


@dataclass
class GitHubActivitySource(ActivitySource):
    """Reads contribution totals for one access token."""

    http: httpx.AsyncClient
    token: str
    graphql_url: str = "https://api.github.com/graphql"
    user_agent: str = "GitRats/1.0"
    request_timeout: float = 10.0
    history_years: int = 4
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    async def get_lifetime_stats(self, identity: str) -> ActivityCounts:
        current_year = self.clock().year
        years = [current_year - offset for offset in range(max(1, self.history_years))]
        data = await self._query(_lifetime_query(years), {"login": identity})
        user = data["user"]
        return _sum([_counts(user.get(f"y{year}")) for year in years])

    async def get_activity_in_range(self, identity: str, start: datetime, end: datetime) -> ActivityCounts:
        if end <= start:
            return ActivityCounts()
        if end - start > _MAX_RANGE:
            start = end - _MAX_RANGE
        data = await self._query(_RANGE_QUERY, {"login": identity, "from": _iso(start), "to": _iso(end)})
        return _counts(data["user"].get("contributionsCollection"))

    async def _query(self, query: str, variables: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = await self.http.post(
                self.graphql_url,
                json={"query": query, "variables": dict(variables)},
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "User-Agent": self.user_agent,
                    "Accept": "application/json",
                },
                timeout=self.request_timeout,
            )
        except httpx.TimeoutException as exc:
            raise SourceError("github request timed out") from exc
        except httpx.HTTPError as exc:
            raise SourceError(f"github transport error: {exc.__class__.__name__}") from exc

        if response.status_code == 401:
            raise AuthExpired("github rejected the access token")
        if response.status_code == 429 or (
            response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise RateLimited("github rate limit exceeded", reset_at=_rate_limit_reset(response))
        if response.status_code >= 400:
            raise SourceError(f"github responded {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceError("github returned invalid json") from exc
        self._raise_for_graphql_errors(payload.get("errors") or [])
        data = payload.get("data") or {}
        if not data.get("user"):
            raise NotFound(f"github user {variables.get('login')!r} not found")
        return data

    @staticmethod
    def _raise_for_graphql_errors(errors: list[Mapping[str, Any]]) -> None:
        if not errors:
            return
        types = {str(err.get("type") or "").upper() for err in errors}
        message = "; ".join(str(err.get("message") or "") for err in errors)
        if "UNAUTHORIZED" in types or "FORBIDDEN" in types:
            raise AuthExpired(message)
        if "RATE_LIMITED" in types:
            raise RateLimited(message)
        if "NOT_FOUND" in types:
            raise NotFound(message)
        raise SourceError(message or "github graphql error")


class ActivitySourceFactory(Protocol):
    def for_user(self, account: UserAccount) -> ActivitySource:
        ...


@dataclass
class GitHubSourceFactory(ActivitySourceFactory):
    """Builds a per-user source sharing one connection pool."""

    http: httpx.AsyncClient
    graphql_url: str = "https://api.github.com/graphql"
    user_agent: str = "GitRats/1.0"
    request_timeout: float = 10.0
    history_years: int = 4

    def for_user(self, account: UserAccount) -> GitHubActivitySource:
        if not account.github_token:
            raise AuthExpired(f"no github token stored for {account.id}")
        return GitHubActivitySource(
            http=self.http,
            token=account.github_token,
            graphql_url=self.graphql_url,
            user_agent=self.user_agent,
            request_timeout=self.request_timeout,
            history_years=self.history_years,
        )
