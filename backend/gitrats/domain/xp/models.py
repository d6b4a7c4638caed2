"""Domain models for character XP and GitHub activity."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class CharacterClass(str, Enum):
    ORC = "orc"
    WARRIOR = "warrior"
    MAGE = "mage"


class ActivityKind(str, Enum):
    COMMITS = "commits"
    LARGE_COMMITS = "large_commits"
    PULL_REQUESTS = "pull_requests"
    CODE_REVIEWS = "code_reviews"
    ISSUES_RESOLVED = "issues_resolved"
    ACHIEVEMENTS = "achievements"
    STARS_AND_FORKS = "stars_and_forks"
    RELEASES = "releases"
    EXTERNAL_REPOS = "external_repos"


# Kinds that are fetched from GitHub and converted to XP.
COUNTED_KINDS: tuple[ActivityKind, ...] = (
    ActivityKind.COMMITS,
    ActivityKind.PULL_REQUESTS,
    ActivityKind.ISSUES_RESOLVED,
)


@dataclass(slots=True, frozen=True)
class ActivityCounts:
    commits: int = 0
    pull_requests: int = 0
    issues: int = 0

    def get(self, kind: ActivityKind) -> int:
        if kind is ActivityKind.COMMITS:
            return self.commits
        if kind is ActivityKind.PULL_REQUESTS:
            return self.pull_requests
        if kind is ActivityKind.ISSUES_RESOLVED:
            return self.issues
        return 0

    def minus(self, other: "ActivityCounts") -> "ActivityCounts":
        """Per-kind difference clamped at zero."""
        return ActivityCounts(
            commits=max(0, self.commits - other.commits),
            pull_requests=max(0, self.pull_requests - other.pull_requests),
            issues=max(0, self.issues - other.issues),
        )

    def as_dict(self) -> dict[str, int]:
        return {"commits": self.commits, "pull_requests": self.pull_requests, "issues": self.issues}


ZERO_ACTIVITY = ActivityCounts()


@dataclass(slots=True)
class UserAccount:
    id: str
    github_login: str
    created_at: Optional[datetime] = None
    github_token: Optional[str] = None


@dataclass(slots=True)
class Character:
    id: str
    user_id: str
    character_class: str
    level: int = 1
    total_xp: int = 0
    current_xp: int = 0
    name: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(slots=True)
class GithubStats:
    """Last-known lifetime snapshot plus the baseline excluded from XP."""

    user_id: str
    total_commits: int = 0
    total_prs: int = 0
    total_issues: int = 0
    baseline_commits: int = 0
    baseline_prs: int = 0
    baseline_issues: int = 0
    last_sync_at: Optional[datetime] = None

    @property
    def totals(self) -> ActivityCounts:
        return ActivityCounts(self.total_commits, self.total_prs, self.total_issues)

    @property
    def baseline(self) -> ActivityCounts:
        return ActivityCounts(self.baseline_commits, self.baseline_prs, self.baseline_issues)

    @property
    def counted(self) -> ActivityCounts:
        """Activity that earns XP: total minus baseline."""
        return self.totals.minus(self.baseline)

    def with_snapshot(
        self,
        totals: ActivityCounts,
        baseline: ActivityCounts,
        synced_at: datetime,
    ) -> "GithubStats":
        return replace(
            self,
            total_commits=totals.commits,
            total_prs=totals.pull_requests,
            total_issues=totals.issues,
            baseline_commits=baseline.commits,
            baseline_prs=baseline.pull_requests,
            baseline_issues=baseline.issues,
            last_sync_at=synced_at,
        )


@dataclass(slots=True)
class Guild:
    id: str
    owner_id: str
    name: str = ""
    total_members: int = 0
    total_xp: int = 0


@dataclass(slots=True, frozen=True)
class Achievement:
    code: str
    name: str
    xp_reward: int
    is_active: bool = True
