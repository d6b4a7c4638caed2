"""Domain models for GitHub reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from gitrats.domain.xp.calculator import XPBreakdown
from gitrats.domain.xp.models import ActivityCounts


class SyncState(str, Enum):
    NEVER_SYNCED = "never_synced"
    NEEDS_FIX = "needs_fix"
    RECONCILED = "reconciled"


@dataclass(slots=True)
class ReconcileResult:
    user_id: str
    state: SyncState
    xp_granted: int
    previous_level: int
    new_level: int
    total_xp: int
    current_xp: int
    activity: ActivityCounts
    synced_at: datetime
    window_degraded: bool = False

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.previous_level


@dataclass(slots=True)
class BulkReportEntry:
    user_id: str
    username: str
    success: bool
    xp_granted: Optional[int] = None
    total_xp: Optional[int] = None
    error: Optional[str] = None


@dataclass(slots=True)
class SyncStatus:
    user_id: str
    state: SyncState
    last_sync_at: Optional[datetime]
    cooldown_remaining_seconds: int


@dataclass(slots=True)
class RecalculationResult:
    user_id: str
    previous_total_xp: int
    total_xp: int
    level: int
    activity_xp: int
    achievement_xp: int


@dataclass(slots=True)
class XPVerification:
    user_id: str
    current_total_xp: int
    expected_total_xp: int
    current_level: int
    expected_level: int
    activity_xp: int
    achievement_xp: int

    @property
    def matches(self) -> bool:
        return self.current_total_xp == self.expected_total_xp and self.current_level == self.expected_level


@dataclass(slots=True)
class XPAnalysis:
    user_id: str
    character_class: str
    stored_total_xp: int
    counted: ActivityCounts
    breakdown: XPBreakdown
    achievement_xp: int
    achievement_codes: list[str] = field(default_factory=list)

    @property
    def activity_xp(self) -> int:
        return self.breakdown.total

    @property
    def expected_total_xp(self) -> int:
        return self.activity_xp + self.achievement_xp

    @property
    def difference(self) -> int:
        return self.stored_total_xp - self.expected_total_xp
