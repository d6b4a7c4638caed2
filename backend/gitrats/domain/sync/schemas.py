"""Pydantic schemas for sync and admin XP endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from gitrats.domain.sync.models import BulkReportEntry, SyncState, XPAnalysis


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ActivityCountsSchema(_FromAttributes):
    commits: int
    pull_requests: int
    issues: int


class ReconcileResultSchema(_FromAttributes):
    user_id: str
    state: SyncState
    xp_granted: int
    previous_level: int
    new_level: int
    leveled_up: bool
    total_xp: int
    current_xp: int
    activity: ActivityCountsSchema
    synced_at: datetime
    window_degraded: bool


class SyncStatusSchema(_FromAttributes):
    user_id: str
    state: SyncState
    last_sync_at: Optional[datetime]
    cooldown_remaining_seconds: int


class BulkReportEntrySchema(_FromAttributes):
    user_id: str
    username: str
    success: bool
    xp_granted: Optional[int] = None
    total_xp: Optional[int] = None
    error: Optional[str] = None


class BulkReportSchema(BaseModel):
    total: int
    succeeded: int
    failed: int
    items: List[BulkReportEntrySchema]

    @classmethod
    def from_entries(cls, entries: List[BulkReportEntry]) -> "BulkReportSchema":
        succeeded = sum(1 for entry in entries if entry.success)
        return cls(
            total=len(entries),
            succeeded=succeeded,
            failed=len(entries) - succeeded,
            items=[BulkReportEntrySchema.model_validate(entry) for entry in entries],
        )


class RecalculationResultSchema(_FromAttributes):
    user_id: str
    previous_total_xp: int
    total_xp: int
    level: int
    activity_xp: int
    achievement_xp: int


class XPVerificationSchema(_FromAttributes):
    user_id: str
    current_total_xp: int
    expected_total_xp: int
    current_level: int
    expected_level: int
    activity_xp: int
    achievement_xp: int
    matches: bool


class KindBreakdownSchema(BaseModel):
    kind: str
    count: int
    base_rate: int
    multiplier: float
    xp: int


class XPAnalysisSchema(BaseModel):
    user_id: str
    character_class: str
    stored_total_xp: int
    counted: ActivityCountsSchema
    breakdown: List[KindBreakdownSchema]
    activity_xp: int
    achievement_xp: int
    achievement_codes: List[str]
    expected_total_xp: int
    difference: int

    @classmethod
    def from_analysis(cls, analysis: XPAnalysis) -> "XPAnalysisSchema":
        return cls(
            user_id=analysis.user_id,
            character_class=analysis.character_class,
            stored_total_xp=analysis.stored_total_xp,
            counted=ActivityCountsSchema.model_validate(analysis.counted),
            breakdown=[
                KindBreakdownSchema(
                    kind=item.kind.value,
                    count=item.count,
                    base_rate=item.base_rate,
                    multiplier=float(item.multiplier),
                    xp=item.xp,
                )
                for item in analysis.breakdown.items
            ],
            activity_xp=analysis.activity_xp,
            achievement_xp=analysis.achievement_xp,
            achievement_codes=list(analysis.achievement_codes),
            expected_total_xp=analysis.expected_total_xp,
            difference=analysis.difference,
        )

