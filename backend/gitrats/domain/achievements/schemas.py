"""Pydantic schemas for achievement grants."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class GrantAchievementRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=64)


class AchievementGrantSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    code: str
    granted: bool
    new_total_xp: Optional[int] = None
    new_level: Optional[int] = None
