"""Pydantic schemas for guild maintenance."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict


class GuildRecountSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    guild_id: str
    previous_total_xp: int
    total_xp: int
    previous_total_members: int
    total_members: int
    changed: bool


class GuildRecountReportSchema(BaseModel):
    guilds: int
    changed: int
    items: List[GuildRecountSchema]
