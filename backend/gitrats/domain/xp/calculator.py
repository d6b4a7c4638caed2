"""Activity XP calculator."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from types import MappingProxyType
from typing import Mapping

from gitrats.domain.xp.classes import multiplier_for
from gitrats.domain.xp.models import COUNTED_KINDS, ActivityCounts, ActivityKind, CharacterClass

BASE_RATES: Mapping[ActivityKind, int] = MappingProxyType(
    {
        ActivityKind.COMMITS: 10,
        ActivityKind.PULL_REQUESTS: 50,
        ActivityKind.ISSUES_RESOLVED: 25,
    }
)


def xp_for(kind: ActivityKind, count: int, character_class: CharacterClass | str | None) -> int:
    """floor(count * base rate * class multiplier); kinds without a base rate earn nothing."""
    if count <= 0:
        return 0
    rate = BASE_RATES.get(kind, 0)
    raw = Decimal(count * rate) * multiplier_for(character_class, kind)
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))


@dataclass(slots=True, frozen=True)
class KindBreakdown:
    kind: ActivityKind
    count: int
    base_rate: int
    multiplier: Decimal
    xp: int


@dataclass(slots=True, frozen=True)
class XPBreakdown:
    items: tuple[KindBreakdown, ...]

    @property
    def total(self) -> int:
        return sum(item.xp for item in self.items)


def breakdown(counts: ActivityCounts, character_class: CharacterClass | str | None) -> XPBreakdown:
    items = tuple(
        KindBreakdown(
            kind=kind,
            count=counts.get(kind),
            base_rate=BASE_RATES[kind],
            multiplier=multiplier_for(character_class, kind),
            xp=xp_for(kind, counts.get(kind), character_class),
        )
        for kind in COUNTED_KINDS
    )
    return XPBreakdown(items=items)


def activity_xp(counts: ActivityCounts, character_class: CharacterClass | str | None) -> int:
    return breakdown(counts, character_class).total
