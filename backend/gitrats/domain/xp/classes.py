"""Per-class XP multipliers.

Values are fixed at grant time; editing the table never rewrites XP that is
already persisted. Every multiplier stays in ``(0, MAX_MULTIPLIER]``.
"""

from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from gitrats.domain.xp.models import ActivityKind, CharacterClass

MAX_MULTIPLIER = Decimal("2.0")
DEFAULT_MULTIPLIER = Decimal("1.0")


def _table(**values: str) -> Mapping[ActivityKind, Decimal]:
    return MappingProxyType({ActivityKind(key): Decimal(value) for key, value in values.items()})


CLASS_MULTIPLIERS: Mapping[CharacterClass, Mapping[ActivityKind, Decimal]] = MappingProxyType(
    {
        CharacterClass.ORC: _table(
            commits="1.3",
            large_commits="1.4",
            pull_requests="1.0",
            code_reviews="0.9",
            issues_resolved="0.95",
            achievements="1.0",
            stars_and_forks="0.85",
            releases="1.2",
            external_repos="0.95",
        ),
        CharacterClass.WARRIOR: _table(
            commits="1.0",
            large_commits="1.0",
            pull_requests="1.25",
            code_reviews="1.3",
            issues_resolved="1.15",
            achievements="1.0",
            stars_and_forks="1.0",
            releases="1.0",
            external_repos="1.15",
        ),
        CharacterClass.MAGE: _table(
            commits="0.95",
            large_commits="0.9",
            pull_requests="1.15",
            code_reviews="1.15",
            issues_resolved="1.4",
            achievements="1.3",
            stars_and_forks="1.3",
            releases="1.15",
            external_repos="1.05",
        ),
    }
)


def _coerce_class(character_class: CharacterClass | str | None) -> CharacterClass | None:
    if isinstance(character_class, CharacterClass):
        return character_class
    try:
        return CharacterClass(str(character_class).strip().lower())
    except ValueError:
        return None


def _coerce_kind(kind: ActivityKind | str) -> ActivityKind | None:
    if isinstance(kind, ActivityKind):
        return kind
    try:
        return ActivityKind(kind)
    except ValueError:
        return None


def multiplier_for(character_class: CharacterClass | str | None, kind: ActivityKind | str) -> Decimal:
    """Multiplier for a class/activity pair; 1.0 for anything not in the table."""
    cls = _coerce_class(character_class)
    activity = _coerce_kind(kind)
    if cls is None or activity is None:
        return DEFAULT_MULTIPLIER
    return CLASS_MULTIPLIERS.get(cls, {}).get(activity, DEFAULT_MULTIPLIER)
