"""Level curve: cumulative XP to level and back.

The threshold for level ``l`` is ``floor(4l^3 - 15l^2 + 100l - 140)`` for
``l >= 2`` and zero at level 1. The polynomial's derivative
``12l^2 - 30l + 100`` has no real roots, so thresholds strictly increase and
``level_for_xp`` can scan forward.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from gitrats.domain.errors import InvariantViolation
from gitrats.domain.xp.models import Character


def xp_for_level(level: int) -> int:
    """Cumulative XP required to reach ``level``."""
    if level <= 1:
        return 0
    return max(0, 4 * level**3 - 15 * level**2 + 100 * level - 140)


def level_for_xp(total_xp: int) -> int:
    if total_xp < 0:
        raise ValueError("total_xp must be non-negative")
    level = 1
    while xp_for_level(level + 1) <= total_xp:
        level += 1
    return level


def current_xp_within_level(total_xp: int, level: int) -> int:
    return total_xp - xp_for_level(level)


@dataclass(slots=True, frozen=True)
class LevelProgress:
    level: int
    current_xp: int
    xp_to_next_level: int

    @classmethod
    def for_total(cls, total_xp: int) -> "LevelProgress":
        level = level_for_xp(total_xp)
        return cls(
            level=level,
            current_xp=current_xp_within_level(total_xp, level),
            xp_to_next_level=xp_for_level(level + 1) - total_xp,
        )


def with_total_xp(character: Character, total_xp: int) -> Character:
    """Copy of ``character`` at ``total_xp`` with level fields re-derived."""
    progress = LevelProgress.for_total(total_xp)
    return replace(character, total_xp=total_xp, level=progress.level, current_xp=progress.current_xp)


def check_consistent(character: Character) -> None:
    """Raise InvariantViolation unless level and current_xp derive from total_xp."""
    if character.total_xp < 0:
        raise InvariantViolation(f"negative total_xp for {character.user_id}")
    expected = level_for_xp(character.total_xp)
    if character.level != expected:
        raise InvariantViolation(
            f"level {character.level} != {expected} for total_xp {character.total_xp}"
        )
    if character.current_xp != current_xp_within_level(character.total_xp, expected):
        raise InvariantViolation(f"current_xp out of sync for {character.user_id}")
