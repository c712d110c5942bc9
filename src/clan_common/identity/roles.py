"""Discord role → clan rank mapping.

Pure functions only. The role ids come in through ``RoleConfig`` so the
mapping can be exercised with bare sets and no environment.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional


class Rank(str, enum.Enum):
    NEWBIE = "Newbie"
    TEST = "Test"
    MAIN = "Main"
    HIGH_STAFF = "HighStaff"

    @property
    def level(self) -> int:
        return _RANK_LEVELS[self]


_RANK_LEVELS = {
    Rank.NEWBIE: 1,
    Rank.TEST: 2,
    Rank.MAIN: 3,
    Rank.HIGH_STAFF: 4,
}

# Promotion ladder for members; HighStaff sits outside it
_NEXT_RANK = {
    Rank.NEWBIE: Rank.TEST,
    Rank.TEST: Rank.MAIN,
}


@dataclass(frozen=True)
class RoleConfig:
    """Guild role ids, one per rank tier."""

    high_staff: str
    main: str
    test: str
    newbie: str

    def precedence(self) -> list[tuple[str, Rank]]:
        return [
            (self.high_staff, Rank.HIGH_STAFF),
            (self.main, Rank.MAIN),
            (self.test, Rank.TEST),
            (self.newbie, Rank.NEWBIE),
        ]


@dataclass(frozen=True)
class RankAssignment:
    rank: Rank
    is_admin: bool


def map_roles(role_ids: Iterable[str], config: RoleConfig) -> Optional[RankAssignment]:
    """Return the rank for a member's guild roles, or None if no role qualifies.

    First match wins in the order HighStaff, Main, Test, Newbie. Lower ranks
    held alongside a higher one are ignored. ``is_admin`` is true iff the
    high staff role is held. Unset (empty) role ids never match.
    """
    held = {str(r) for r in role_ids}
    is_admin = bool(config.high_staff) and config.high_staff in held
    for role_id, rank in config.precedence():
        if role_id and role_id in held:
            return RankAssignment(rank=rank, is_admin=is_admin)
    return None


def next_rank(rank: Rank | None) -> Rank | None:
    """Return the rank a member can request promotion to, if any."""
    if rank is None:
        return None
    return _NEXT_RANK.get(rank)
