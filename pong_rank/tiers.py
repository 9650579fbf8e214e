"""
Player tiers based on ELO rating.
Named rating bands shown next to a player's rating.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Tier:
    key: str
    label: str
    emoji: str
    min: float
    max: float


TIERS: tuple[Tier, ...] = (
    Tier("PADDLE_PICKER", "Paddle Picker", "🏓", 0, 1299),
    Tier("BALL_BOUNCER", "Ball Bouncer", "🎯", 1300, 1499),
    Tier("SPIN_MASTER", "Spin Master", "⚡", 1500, 1699),
    Tier("RALLY_CHAMPION", "Rally Champion", "🔥", 1700, 1899),
    Tier("TABLE_LEGEND", "Table Legend", "💫", 1900, 2099),
    Tier("PING_PONG_KING", "Ping Pong King", "👑", 2100, 2299),
    Tier("TABLE_TENNIS_GOD", "Table Tennis God", "🏆", 2300, math.inf),
)


def tier_for(rating: int) -> Tier:
    """Get the tier for a given rating (ratings below 0 fall into the lowest tier)."""
    for tier in TIERS:
        if tier.min <= rating <= tier.max:
            return tier
    return TIERS[0]


def points_to_next_tier(rating: int) -> int | None:
    """Points needed to reach the next tier, or None at the top."""
    tier = tier_for(rating)
    if tier.max == math.inf:
        return None
    return int(tier.max) - rating + 1
