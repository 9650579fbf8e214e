"""
ELO rating calculations for table tennis series.
Pure functions for 1v1 and 2v2 matches played as a best-of-N series.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

DEFAULT_K = 32


@dataclass
class SideOutcome:
    new_ratings: list[int]
    deltas: list[int]


@dataclass
class RatingOutcome:
    side_a: SideOutcome
    side_b: SideOutcome


def expected(ra: float, rb: float) -> float:
    """
    Calculate the expected score for player A against player B.

    Args:
        ra: Rating of player A
        rb: Rating of player B

    Returns:
        Expected score (probability) for player A to win (0.0 to 1.0)
    """
    return 1 / (1 + math.pow(10, (rb - ra) / 400))


def team_rating(ratings: list[float]) -> float:
    """
    Calculate the effective team rating from individual player ratings.
    Uses the average rating as the team's effective rating.
    """
    if not ratings:
        raise ValueError("team_rating needs at least one rating")
    return sum(ratings) / len(ratings)


def round_half_up(x: float) -> int:
    # Halves go towards +infinity (16.5 -> 17, -16.5 -> -16), not banker's rounding.
    return math.floor(x + 0.5)


def game_delta(avg_a: float, avg_b: float, a_won: bool, k: int = DEFAULT_K) -> tuple[int, int]:
    """
    Rating change for each side after a single game.

    Each side's delta is rounded on its own, so the pair is not always
    exactly zero-sum.

    Returns:
        Tuple of (delta_a, delta_b)
    """
    expected_a = expected(avg_a, avg_b)
    expected_b = expected(avg_b, avg_a)
    score_a = 1.0 if a_won else 0.0
    delta_a = round_half_up(k * (score_a - expected_a))
    delta_b = round_half_up(k * ((1.0 - score_a) - expected_b))
    return delta_a, delta_b


def compute_ratings(
    side_a_ratings: list[int],
    side_b_ratings: list[int],
    games_won_by_side_a: int,
    games_won_by_side_b: int,
    k_factor: int = DEFAULT_K,
) -> RatingOutcome:
    """
    Apply a whole series game by game.

    All of side A's wins are applied first, then all of side B's. Before each
    game the expectation is recomputed from the side averages of the ratings
    as they stand after the previous game, and the game's delta is added to
    every member of the side.

    Args:
        side_a_ratings: Current ratings of side A (1 for singles, 2 for doubles)
        side_b_ratings: Current ratings of side B, same length as side A
        games_won_by_side_a: Games side A won in the series
        games_won_by_side_b: Games side B won in the series
        k_factor: K-factor determining maximum rating change per game

    Returns:
        RatingOutcome with the final ratings and cumulative deltas per player

    Raises:
        ValueError: on empty or unequal sides, negative counts or a 0-0 series
    """
    if not side_a_ratings or len(side_a_ratings) != len(side_b_ratings):
        raise ValueError("sides must be non-empty and the same size")
    if games_won_by_side_a < 0 or games_won_by_side_b < 0:
        raise ValueError("game counts cannot be negative")
    if games_won_by_side_a == 0 and games_won_by_side_b == 0:
        raise ValueError("at least one game must have been played")

    current_a = [int(r) for r in side_a_ratings]
    current_b = [int(r) for r in side_b_ratings]
    total_a = 0
    total_b = 0

    games = [True] * games_won_by_side_a + [False] * games_won_by_side_b
    for a_won in games:
        delta_a, delta_b = game_delta(team_rating(current_a), team_rating(current_b), a_won, k_factor)
        current_a = [r + delta_a for r in current_a]
        current_b = [r + delta_b for r in current_b]
        total_a += delta_a
        total_b += delta_b

    return RatingOutcome(
        side_a=SideOutcome(new_ratings=current_a, deltas=[total_a] * len(current_a)),
        side_b=SideOutcome(new_ratings=current_b, deltas=[total_b] * len(current_b)),
    )
