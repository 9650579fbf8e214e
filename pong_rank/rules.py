from typing import List, Tuple

from .errors import ValidationError
from .models import ROSTER_SIZE


def validate_roster(kind: str, side_a: List[int], side_b: List[int]) -> None:
    """
    Check that both sides fit the match kind.
    - kind is "singles" or "doubles"
    - each side has 1 (singles) or 2 (doubles) players
    - every participant appears exactly once
    Raises ValidationError otherwise.
    """
    if kind not in ROSTER_SIZE:
        raise ValidationError(f"unknown match kind {kind!r}", field="kind")
    size = ROSTER_SIZE[kind]
    if len(side_a) != size:
        raise ValidationError(f"{kind} needs {size} player(s) per side, got {len(side_a)}", field="side_a")
    if len(side_b) != size:
        raise ValidationError(f"{kind} needs {size} player(s) per side, got {len(side_b)}", field="side_b")
    everyone = [*side_a, *side_b]
    if len(set(everyone)) != len(everyone):
        raise ValidationError("a player cannot appear twice in one match", field="roster")


def validate_series(games_a: int, games_b: int) -> None:
    """
    Check a series score.
    - both counts are non-negative integers
    - at least one game was played
    """
    for name, value in (("games_a", games_a), ("games_b", games_b)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError("game count must be an integer", field=name)
        if value < 0:
            raise ValidationError("game count cannot be negative", field=name)
    if games_a + games_b <= 0:
        raise ValidationError("at least one game must be played", field="score")


def assign_sides(
    side_a: List[int],
    side_b: List[int],
    games_a: int,
    games_b: int,
) -> Tuple[List[int], List[int], int, int]:
    """
    Put the side that won more games first.

    Returns (winners, losers, winner_games, loser_games). On a drawn series
    the reported second side is listed first.

    Examples:
        assign_sides([1], [2], 3, 1) -> ([1], [2], 3, 1)
        assign_sides([1], [2], 1, 3) -> ([2], [1], 3, 1)
        assign_sides([1], [2], 2, 2) -> ([2], [1], 2, 2)
    """
    if games_a > games_b:
        return list(side_a), list(side_b), games_a, games_b
    return list(side_b), list(side_a), games_b, games_a
