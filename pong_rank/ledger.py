"""Rating ledger checks.

A player's stored rating is a cache of ``starting_rating + sum(history deltas)``.
These helpers re-derive it and report any player where the two disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import groupby
from operator import itemgetter

from . import db


@dataclass
class LedgerMismatch:
    user_id: int
    stored_rating: int
    derived_rating: int
    entries: int

    @property
    def drift(self) -> int:
        return self.stored_rating - self.derived_rating


def replay(deltas: list[int], starting_rating: int = 1500) -> list[int]:
    """Ratings after each delta, in order."""
    out = []
    rating = starting_rating
    for d in deltas:
        rating += d
        out.append(rating)
    return out


async def audit(starting_rating: int = 1500) -> list[LedgerMismatch]:
    """Replay every player's history and report those whose stored rating differs."""
    mismatches = []
    for user_id, rows in groupby(await db.ledger_rows(), key=itemgetter("user_id")):
        rows = list(rows)
        stored = int(rows[0]["rating"])
        deltas = [int(r["delta"]) for r in rows if r["delta"] is not None]
        trail = replay(deltas, starting_rating)
        derived = trail[-1] if trail else starting_rating
        if stored != derived:
            mismatches.append(
                LedgerMismatch(
                    user_id=int(user_id),
                    stored_rating=stored,
                    derived_rating=derived,
                    entries=len(deltas),
                )
            )
    return mismatches
