"""Settlement and revert: the only code paths that write player ratings.

Both functions expect to run inside :func:`pong_rank.db.transaction`, so a
failure at any step leaves the database exactly as it was.
"""

from __future__ import annotations

from datetime import datetime

import aiosqlite

from . import db, elo, lifecycle
from .errors import ConflictError, NotFoundError, PersistenceError
from .logging_config import get_logger
from .models import Match, to_timestamp

log = get_logger(__name__)


async def load_match(conn: aiosqlite.Connection, match_id: int) -> Match:
    row = await db.fetch_match(conn, match_id)
    if row is None:
        raise NotFoundError("match", match_id)
    return Match.from_row(row)


def _won(match: Match, user_id: int) -> bool | None:
    winner = match.winning_side
    if winner is None:
        return None
    return match.side_of(user_id) == winner


async def settle(
    conn: aiosqlite.Connection,
    match_id: int,
    now: datetime,
    k_factor: int = elo.DEFAULT_K,
    auto: bool = False,
) -> Match:
    """Confirm a pending match and apply its rating changes.

    Steps: check the match is pending, read the participants' current
    ratings, run the calculator, flip the status (compare-and-swap on
    ``pending``), write the new ratings and append one history row per
    participant.

    Raises:
        NotFoundError: unknown match or participant.
        ConflictError: the match is no longer pending, or ``auto`` is set
            and the deadline has not passed.
    """
    match = await load_match(conn, match_id)
    lifecycle.next_status(match, lifecycle.CONFIRM)
    if auto and not lifecycle.is_due(match, now):
        raise ConflictError("confirmation window still open", match_id=match.id, status=match.status)

    players = await db.fetch_players(conn, match.participant_ids)
    for uid in match.participant_ids:
        if uid not in players:
            raise NotFoundError("player", uid)

    outcome = elo.compute_ratings(
        [players[uid]["rating"] for uid in match.side_a],
        [players[uid]["rating"] for uid in match.side_b],
        match.games_a,
        match.games_b,
        k_factor=k_factor,
    )

    stamp = to_timestamp(now)
    if not await db.mark_confirmed(conn, match.id, stamp, outcome.side_a.deltas, outcome.side_b.deltas, auto=auto):
        raise ConflictError("already settled", match_id=match.id)

    for ids, side in ((match.side_a, outcome.side_a), (match.side_b, outcome.side_b)):
        for uid, new_rating, delta in zip(ids, side.new_ratings, side.deltas):
            await db.update_rating(conn, uid, new_rating, _won(match, uid), stamp)
            await db.append_history(conn, uid, match.id, new_rating, delta, stamp)

    settled = await load_match(conn, match.id)
    log.debug("Settled match #%s deltas A=%s B=%s", match.id, outcome.side_a.deltas, outcome.side_b.deltas)
    return settled


async def revert(conn: aiosqlite.Connection, match_id: int, now: datetime) -> Match:
    """Delete a confirmed match and put every participant back where they were.

    The pre-match rating comes from the match's own history row
    (``rating_after - delta``). A match is only revertible while it is the
    latest history entry of every participant.

    Returns the match as it was before deletion.

    Raises:
        NotFoundError: unknown match.
        ConflictError: not confirmed, or a participant has a later match.
        PersistenceError: history rows are missing for a participant.
    """
    match = await load_match(conn, match_id)
    lifecycle.next_status(match, lifecycle.REVERT)

    history = {int(h["player_id"]): h for h in await db.history_for_match(conn, match.id)}
    for uid in match.participant_ids:
        entry = history.get(uid)
        if entry is None:
            raise PersistenceError(f"no rating history for player {uid} in match #{match.id}", operation="revert")
        latest = await db.latest_history_id(conn, uid)
        if latest != int(entry["id"]):
            raise ConflictError(
                f"player {uid} has a later confirmed match; revert that one first",
                match_id=match.id,
            )

    stamp = to_timestamp(now)
    for uid in match.participant_ids:
        entry = history[uid]
        before = int(entry["rating_after"]) - int(entry["delta"])
        await db.restore_rating(conn, uid, before, _won(match, uid), stamp)

    await db.delete_history_for_match(conn, match.id)
    await db.delete_match(conn, match.id)
    log.debug("Reverted match #%s", match.id)
    return match
