"""
Ladder operations against a real SQLite file: submit, confirm, reject and
what happens when two confirmations race or storage fails midway.
"""

import asyncio
from datetime import timedelta

import aiosqlite

from conftest import T0
from pong_rank import db
from pong_rank.models import CONFIRMED, DOUBLES, PENDING, REJECTED, SINGLES


async def ratings(*ids):
    out = {}
    for uid in ids:
        row = await db.get_player(uid)
        out[uid] = row["rating"]
    return out


async def history_count(match_id=None):
    async with db.connect() as conn:
        if match_id is None:
            cursor = await conn.execute("SELECT COUNT(*) FROM rating_history")
        else:
            cursor = await conn.execute("SELECT COUNT(*) FROM rating_history WHERE match_id = ?", (match_id,))
        row = await cursor.fetchone()
        return row[0]


# ----------------------------------------
# submit
# ----------------------------------------

def test_submit_creates_pending_match(ladder, players, notifier):
    async def scenario():
        result = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        assert result.ok, result.message
        match = result.match
        assert match.status == PENDING
        assert match.side_a == [1] and match.side_b == [2]
        assert (match.games_a, match.games_b) == (3, 1)
        assert match.submitted_by == 1
        assert match.created_at == T0
        assert match.confirm_deadline == T0 + timedelta(hours=48)
        assert match.confirmed_at is None
        assert match.changes_a == [None] and match.changes_b == [None]
        # ratings untouched while pending
        assert await ratings(1, 2) == {1: 1500, 2: 1500}
        assert await history_count() == 0

    asyncio.run(scenario())
    assert notifier.events() == ["match_submitted"]
    payload, recipients = notifier.sent[0]
    assert recipients == [2]
    assert payload["confirm_deadline"].startswith("2026-03-04T12:00:00")


def test_submit_puts_series_winner_on_side_a(ladder, players):
    async def scenario():
        result = await ladder.submit(SINGLES, [1], [2], 1, 3, submitter_id=1)
        assert result.ok
        assert result.match.side_a == [2]
        assert result.match.side_b == [1]
        assert (result.match.games_a, result.match.games_b) == (3, 1)

        confirmed = await ladder.confirm(result.match.id, caller_id=2)
        assert confirmed.ok, confirmed.message
        assert await ratings(1, 2) == {1: 1476, 2: 1524}

    asyncio.run(scenario())


def test_admin_submit_settles_immediately(ladder, players, notifier):
    async def scenario():
        result = await ladder.submit(SINGLES, [3], [4], 2, 0, submitter_id=99, submitter_is_admin=True)
        assert result.ok, result.message
        match = result.match
        assert match.status == CONFIRMED
        assert match.confirm_deadline == T0
        assert match.confirmed_at == T0
        assert match.auto_confirmed is False
        assert match.rating_changes[3] > 0 > match.rating_changes[4]
        assert await history_count(match.id) == 2

    asyncio.run(scenario())
    assert notifier.events() == ["match_confirmed"]
    assert sorted(notifier.sent[0][1]) == [3, 4]


def test_submit_validation_failures(ladder, players):
    async def scenario():
        zero = await ladder.submit(SINGLES, [1], [2], 0, 0, submitter_id=1)
        assert zero.code == "invalid"

        negative = await ladder.submit(SINGLES, [1], [2], -1, 2, submitter_id=1)
        assert negative.code == "invalid"

        short_doubles = await ladder.submit(DOUBLES, [1], [2, 3], 2, 1, submitter_id=1)
        assert short_doubles.code == "invalid"

        repeated = await ladder.submit(DOUBLES, [1, 2], [2, 3], 2, 1, submitter_id=1)
        assert repeated.code == "invalid"

        bad_kind = await ladder.submit("triples", [1], [2], 2, 1, submitter_id=1)
        assert bad_kind.code == "invalid"

        async with db.connect() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM matches")
            assert (await cursor.fetchone())[0] == 0

    asyncio.run(scenario())


def test_submit_by_outsider_is_forbidden(ladder, players, notifier):
    result = asyncio.run(ladder.submit(SINGLES, [1], [2], 3, 0, submitter_id=5))
    assert not result.ok
    assert result.code == "forbidden"
    assert notifier.sent == []


def test_submit_with_unknown_player(ladder, players):
    result = asyncio.run(ladder.submit(SINGLES, [1], [404], 3, 0, submitter_id=1))
    assert result.code == "not_found"
    assert "404" in result.message


# ----------------------------------------
# confirm
# ----------------------------------------

def test_opponent_confirms_and_ratings_move(ladder, players, notifier, clock):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        clock.advance(hours=2)
        result = await ladder.confirm(submitted.match.id, caller_id=2)
        assert result.ok, result.message
        match = result.match
        assert match.status == CONFIRMED
        assert match.confirmed_at == T0 + timedelta(hours=2)
        assert match.changes_a == [24] and match.changes_b == [-24]
        assert await ratings(1, 2) == {1: 1524, 2: 1476}

        p1 = await db.get_player(1)
        p2 = await db.get_player(2)
        assert (p1["wins"], p1["losses"]) == (1, 0)
        assert (p2["wins"], p2["losses"]) == (0, 1)

        history = await db.rating_history(1)
        assert len(history) == 1
        assert history[0]["rating_after"] == 1524
        assert history[0]["delta"] == 24

    asyncio.run(scenario())
    assert notifier.events() == ["match_submitted", "match_confirmed"]
    confirmed_payload = notifier.sent[1][0]
    assert confirmed_payload["auto_confirmed"] is False
    assert confirmed_payload["rating_changes"] == {1: 24, 2: -24}


def test_doubles_confirmation(ladder, db_path):
    async def scenario():
        await db.get_or_create_player(1, "A1", base_rating=1500)
        await db.get_or_create_player(2, "A2", base_rating=1500)
        await db.get_or_create_player(3, "B1", base_rating=1600)
        await db.get_or_create_player(4, "B2", base_rating=1400)
        submitted = await ladder.submit(DOUBLES, [1, 2], [3, 4], 1, 0, submitter_id=2)
        result = await ladder.confirm(submitted.match.id, caller_id=4)
        assert result.ok, result.message
        assert await ratings(1, 2, 3, 4) == {1: 1516, 2: 1516, 3: 1584, 4: 1384}
        assert await history_count(submitted.match.id) == 4

    asyncio.run(scenario())


def test_submitter_cannot_confirm_own_match(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        result = await ladder.confirm(submitted.match.id, caller_id=1)
        assert result.code == "forbidden"
        match = await ladder.get_match(submitted.match.id)
        assert match.status == PENDING

    asyncio.run(scenario())


def test_outsider_cannot_confirm(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        result = await ladder.confirm(submitted.match.id, caller_id=6)
        assert result.code == "forbidden"
        assert await ratings(1, 2) == {1: 1500, 2: 1500}

    asyncio.run(scenario())


def test_admin_can_confirm_any_match(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        result = await ladder.confirm(submitted.match.id, caller_id=77, caller_is_admin=True)
        assert result.ok
        assert result.match.auto_confirmed is False

    asyncio.run(scenario())


def test_doubles_teammate_may_confirm(ladder, players):
    async def scenario():
        submitted = await ladder.submit(DOUBLES, [1, 2], [3, 4], 2, 1, submitter_id=1)
        result = await ladder.confirm(submitted.match.id, caller_id=2)
        assert result.ok, result.message

    asyncio.run(scenario())


def test_second_confirm_conflicts(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        first = await ladder.confirm(submitted.match.id, caller_id=2)
        second = await ladder.confirm(submitted.match.id, caller_id=2)
        assert first.ok
        assert second.code == "conflict"
        assert await ratings(1, 2) == {1: 1524, 2: 1476}
        assert await history_count(submitted.match.id) == 2

    asyncio.run(scenario())


def test_confirming_settled_match_is_a_conflict_even_for_submitter(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        await ladder.confirm(submitted.match.id, caller_id=2)
        by_submitter = await ladder.confirm(submitted.match.id, caller_id=1)
        by_outsider = await ladder.confirm(submitted.match.id, caller_id=5)
        assert by_submitter.code == "conflict"
        assert by_outsider.code == "conflict"

    asyncio.run(scenario())


def test_confirm_unknown_match(ladder, players):
    result = asyncio.run(ladder.confirm(12345, caller_id=1))
    assert result.code == "not_found"


# ----------------------------------------
# reject
# ----------------------------------------

def test_reject_leaves_ratings_alone(ladder, players, notifier):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        result = await ladder.reject(submitted.match.id, caller_id=2)
        assert result.ok, result.message
        assert result.match.status == REJECTED
        assert result.match.changes_a == [None]
        assert await ratings(1, 2) == {1: 1500, 2: 1500}
        assert await history_count() == 0

        again = await ladder.confirm(submitted.match.id, caller_id=2)
        assert again.code == "conflict"

    asyncio.run(scenario())
    assert notifier.events() == ["match_submitted", "match_rejected"]
    payload, recipients = notifier.sent[1]
    assert payload["rejected_by"] == 2
    assert recipients == [1]


def test_submitter_may_withdraw(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        result = await ladder.reject(submitted.match.id, caller_id=1)
        assert result.ok

    asyncio.run(scenario())


def test_outsider_cannot_reject(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        result = await ladder.reject(submitted.match.id, caller_id=3)
        assert result.code == "forbidden"
        assert (await ladder.get_match(submitted.match.id)).status == PENDING

    asyncio.run(scenario())


def test_reject_confirmed_match_conflicts(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        await ladder.confirm(submitted.match.id, caller_id=2)
        result = await ladder.reject(submitted.match.id, caller_id=2)
        assert result.code == "conflict"
        assert (await ladder.get_match(submitted.match.id)).status == CONFIRMED

    asyncio.run(scenario())


def test_outsider_rejecting_rejected_match_gets_conflict(ladder, players):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        await ladder.reject(submitted.match.id, caller_id=2)
        result = await ladder.reject(submitted.match.id, caller_id=5)
        assert result.code == "conflict"
        assert (await ladder.get_match(submitted.match.id)).status == REJECTED

    asyncio.run(scenario())


# ----------------------------------------
# atomicity and concurrency
# ----------------------------------------

def test_storage_failure_rolls_back_everything(ladder, players, notifier, monkeypatch):
    async def broken_history(*args, **kwargs):
        raise aiosqlite.OperationalError("disk I/O error")

    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        monkeypatch.setattr(db, "append_history", broken_history)
        result = await ladder.confirm(submitted.match.id, caller_id=2)
        assert not result.ok
        assert result.code == "storage"

        match = await ladder.get_match(submitted.match.id)
        assert match.status == PENDING
        assert match.changes_a == [None]
        assert await ratings(1, 2) == {1: 1500, 2: 1500}
        p1 = await db.get_player(1)
        assert p1["wins"] == 0

        monkeypatch.undo()
        retry = await ladder.confirm(submitted.match.id, caller_id=2)
        assert retry.ok, retry.message

    asyncio.run(scenario())
    # no confirmation was announced for the failed attempt
    assert notifier.events() == ["match_submitted", "match_confirmed"]


def test_concurrent_confirm_and_sweep_settle_once(ladder, players, clock):
    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        clock.advance(hours=49)
        first, sweep, second = await asyncio.gather(
            ladder.confirm(submitted.match.id, caller_id=2),
            ladder.sweep(),
            ladder.confirm(submitted.match.id, caller_id=2),
        )
        settled = int(first.ok) + int(second.ok) + sweep.confirmed_count
        assert settled == 1
        assert sweep.failed_count == 0
        assert await history_count(submitted.match.id) == 2
        assert await ratings(1, 2) == {1: 1524, 2: 1476}

    asyncio.run(scenario())


def test_failing_notifier_does_not_fail_operation(settings, players, clock):
    from pong_rank.service import Ladder

    class BrokenNotifier:
        async def notify(self, payload, recipient_ids):
            raise RuntimeError("DMs are down")

    ladder = Ladder(settings, notifier=BrokenNotifier(), clock=clock)

    async def scenario():
        submitted = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        assert submitted.ok
        confirmed = await ladder.confirm(submitted.match.id, caller_id=2)
        assert confirmed.ok
        assert await ratings(1, 2) == {1: 1524, 2: 1476}

    asyncio.run(scenario())


# ----------------------------------------
# queries
# ----------------------------------------

def test_pending_leaderboard_and_stats(ladder, players):
    async def scenario():
        first = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        await ladder.submit(SINGLES, [3], [1], 2, 0, submitter_id=3)
        pending = await ladder.pending_for(1)
        assert len(pending) == 2

        await ladder.confirm(first.match.id, caller_id=2)
        pending = await ladder.pending_for(1)
        assert [m.submitted_by for m in pending] == [3]

        board = await ladder.leaderboard(limit=3)
        assert board[0].user_id == 1
        assert board[0].rating == 1524

        stats = await ladder.player_stats(1)
        assert stats["rank"] == 1
        assert stats["played"] == 1
        assert stats["win_rate"] == 1.0
        assert stats["tier"].label == "Spin Master"
        assert stats["points_to_next_tier"] == 1700 - 1524
        assert [h.delta for h in stats["history"]] == [24]
        assert stats["history"][0].rating_before == 1500

        assert await ladder.player_stats(999) is None

    asyncio.run(scenario())


def test_recent_lists_every_status(ladder, players):
    async def scenario():
        a = await ladder.submit(SINGLES, [1], [2], 3, 1, submitter_id=1)
        b = await ladder.submit(SINGLES, [1], [3], 3, 1, submitter_id=1)
        c = await ladder.submit(SINGLES, [4], [5], 3, 1, submitter_id=4)
        await ladder.confirm(a.match.id, caller_id=2)
        await ladder.reject(b.match.id, caller_id=3)

        mine = await ladder.recent(1)
        assert [m.id for m in mine] == [b.match.id, a.match.id]
        assert [m.status for m in mine] == [REJECTED, CONFIRMED]

        everything = await ladder.recent(limit=2)
        assert [m.id for m in everything] == [c.match.id, b.match.id]

    asyncio.run(scenario())


def test_shared_memory_database(clock, notifier):
    from pong_rank.config import Settings
    from pong_rank.service import Ladder

    async def scenario():
        await db.init_db("file::memory:?cache=shared")
        try:
            for uid in (1, 2):
                await db.get_or_create_player(uid, f"Mem{uid}")
            ladder = Ladder(Settings(database_path="file::memory:?cache=shared"), notifier=notifier, clock=clock)
            submitted = await ladder.submit(SINGLES, [1], [2], 1, 0, submitter_id=1)
            confirmed = await ladder.confirm(submitted.match.id, caller_id=2)
            assert confirmed.ok, confirmed.message
            assert (await db.get_player(1))["rating"] == 1516
        finally:
            await db.close_db()

    asyncio.run(scenario())
