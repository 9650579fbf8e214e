"""The ladder's public operations.

:class:`Ladder` is what a front-end talks to. Every state-changing method
returns a :class:`~pong_rank.models.Result` instead of raising, and only
sends notifications once the database work has been committed.

Example:
    ```python
    await db.init_db("ladder.sqlite")
    ladder = Ladder(Settings.from_env())
    result = await ladder.submit("singles", [alice], [bob], 3, 1, submitter_id=alice)
    if result.ok:
        await ladder.confirm(result.match.id, caller_id=bob)
    ```
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from . import db, ledger, lifecycle, notify, rules
from .config import Settings
from .errors import ConflictError, NotFoundError, PongRankError
from .logging_config import get_logger
from .models import Match, Player, RatingHistory, Result, SweepResult, to_timestamp
from .settlement import load_match, revert as revert_match, settle
from .sweeper import sweep as sweep_due
from .tiers import points_to_next_tier, tier_for

log = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ladder:
    """Match submission, confirmation, rejection, revert and auto-confirmation.

    The ladder does not open the database itself: every call goes to the
    file last passed to :func:`pong_rank.db.init_db`. ``settings.database_path``
    is only what the front-end hands to ``init_db`` at startup.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        notifier: Optional[notify.Notifier] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.notifier = notifier or notify.NullNotifier()
        self.clock = clock or utcnow

    async def _notify(self, payload: dict[str, Any], recipients: list[int]) -> None:
        await notify.deliver(self.notifier, payload, recipients, timeout=self.settings.notify_timeout)

    # ----------------------------------------
    # Lifecycle
    # ----------------------------------------

    async def submit(
        self,
        kind: str,
        side_a: list[int],
        side_b: list[int],
        games_a: int,
        games_b: int,
        submitter_id: int,
        submitter_is_admin: bool = False,
    ) -> Result:
        """Report a series.

        Player submissions are stored pending with a confirmation deadline;
        administrator submissions are settled straight away.
        """
        now = self.clock()
        try:
            rules.validate_roster(kind, side_a, side_b)
            rules.validate_series(games_a, games_b)
            lifecycle.authorize_submit([*side_a, *side_b], submitter_id, submitter_is_admin)
            winners, losers, winner_games, loser_games = rules.assign_sides(side_a, side_b, games_a, games_b)

            if submitter_is_admin:
                deadline = now
            else:
                deadline = now + timedelta(hours=self.settings.confirm_window_hours)

            async with db.transaction(operation="submit") as conn:
                known = await db.fetch_players(conn, [*winners, *losers])
                for uid in (*winners, *losers):
                    if uid not in known:
                        raise NotFoundError("player", uid)
                match_id = await db.insert_match(
                    conn, kind, winners, losers, winner_games, loser_games,
                    submitter_id, to_timestamp(now), to_timestamp(deadline),
                )
                if submitter_is_admin:
                    match = await settle(conn, match_id, now, k_factor=self.settings.k_factor)
                else:
                    match = await load_match(conn, match_id)
        except PongRankError as exc:
            log.info("Submit by %s refused: %s", submitter_id, exc)
            return Result.failure(exc)

        others = [uid for uid in match.participant_ids if uid != submitter_id]
        if submitter_is_admin:
            log.info("Match #%s submitted and confirmed by admin %s", match.id, submitter_id)
            await self._notify(notify.confirmed_payload(match), others)
        else:
            log.info("Match #%s submitted by %s, auto-confirms at %s", match.id, submitter_id, to_timestamp(deadline))
            await self._notify(notify.submitted_payload(match), others)
        return Result.success(match)

    async def confirm(self, match_id: int, caller_id: int, caller_is_admin: bool = False) -> Result:
        """Confirm a pending match and apply its rating changes."""
        now = self.clock()
        try:
            async with db.transaction(operation=f"confirm #{match_id}") as conn:
                match = await load_match(conn, match_id)
                # status first: a settled match is a conflict whoever asks
                lifecycle.next_status(match, lifecycle.CONFIRM)
                lifecycle.authorize_confirm(match, caller_id, caller_is_admin)
                match = await settle(conn, match_id, now, k_factor=self.settings.k_factor)
        except PongRankError as exc:
            log.info("Confirm of #%s by %s refused: %s", match_id, caller_id, exc)
            return Result.failure(exc)

        log.info("Match #%s confirmed by %s", match.id, caller_id)
        await self._notify(notify.confirmed_payload(match), match.participant_ids)
        return Result.success(match)

    async def reject(self, match_id: int, caller_id: int) -> Result:
        """Reject a pending match. Only participants may reject."""
        try:
            async with db.transaction(operation=f"reject #{match_id}") as conn:
                match = await load_match(conn, match_id)
                lifecycle.next_status(match, lifecycle.REJECT)
                lifecycle.authorize_reject(match, caller_id)
                if not await db.mark_rejected(conn, match_id):
                    raise ConflictError("already settled", match_id=match_id)
                match = await load_match(conn, match_id)
        except PongRankError as exc:
            log.info("Reject of #%s by %s refused: %s", match_id, caller_id, exc)
            return Result.failure(exc)

        log.info("Match #%s rejected by %s", match.id, caller_id)
        others = [uid for uid in match.participant_ids if uid != caller_id]
        await self._notify(notify.rejected_payload(match, caller_id), others)
        return Result.success(match)

    async def revert(self, match_id: int, caller_is_admin: bool, caller_id: Optional[int] = None) -> Result:
        """Delete a confirmed match and restore its participants' ratings (admin only).

        The returned match is the deleted record.
        """
        now = self.clock()
        try:
            lifecycle.authorize_revert(caller_is_admin, caller_id)
            async with db.transaction(operation=f"revert #{match_id}") as conn:
                match = await revert_match(conn, match_id, now)
        except PongRankError as exc:
            log.info("Revert of #%s refused: %s", match_id, exc)
            return Result.failure(exc)

        log.info("Match #%s reverted by admin %s", match.id, caller_id)
        await self._notify(notify.reverted_payload(match), match.participant_ids)
        return Result.success(match)

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Auto-confirm every pending match past its deadline."""
        async def _announce(match: Match) -> None:
            await self._notify(notify.confirmed_payload(match), match.participant_ids)

        return await sweep_due(
            now if now is not None else self.clock(),
            k_factor=self.settings.k_factor,
            on_settled=_announce,
        )

    # ----------------------------------------
    # Queries
    # ----------------------------------------

    async def get_match(self, match_id: int) -> Match | None:
        row = await db.get_match(match_id)
        return Match.from_row(row) if row else None

    async def pending_for(self, player_id: int) -> list[Match]:
        return [Match.from_row(r) for r in await db.list_pending_for_user(player_id)]

    async def recent(self, player_id: Optional[int] = None, limit: int = 10) -> list[Match]:
        """Latest matches in any status, newest first."""
        return [Match.from_row(r) for r in await db.recent_matches(player_id, limit=limit)]

    async def leaderboard(self, limit: int = 20) -> list[Player]:
        return [Player.from_row(r) for r in await db.top_players(limit)]

    async def player_stats(self, player_id: int, history_limit: int = 20) -> dict[str, Any] | None:
        row = await db.get_player(player_id)
        if row is None:
            return None
        player = Player.from_row(row)
        history = [RatingHistory.from_row(h) for h in await db.rating_history(player_id, limit=history_limit)]
        played = player.wins + player.losses
        return {
            "player": player,
            "rank": await db.player_rank(player_id),
            "tier": tier_for(player.rating),
            "points_to_next_tier": points_to_next_tier(player.rating),
            "played": played,
            "win_rate": (player.wins / played) if played else None,
            "history": history,
        }

    async def audit(self) -> list[ledger.LedgerMismatch]:
        mismatches = await ledger.audit(self.settings.starting_rating)
        for m in mismatches:
            log.warning("Rating drift for %s: stored=%s derived=%s", m.user_id, m.stored_rating, m.derived_rating)
        return mismatches
