"""Auto-confirmation of pending matches whose deadline has passed."""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, Optional

from . import db, elo
from .errors import ConflictError
from .logging_config import get_logger
from .models import Match, SweepResult, to_timestamp
from .settlement import settle

log = get_logger(__name__)

OnSettled = Callable[[Match], Awaitable[None]]


async def sweep(
    now: datetime,
    k_factor: int = elo.DEFAULT_K,
    on_settled: Optional[OnSettled] = None,
) -> SweepResult:
    """Settle every pending match with ``confirm_deadline <= now``.

    Each match gets its own transaction. A failure is logged and counted and
    the batch moves on; a match that someone else settled in the meantime is
    counted as skipped. ``on_settled`` runs after each commit.
    """
    result = SweepResult()
    due = await db.due_match_ids(to_timestamp(now))
    result.total_checked = len(due)
    if not due:
        return result

    log.info("Auto-confirming %s expired matches", len(due))
    for match_id in due:
        try:
            async with db.transaction(operation=f"auto-confirm #{match_id}") as conn:
                match = await settle(conn, match_id, now, k_factor=k_factor, auto=True)
        except ConflictError:
            result.skipped_count += 1
            log.info("Match #%s was settled elsewhere, skipping", match_id)
            continue
        except Exception:
            result.failed_count += 1
            result.failed_ids.append(match_id)
            log.exception("Failed to auto-confirm match #%s", match_id)
            continue

        result.confirmed_count += 1
        result.confirmed_ids.append(match_id)
        log.info("Auto-confirmed match #%s", match_id)
        if on_settled is not None:
            await on_settled(match)

    log.info(
        "Sweep done: confirmed=%s failed=%s skipped=%s checked=%s",
        result.confirmed_count, result.failed_count, result.skipped_count, result.total_checked,
    )
    return result
