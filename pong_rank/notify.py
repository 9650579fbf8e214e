"""Best-effort notifications about match events.

A notifier is anything with ``async notify(payload, recipient_ids)``. Delivery
happens after the database commit and can never fail the operation that
triggered it.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from .logging_config import get_logger
from .models import Match, to_timestamp

log = get_logger(__name__)

MATCH_SUBMITTED = "match_submitted"
MATCH_CONFIRMED = "match_confirmed"
MATCH_REJECTED = "match_rejected"
MATCH_REVERTED = "match_reverted"


class Notifier(Protocol):
    async def notify(self, payload: dict[str, Any], recipient_ids: list[int]) -> None: ...


class NullNotifier:
    """Drops every notification."""

    async def notify(self, payload: dict[str, Any], recipient_ids: list[int]) -> None:
        return None


async def deliver(
    notifier: Notifier | None,
    payload: dict[str, Any],
    recipient_ids: list[int],
    timeout: float = 5.0,
) -> bool:
    """Send one notification, swallowing and logging any failure.

    Returns True if the notifier finished without error.
    """
    if notifier is None or not recipient_ids:
        return False
    try:
        await asyncio.wait_for(notifier.notify(payload, list(recipient_ids)), timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("Notification %s for match #%s timed out", payload.get("event"), payload.get("match_id"))
        return False
    except Exception:
        log.warning(
            "Notification %s for match #%s failed",
            payload.get("event"), payload.get("match_id"), exc_info=True,
        )
        return False
    return True


def _base(event: str, match: Match) -> dict[str, Any]:
    return {
        "event": event,
        "match_id": match.id,
        "kind": match.kind,
        "side_a": list(match.side_a),
        "side_b": list(match.side_b),
        "games_a": match.games_a,
        "games_b": match.games_b,
        "submitted_by": match.submitted_by,
    }


def submitted_payload(match: Match) -> dict[str, Any]:
    payload = _base(MATCH_SUBMITTED, match)
    payload["confirm_deadline"] = to_timestamp(match.confirm_deadline)
    return payload


def confirmed_payload(match: Match) -> dict[str, Any]:
    payload = _base(MATCH_CONFIRMED, match)
    payload["auto_confirmed"] = match.auto_confirmed
    payload["rating_changes"] = match.rating_changes
    return payload


def rejected_payload(match: Match, rejected_by: int) -> dict[str, Any]:
    payload = _base(MATCH_REJECTED, match)
    payload["rejected_by"] = rejected_by
    return payload


def reverted_payload(match: Match) -> dict[str, Any]:
    payload = _base(MATCH_REVERTED, match)
    payload["rating_changes"] = match.rating_changes
    return payload
