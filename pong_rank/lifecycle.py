"""Match lifecycle: which transitions exist and who may trigger them.

::

    pending --confirm--> confirmed --revert--> (deleted)
       |
       +----reject----> rejected
"""

from __future__ import annotations

from datetime import datetime

from .errors import AuthorizationError, ConflictError
from .models import CONFIRMED, PENDING, REJECTED, Match, to_timestamp

CONFIRM = "confirm"
REJECT = "reject"
REVERT = "revert"

# (current status, action) -> new status; None means the match is removed
TRANSITIONS: dict[tuple[str, str], str | None] = {
    (PENDING, CONFIRM): CONFIRMED,
    (PENDING, REJECT): REJECTED,
    (CONFIRMED, REVERT): None,
}


def next_status(match: Match, action: str) -> str | None:
    """Return the status after ``action``, or raise ConflictError if not allowed."""
    key = (match.status, action)
    if key not in TRANSITIONS:
        raise ConflictError(f"cannot {action}", match_id=match.id, status=match.status)
    return TRANSITIONS[key]


def authorize_submit(participants: list[int], submitter_id: int, is_admin: bool) -> None:
    if is_admin:
        return
    if submitter_id not in participants:
        raise AuthorizationError("You must be a participant in the match", user_id=submitter_id)


def authorize_confirm(match: Match, caller_id: int, is_admin: bool) -> None:
    if is_admin:
        return
    if caller_id not in match.participant_ids:
        raise AuthorizationError("You are not part of this match", user_id=caller_id)
    if caller_id == match.submitted_by:
        raise AuthorizationError("The submitter cannot confirm their own match", user_id=caller_id)


def authorize_reject(match: Match, caller_id: int) -> None:
    if caller_id not in match.participant_ids:
        raise AuthorizationError("You are not part of this match", user_id=caller_id)


def authorize_revert(is_admin: bool, caller_id: int | None = None) -> None:
    if not is_admin:
        raise AuthorizationError("Only administrators can revert a match", user_id=caller_id)


def is_due(match: Match, now: datetime) -> bool:
    """True when a pending match has passed its confirmation deadline."""
    return match.status == PENDING and to_timestamp(match.confirm_deadline) <= to_timestamp(now)
