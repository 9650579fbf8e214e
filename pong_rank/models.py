"""
Data models for the table tennis ladder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import PongRankError

# Match status values
PENDING = "pending"
CONFIRMED = "confirmed"
REJECTED = "rejected"

# Match kinds
SINGLES = "singles"
DOUBLES = "doubles"
ROSTER_SIZE = {SINGLES: 1, DOUBLES: 2}

# Player roles
ROLE_USER = "user"
ROLE_ADMIN = "admin"

# Slot column names, in roster order
SLOTS_A = ("side_a1", "side_a2")
SLOTS_B = ("side_b1", "side_b2")


def to_timestamp(dt: datetime) -> str:
    """Serialize a datetime as a fixed-width UTC ISO string (sortable as text)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Player:
    user_id: int
    username: str
    rating: int
    role: str = ROLE_USER
    wins: int = 0
    losses: int = 0

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Player":
        return cls(
            user_id=int(row["user_id"]),
            username=row["username"],
            rating=int(row["rating"]),
            role=row.get("role") or ROLE_USER,
            wins=int(row.get("wins") or 0),
            losses=int(row.get("losses") or 0),
        )


@dataclass
class Match:
    id: int
    kind: str
    side_a: list[int]
    side_b: list[int]
    games_a: int
    games_b: int
    status: str
    submitted_by: int
    created_at: datetime
    confirm_deadline: datetime
    confirmed_at: datetime | None = None
    auto_confirmed: bool = False
    changes_a: list[int | None] = field(default_factory=list)
    changes_b: list[int | None] = field(default_factory=list)

    @property
    def participant_ids(self) -> list[int]:
        return [*self.side_a, *self.side_b]

    @property
    def winning_side(self) -> str | None:
        """'A' or 'B' by games won; None for a drawn series."""
        if self.games_a > self.games_b:
            return "A"
        if self.games_b > self.games_a:
            return "B"
        return None

    @property
    def rating_changes(self) -> dict[int, int | None]:
        """Per-player rating change (None until confirmed)."""
        out: dict[int, int | None] = {}
        for ids, changes in ((self.side_a, self.changes_a), (self.side_b, self.changes_b)):
            for i, uid in enumerate(ids):
                out[uid] = changes[i] if i < len(changes) else None
        return out

    def side_of(self, user_id: int) -> str | None:
        if user_id in self.side_a:
            return "A"
        if user_id in self.side_b:
            return "B"
        return None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Match":
        side_a = [int(row[c]) for c in SLOTS_A if row.get(c) is not None]
        side_b = [int(row[c]) for c in SLOTS_B if row.get(c) is not None]
        return cls(
            id=int(row["id"]),
            kind=row["kind"],
            side_a=side_a,
            side_b=side_b,
            games_a=int(row["games_a"]),
            games_b=int(row["games_b"]),
            status=row["status"],
            submitted_by=int(row["submitted_by"]),
            created_at=from_timestamp(row["created_at"]),
            confirm_deadline=from_timestamp(row["confirm_deadline"]),
            confirmed_at=from_timestamp(row.get("confirmed_at")),
            auto_confirmed=bool(row.get("auto_confirmed")),
            changes_a=[row.get("change_a1"), row.get("change_a2")][: len(side_a)],
            changes_b=[row.get("change_b1"), row.get("change_b2")][: len(side_b)],
        )


@dataclass
class RatingHistory:
    id: int
    player_id: int
    match_id: int
    rating_after: int
    delta: int
    created_at: datetime

    @property
    def rating_before(self) -> int:
        return self.rating_after - self.delta

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RatingHistory":
        return cls(
            id=int(row["id"]),
            player_id=int(row["player_id"]),
            match_id=int(row["match_id"]),
            rating_after=int(row["rating_after"]),
            delta=int(row["delta"]),
            created_at=from_timestamp(row["created_at"]),
        )


@dataclass
class Result:
    """Outcome of a public ladder operation."""

    ok: bool
    match: Match | None = None
    error: PongRankError | None = None

    @property
    def code(self) -> str:
        return "ok" if self.ok else (self.error.code if self.error else "error")

    @property
    def message(self) -> str:
        return str(self.error) if self.error else ""

    @classmethod
    def success(cls, match: Match | None = None) -> "Result":
        return cls(ok=True, match=match)

    @classmethod
    def failure(cls, error: PongRankError) -> "Result":
        return cls(ok=False, error=error)


@dataclass
class SweepResult:
    confirmed_count: int = 0
    failed_count: int = 0
    total_checked: int = 0
    skipped_count: int = 0
    confirmed_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)
